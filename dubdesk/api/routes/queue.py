from __future__ import annotations

import logging
import secrets
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query
from fastapi.security import HTTPAuthorizationCredentials

from dubdesk.api.deps import get_queue, get_users_repo
from dubdesk.api.models import CleanupRequest, QueueJobOut
from dubdesk.config import Settings, get_settings
from dubdesk.core.exceptions import AuthorizationError, NotFoundError
from dubdesk.core.security import get_current_user, require_roles, security_scheme
from dubdesk.jobs.models import AUDIO_CLEANER_QUEUE, QUEUE_NAMES, JobStatus
from dubdesk.jobs.queue import JobQueue
from dubdesk.services.rbac import ADMIN, SR_DIRECTOR
from dubdesk.storage.users_repo import UsersRepository

router = APIRouter(prefix="/queue", tags=["queue"])
logger = logging.getLogger(__name__)

_observers = require_roles(ADMIN, SR_DIRECTOR)


async def authorize_cleanup(
  settings: Annotated[Settings, Depends(get_settings)],
  token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
  users_repo: UsersRepository = Depends(get_users_repo),  # noqa: B008
  x_dubdesk_task_secret: str | None = Header(default=None),
) -> str:
  """Admit schedulers holding the task secret, or a signed-in admin."""
  if settings.task_secret and x_dubdesk_task_secret and secrets.compare_digest(x_dubdesk_task_secret, settings.task_secret):
    return "scheduler"
  user = await get_current_user(token, users_repo)
  if user.role != ADMIN:
    logger.warning("Queue cleanup refused for %s", user.username)
    raise AuthorizationError("Not enough permissions")
  return user.username


@router.get("/status", dependencies=[Depends(_observers)])
async def queue_status(queue: JobQueue = Depends(get_queue)) -> dict[str, Any]:  # noqa: B008
  """Job counts per state for every queue."""
  return {queue_name: await queue.metrics(queue_name) for queue_name in QUEUE_NAMES}


@router.get("/jobs", response_model=list[QueueJobOut], dependencies=[Depends(_observers)])
async def list_jobs(
  status: JobStatus = Query(default="active"),
  queue_name: str = Query(default=AUDIO_CLEANER_QUEUE, alias="queue"),
  limit: int = Query(default=50, ge=1, le=500),
  queue: JobQueue = Depends(get_queue),  # noqa: B008
) -> list[QueueJobOut]:
  if queue_name not in QUEUE_NAMES:
    raise NotFoundError(f"Unknown queue {queue_name}")
  return [QueueJobOut.from_record(job) for job in await queue.list_jobs(queue_name, statuses=(status,), limit=limit)]


@router.get("/jobs/{job_id}", response_model=QueueJobOut, dependencies=[Depends(_observers)])
async def get_job(job_id: str, queue: JobQueue = Depends(get_queue)) -> QueueJobOut:  # noqa: B008
  job = await queue.get_job(job_id)
  if job is None:
    raise NotFoundError("Job not found")
  return QueueJobOut.from_record(job)


@router.post("/cleanup")
async def cleanup(payload: CleanupRequest | None = None, caller: str = Depends(authorize_cleanup), queue: JobQueue = Depends(get_queue)) -> dict[str, Any]:  # noqa: B008
  """Sweep finished jobs older than the grace window; failures are logged, not raised."""
  request = payload or CleanupRequest()
  removed: dict[str, dict[str, int]] = {}
  for queue_name in QUEUE_NAMES:
    removed[queue_name] = {}
    for job_status in ("completed", "failed"):
      try:
        removed[queue_name][job_status] = await queue.clean(queue_name, grace_ms=request.grace_ms, status=job_status, limit=request.limit)
      except Exception:  # noqa: BLE001
        logger.warning("Cleanup of %s jobs in %s failed", job_status, queue_name, exc_info=True)
        removed[queue_name][job_status] = 0
  logger.info("Queue cleanup by %s removed %s", caller, removed)
  return {"success": True, "message": "Queue cleanup completed", "removed": removed}
