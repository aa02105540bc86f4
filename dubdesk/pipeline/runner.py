"""Episode step orchestration: claim, dispatch, call the service, record the outcome."""

from __future__ import annotations

import logging
from typing import Any

from dubdesk.config import Settings
from dubdesk.core.exceptions import NotFoundError, StepFailedError, UpstreamServiceError, ValidationFailure
from dubdesk.jobs.queue import JobQueue
from dubdesk.pipeline import state
from dubdesk.pipeline.client import ProcessingClient
from dubdesk.pipeline.steps import StepDefinition, get_step
from dubdesk.services.rbac import STEP_TRIGGER_ROLES, ensure_can_act
from dubdesk.storage.projects_repo import EpisodeMutation, EpisodeRecord, ProjectRecord, ProjectsRepository
from dubdesk.storage.users_repo import UserRecord
from dubdesk.utils.ids import generate_job_id

logger = logging.getLogger(__name__)


class StepRunner:
  """Drive one episode through the numbered pipeline steps.

  Every write goes through `apply_episode_update`, so the predecessor check and
  the `processing` write happen under one row lock. Inline steps call their
  service before returning; queued steps hand a job to the worker.
  """

  def __init__(self, *, projects_repo: ProjectsRepository, queue: JobQueue, client: ProcessingClient, settings: Settings) -> None:
    self._projects_repo = projects_repo
    self._queue = queue
    self._client = client
    self._settings = settings

  async def trigger(self, episode_id: str, step_number: int, params: dict[str, Any] | None, *, user: UserRecord) -> dict[str, Any]:
    """Claim a step for the episode and run or enqueue it."""
    definition = get_step(step_number)
    episode, project = await self._load(episode_id)
    ensure_can_act(user, project, STEP_TRIGGER_ROLES)

    params = dict(params or {})
    # Queued claims carry the id of the job that will own them.
    job_id = generate_job_id() if definition.dispatch == "queued" else None
    claimed = await self._update(episode_id, lambda current: state.claim(current, step_number, input_parameters=params, job_id=job_id, stale_after_seconds=definition.timeout_seconds))
    logger.info("Claimed step %s for episode %s by %s", step_number, episode_id, user.username)

    if definition.validate is not None:
      try:
        definition.validate(claimed)
      except ValidationFailure as exc:
        await self.record_failure(episode_id, step_number, exc.message)
        raise

    if job_id is None:
      try:
        payload = await self.execute_step(episode_id, step_number, params)
      except StepFailedError:
        raise
      except Exception as exc:
        # Nothing may leave an inline step stuck in `processing`.
        await self.record_failure(episode_id, step_number, str(exc) or type(exc).__name__)
        raise
      return {"success": True, "message": f"Step {step_number} completed successfully", "step": step_number, "data": payload}

    job_data = self._job_data(definition, claimed, params)
    try:
      job = await self._queue.add(definition.queue_name or "", definition.job_name or "", job_data, job_id=job_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to enqueue step %s for episode %s", step_number, episode_id, exc_info=True)
      await self.record_failure(episode_id, step_number, f"Failed to enqueue job: {exc}")
      raise StepFailedError(step_number, "Failed to enqueue job") from exc
    return {"success": True, "message": f"Step {step_number} ({definition.name}) queued", "jobId": job.id, "queue": job.queue_name}

  async def execute_step(self, episode_id: str, step_number: int, params: dict[str, Any] | None = None, *, job_id: str | None = None) -> dict[str, Any]:
    """Call the step's service and store its result; failures are recorded before raising.

    With `job_id`, writes only land while that job still owns the step;
    otherwise `StaleJobError` is raised and the episode is left alone.
    """
    definition = get_step(step_number)
    episode, project = await self._load(episode_id)
    request = definition.build_request(episode, project, dict(params or {}))
    try:
      body = await self._client.post_json(definition.name, definition.service_url(self._settings), request, timeout_seconds=definition.timeout_seconds, headers=definition.headers(self._settings))
      payload = definition.apply_result(body)
    except UpstreamServiceError as exc:
      await self.record_failure(episode_id, step_number, exc.message, job_id=job_id)
      raise StepFailedError(step_number, exc.message) from exc

    await self._update(episode_id, lambda current: state.complete(current, step_number, payload, job_id=job_id))
    logger.info("Completed step %s for episode %s", step_number, episode_id)
    return payload

  async def mark_processing(self, episode_id: str, step_number: int, *, job_id: str | None = None) -> EpisodeRecord:
    """Re-mark a claimed step as processing when a worker picks it up."""
    episode_status = "cleaning" if step_number == 1 else "processing"
    return await self._update(episode_id, lambda current: state.mark_processing(current, step_number, episode_status=episode_status, job_id=job_id))

  async def record_failure(self, episode_id: str, step_number: int, message: str, *, job_id: str | None = None) -> None:
    logger.warning("Step %s failed for episode %s: %s", step_number, episode_id, message)
    await self._projects_repo.apply_episode_update(episode_id, lambda current: state.fail(current, step_number, message, job_id=job_id))

  async def _load(self, episode_id: str) -> tuple[EpisodeRecord, ProjectRecord]:
    episode = await self._projects_repo.get_episode(episode_id)
    if episode is None:
      raise NotFoundError("Episode not found")
    project = await self._projects_repo.get_project(episode.project_id)
    if project is None:
      raise NotFoundError("Project not found")
    return episode, project

  async def _update(self, episode_id: str, mutate: EpisodeMutation) -> EpisodeRecord:
    updated = await self._projects_repo.apply_episode_update(episode_id, mutate)
    if updated is None:
      raise NotFoundError("Episode not found")
    return updated

  @staticmethod
  def _job_data(definition: StepDefinition, episode: EpisodeRecord, params: dict[str, Any]) -> dict[str, Any]:
    if definition.number == 1:
      return {
        "episodeId": episode.id,
        "name": params.get("name") or episode.name,
        "videoPath": params.get("videoPath") or episode.video_path,
        "videoKey": params.get("videoKey") or episode.video_key,
      }
    return {"episodeId": episode.id, "step": definition.number, "params": params}
