"""Durable job queue: enqueue, claim, retry with backoff, retention and metrics."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from dubdesk.config import Settings
from dubdesk.jobs.models import COMPLETED_RETENTION_COUNT, COMPLETED_RETENTION_SECONDS, FAILED_RETENTION_SECONDS, JOB_STATUSES, JobStatus, QueueJobRecord
from dubdesk.storage.queue_repo import QueueRepository
from dubdesk.utils.ids import generate_job_id

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
  return datetime.now(UTC)


def backoff_delay_ms(base_delay_ms: int, attempts_made: int) -> int:
  """Exponential backoff: base, 2x base, 4x base, ... for attempts 1, 2, 3, ..."""
  return base_delay_ms * (2 ** max(attempts_made - 1, 0))


class JobQueue:
  """Queue operations layered over a QueueRepository.

  Attempts are counted when a job is claimed. A failure with attempts left
  moves the job to `delayed` until its backoff expires; otherwise it ends in
  `failed`. Finishing a job also trims old finished jobs.
  """

  def __init__(self, repo: QueueRepository, *, default_attempts: int = 3, default_backoff_ms: int = 1000, stall_timeout_seconds: float = 5400, clock: Any = _utcnow) -> None:
    self._repo = repo
    self._default_attempts = default_attempts
    self._default_backoff_ms = default_backoff_ms
    self._stall_timeout = timedelta(seconds=stall_timeout_seconds)
    self._clock = clock

  @classmethod
  def from_settings(cls, repo: QueueRepository, settings: Settings) -> JobQueue:
    return cls(repo, default_attempts=settings.queue_attempts, default_backoff_ms=settings.queue_backoff_ms, stall_timeout_seconds=settings.queue_stall_seconds)

  async def add(self, queue_name: str, name: str, data: dict[str, Any], *, job_id: str | None = None, attempts: int | None = None, backoff_ms: int | None = None) -> QueueJobRecord:
    """Enqueue a job; there is no deduplication on data."""
    now = self._clock()
    record = QueueJobRecord(
      id=job_id or generate_job_id(),
      queue_name=queue_name,
      name=name,
      data=data,
      status="waiting",
      max_attempts=attempts or self._default_attempts,
      backoff_delay_ms=backoff_ms or self._default_backoff_ms,
      available_at=now,
      created_at=now,
    )
    await self._repo.insert(record)
    logger.info("Enqueued job id=%s queue=%s name=%s", record.id, queue_name, name)
    return record

  async def take(self, queue_name: str, *, worker_id: str) -> QueueJobRecord | None:
    """Claim the next due job for a worker, first recovering jobs whose worker went away."""
    now = self._clock()
    await self.recover_stalled(queue_name, now=now)
    return await self._repo.claim_next(queue_name, worker_id=worker_id, now=now)

  async def recover_stalled(self, queue_name: str, *, now: datetime | None = None) -> list[QueueJobRecord]:
    """Release `active` jobs claimed longer ago than the stall timeout.

    A stalled job goes back to `waiting` while attempts remain, else to `failed`.
    """
    now = now or self._clock()
    recovered = await self._repo.recover_stalled(queue_name, stalled_before=now - self._stall_timeout, now=now)
    for job in recovered:
      logger.warning("Recovered stalled job id=%s queue=%s attempts=%s/%s -> %s", job.id, queue_name, job.attempts_made, job.max_attempts, job.status)
    if any(job.status == "failed" for job in recovered):
      await self._apply_retention(queue_name, "failed", now)
    return recovered

  async def complete(self, job: QueueJobRecord, return_value: dict[str, Any] | None = None) -> QueueJobRecord:
    now = self._clock()
    updated = await self._repo.update(job.id, status="completed", progress=100, return_value=return_value, finished_at=now, locked_by=None)
    await self._apply_retention(job.queue_name, "completed", now)
    return updated or job

  async def fail(self, job: QueueJobRecord, reason: str) -> QueueJobRecord:
    """Record a failed attempt; retry after backoff while attempts remain."""
    now = self._clock()
    if job.attempts_made < job.max_attempts:
      delay_ms = backoff_delay_ms(job.backoff_delay_ms, job.attempts_made)
      logger.warning("Job id=%s attempt %s/%s failed, retrying in %sms: %s", job.id, job.attempts_made, job.max_attempts, delay_ms, reason)
      updated = await self._repo.update(job.id, status="delayed", failed_reason=reason, available_at=now + timedelta(milliseconds=delay_ms), locked_by=None)
      return updated or job

    logger.error("Job id=%s failed after %s attempts: %s", job.id, job.attempts_made, reason)
    updated = await self._repo.update(job.id, status="failed", failed_reason=reason, finished_at=now, locked_by=None)
    await self._apply_retention(job.queue_name, "failed", now)
    return updated or job

  async def get_job(self, job_id: str) -> QueueJobRecord | None:
    return await self._repo.get(job_id)

  async def list_jobs(self, queue_name: str, *, statuses: tuple[JobStatus, ...] = ("active",), limit: int = 50) -> list[QueueJobRecord]:
    return await self._repo.list_jobs(queue_name, statuses=statuses, limit=limit)

  async def metrics(self, queue_name: str) -> dict[str, Any]:
    """Counts per state plus a total, in the shape the status endpoint returns."""
    counts = await self._repo.count_by_status(queue_name)
    metrics: dict[str, Any] = {status: counts.get(status, 0) for status in JOB_STATUSES}
    metrics["total"] = sum(metrics[status] for status in JOB_STATUSES)
    metrics["timestamp"] = self._clock().isoformat()
    metrics["status"] = "healthy"
    return metrics

  async def clean(self, queue_name: str, *, grace_ms: int, status: JobStatus, limit: int | None = None) -> int:
    """Delete finished jobs in `status` that finished more than `grace_ms` ago."""
    cutoff = self._clock() - timedelta(milliseconds=grace_ms)
    removed = await self._repo.delete_finished(queue_name, status=status, finished_before=cutoff, limit=limit)
    logger.info("Cleaned %s %s jobs from %s", removed, status, queue_name)
    return removed

  async def _apply_retention(self, queue_name: str, status: JobStatus, now: datetime) -> None:
    if status == "completed":
      await self._repo.delete_finished(queue_name, status="completed", finished_before=now - timedelta(seconds=COMPLETED_RETENTION_SECONDS), keep_latest=COMPLETED_RETENTION_COUNT)
    elif status == "failed":
      await self._repo.delete_finished(queue_name, status="failed", finished_before=now - timedelta(seconds=FAILED_RETENTION_SECONDS))
