"""Storage interface for the durable job queue."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from dubdesk.jobs.models import JobStatus, QueueJobRecord


class QueueRepository(Protocol):
  """Repository contract for queue job persistence."""

  async def insert(self, record: QueueJobRecord) -> None:
    """Persist a new job."""

  async def get(self, job_id: str) -> QueueJobRecord | None:
    """Fetch a job by identifier."""

  async def claim_next(self, queue_name: str, *, worker_id: str, now: datetime) -> QueueJobRecord | None:
    """Atomically move the oldest due waiting/delayed job to `active` and count the attempt."""

  async def recover_stalled(self, queue_name: str, *, stalled_before: datetime, now: datetime) -> list[QueueJobRecord]:
    """Move `active` jobs claimed before `stalled_before` to `waiting`, or to `failed` once attempts are used up."""

  async def update(self, job_id: str, **fields: Any) -> QueueJobRecord | None:
    """Apply partial updates to a job."""

  async def count_by_status(self, queue_name: str) -> dict[str, int]:
    """Return job counts keyed by status."""

  async def list_jobs(self, queue_name: str, *, statuses: tuple[JobStatus, ...], limit: int) -> list[QueueJobRecord]:
    """List jobs in the given states, newest first."""

  async def delete_finished(self, queue_name: str, *, status: JobStatus, finished_before: datetime | None = None, keep_latest: int | None = None, limit: int | None = None) -> int:
    """Delete finished jobs older than `finished_before` and/or beyond the newest `keep_latest`."""
