"""Postgres-backed queue storage using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update

from dubdesk.core.database import require_session_factory
from dubdesk.jobs.models import STALLED_EXHAUSTED_REASON, STALLED_REASON, JobStatus, QueueJobRecord
from dubdesk.schema.queue import QueueJob
from dubdesk.storage.queue_repo import QueueRepository

_UPDATABLE = {"status", "attempts_made", "progress", "available_at", "locked_by", "failed_reason", "return_value", "processed_at", "finished_at"}


class PostgresQueueRepository(QueueRepository):
  """Persist queue jobs to the `queue_jobs` table."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def insert(self, record: QueueJobRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        QueueJob(
          id=record.id,
          queue_name=record.queue_name,
          name=record.name,
          data=record.data,
          status=record.status,
          attempts_made=record.attempts_made,
          max_attempts=record.max_attempts,
          backoff_delay_ms=record.backoff_delay_ms,
          progress=record.progress,
          available_at=record.available_at,
          created_at=record.created_at,
        )
      )
      await session.commit()

  async def get(self, job_id: str) -> QueueJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(QueueJob, job_id)
      return self._model_to_record(row) if row is not None else None

  async def claim_next(self, queue_name: str, *, worker_id: str, now: datetime) -> QueueJobRecord | None:
    async with self._session_factory() as session:
      async with session.begin():
        # SKIP LOCKED lets several workers poll without blocking on each other's claims.
        stmt = (
          select(QueueJob)
          .where(QueueJob.queue_name == queue_name, QueueJob.status.in_(("waiting", "delayed")), QueueJob.available_at <= now)
          .order_by(QueueJob.available_at, QueueJob.created_at)
          .limit(1)
          .with_for_update(skip_locked=True)
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          return None
        row.status = "active"
        row.attempts_made = row.attempts_made + 1
        row.locked_by = worker_id
        row.processed_at = now
      return self._model_to_record(row)

  async def recover_stalled(self, queue_name: str, *, stalled_before: datetime, now: datetime) -> list[QueueJobRecord]:
    async with self._session_factory() as session:
      async with session.begin():
        stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.status == "active", QueueJob.processed_at < stalled_before).with_for_update(skip_locked=True)
        rows = list((await session.execute(stmt)).scalars())
        for row in rows:
          row.locked_by = None
          if row.attempts_made >= row.max_attempts:
            row.status = "failed"
            row.failed_reason = STALLED_EXHAUSTED_REASON
            row.finished_at = now
          else:
            row.status = "waiting"
            row.failed_reason = STALLED_REASON
            row.available_at = now
      return [self._model_to_record(row) for row in rows]

  async def update(self, job_id: str, **fields: Any) -> QueueJobRecord | None:
    unknown = set(fields) - _UPDATABLE
    if unknown:
      raise ValueError(f"Unsupported queue job fields: {sorted(unknown)}")
    async with self._session_factory() as session:
      result = await session.execute(update(QueueJob).where(QueueJob.id == job_id).values(**fields).returning(QueueJob))
      row = result.scalar_one_or_none()
      await session.commit()
      return self._model_to_record(row) if row is not None else None

  async def count_by_status(self, queue_name: str) -> dict[str, int]:
    async with self._session_factory() as session:
      stmt = select(QueueJob.status, func.count()).where(QueueJob.queue_name == queue_name).group_by(QueueJob.status)
      return {status: int(count) for status, count in (await session.execute(stmt)).all()}

  async def list_jobs(self, queue_name: str, *, statuses: tuple[JobStatus, ...], limit: int) -> list[QueueJobRecord]:
    async with self._session_factory() as session:
      stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.status.in_(statuses)).order_by(QueueJob.created_at.desc()).limit(limit)
      return [self._model_to_record(row) for row in (await session.execute(stmt)).scalars()]

  async def delete_finished(self, queue_name: str, *, status: JobStatus, finished_before: datetime | None = None, keep_latest: int | None = None, limit: int | None = None) -> int:
    conditions = []
    if finished_before is not None:
      conditions.append(QueueJob.finished_at < finished_before)
    if keep_latest is not None:
      newest = select(QueueJob.id).where(QueueJob.queue_name == queue_name, QueueJob.status == status).order_by(QueueJob.finished_at.desc().nulls_last()).limit(keep_latest)
      conditions.append(QueueJob.id.not_in(newest.scalar_subquery()))
    if not conditions:
      return 0

    candidates = select(QueueJob.id).where(QueueJob.queue_name == queue_name, QueueJob.status == status, or_(*conditions)).order_by(QueueJob.finished_at)
    if limit is not None:
      candidates = candidates.limit(limit)
    async with self._session_factory() as session:
      result = await session.execute(delete(QueueJob).where(QueueJob.id.in_(candidates.scalar_subquery())))
      await session.commit()
      return int(result.rowcount or 0)

  @staticmethod
  def _model_to_record(row: QueueJob) -> QueueJobRecord:
    return QueueJobRecord(
      id=row.id,
      queue_name=row.queue_name,
      name=row.name,
      data=dict(row.data or {}),
      status=row.status,  # type: ignore[arg-type]
      max_attempts=row.max_attempts,
      backoff_delay_ms=row.backoff_delay_ms,
      available_at=row.available_at,
      created_at=row.created_at,
      attempts_made=row.attempts_made,
      progress=row.progress,
      locked_by=row.locked_by,
      failed_reason=row.failed_reason,
      return_value=row.return_value,
      processed_at=row.processed_at,
      finished_at=row.finished_at,
    )
