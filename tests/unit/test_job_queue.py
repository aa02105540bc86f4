"""Queue retry, retention and metrics behavior against the in-memory repository."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from dubdesk.jobs.models import AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, STALLED_EXHAUSTED_REASON, STALLED_REASON, QueueJobRecord
from dubdesk.jobs.queue import JobQueue, backoff_delay_ms

T0 = datetime(2024, 1, 1, tzinfo=UTC)


class _Clock:
  def __init__(self, now: datetime) -> None:
    self.now = now

  def __call__(self) -> datetime:
    return self.now


def test_backoff_doubles_per_attempt() -> None:
  assert [backoff_delay_ms(1000, attempt) for attempt in (1, 2, 3)] == [1000, 2000, 4000]


@pytest.mark.anyio
async def test_take_counts_the_attempt(queue_repo) -> None:
  queue = JobQueue(queue_repo, clock=_Clock(T0))
  job = await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"})

  claimed = await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")

  assert claimed is not None
  assert claimed.id == job.id
  assert claimed.status == "active"
  assert claimed.attempts_made == 1
  assert claimed.locked_by == "w1"
  assert await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1") is None


@pytest.mark.anyio
async def test_failed_attempt_is_delayed_then_retried(queue_repo) -> None:
  clock = _Clock(T0)
  queue = JobQueue(queue_repo, default_attempts=3, default_backoff_ms=1000, clock=clock)
  await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"})
  claimed = await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")

  delayed = await queue.fail(claimed, "audio cleaner: returned HTTP 503")

  assert delayed.status == "delayed"
  assert delayed.available_at == T0 + timedelta(milliseconds=1000)
  # Not due until the backoff has elapsed.
  assert await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1") is None
  clock.now = T0 + timedelta(seconds=1)
  retried = await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")
  assert retried is not None
  assert retried.attempts_made == 2


@pytest.mark.anyio
async def test_last_attempt_failure_is_terminal(queue_repo) -> None:
  queue = JobQueue(queue_repo, clock=_Clock(T0))
  await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"}, attempts=1)
  claimed = await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")

  failed = await queue.fail(claimed, "boom")

  assert failed.status == "failed"
  assert failed.failed_reason == "boom"
  assert failed.finished_at == T0


@pytest.mark.anyio
async def test_job_abandoned_by_its_worker_is_claimed_again(queue_repo) -> None:
  clock = _Clock(T0)
  queue = JobQueue(queue_repo, stall_timeout_seconds=600, clock=clock)
  job = await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"})
  await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")

  clock.now = T0 + timedelta(seconds=599)
  assert await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w2") is None

  clock.now = T0 + timedelta(seconds=601)
  reclaimed = await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w2")

  assert reclaimed is not None
  assert reclaimed.id == job.id
  assert reclaimed.locked_by == "w2"
  assert reclaimed.attempts_made == 2
  assert reclaimed.failed_reason == STALLED_REASON


@pytest.mark.anyio
async def test_stalled_job_without_attempts_left_fails(queue_repo) -> None:
  clock = _Clock(T0)
  queue = JobQueue(queue_repo, stall_timeout_seconds=600, clock=clock)
  job = await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"}, attempts=1)
  await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")
  clock.now = T0 + timedelta(hours=1)

  recovered = await queue.recover_stalled(AUDIO_CLEANER_QUEUE)

  assert [item.id for item in recovered] == [job.id]
  stored = await queue.get_job(job.id)
  assert stored.status == "failed"
  assert stored.failed_reason == STALLED_EXHAUSTED_REASON
  assert stored.finished_at == clock.now
  assert stored.locked_by is None


@pytest.mark.anyio
async def test_complete_keeps_only_recent_completed_jobs(queue_repo) -> None:
  queue = JobQueue(queue_repo, clock=_Clock(T0))
  stale = QueueJobRecord(id="old", queue_name=AUDIO_CLEANER_QUEUE, name=CLEAN_AUDIO_JOB, data={}, status="completed", max_attempts=3, backoff_delay_ms=1000, available_at=T0, created_at=T0 - timedelta(days=2), finished_at=T0 - timedelta(days=2))
  await queue_repo.insert(stale)
  await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"})
  claimed = await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")

  done = await queue.complete(claimed, {"episodeId": "ep-1"})

  assert done.status == "completed"
  assert done.progress == 100
  assert done.return_value == {"episodeId": "ep-1"}
  assert await queue.get_job("old") is None


@pytest.mark.anyio
async def test_metrics_reports_every_state(queue_repo) -> None:
  queue = JobQueue(queue_repo, clock=_Clock(T0))
  await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-1"})
  await queue.add(AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, {"episodeId": "ep-2"})
  await queue.take(AUDIO_CLEANER_QUEUE, worker_id="w1")

  metrics = await queue.metrics(AUDIO_CLEANER_QUEUE)

  assert metrics["waiting"] == 1
  assert metrics["active"] == 1
  assert metrics["completed"] == 0
  assert metrics["failed"] == 0
  assert metrics["delayed"] == 0
  assert metrics["total"] == 2
  assert metrics["status"] == "healthy"


@pytest.mark.anyio
async def test_clean_respects_grace_window(queue_repo) -> None:
  queue = JobQueue(queue_repo, clock=_Clock(T0))
  for job_id, age in (("a", timedelta(hours=30)), ("b", timedelta(hours=1))):
    await queue_repo.insert(QueueJobRecord(id=job_id, queue_name=AUDIO_CLEANER_QUEUE, name=CLEAN_AUDIO_JOB, data={}, status="failed", max_attempts=3, backoff_delay_ms=1000, available_at=T0, created_at=T0 - age, finished_at=T0 - age))

  removed = await queue.clean(AUDIO_CLEANER_QUEUE, grace_ms=24 * 3600 * 1000, status="failed")

  assert removed == 1
  assert await queue.get_job("a") is None
  assert await queue.get_job("b") is not None
