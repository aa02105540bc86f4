"""Domain models for the durable job queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

JobStatus = Literal["waiting", "active", "completed", "failed", "delayed"]
JOB_STATUSES: tuple[JobStatus, ...] = ("waiting", "active", "completed", "failed", "delayed")

AUDIO_CLEANER_QUEUE = "audio-cleaner-queue"
PIPELINE_QUEUE = "pipeline-steps-queue"
QUEUE_NAMES = (AUDIO_CLEANER_QUEUE, PIPELINE_QUEUE)

CLEAN_AUDIO_JOB = "clean-audio"
RUN_STEP_JOB = "run-step"

# Retention: completed jobs are kept briefly for observability, failed ones longer.
COMPLETED_RETENTION_SECONDS = 24 * 3600
COMPLETED_RETENTION_COUNT = 100
FAILED_RETENTION_SECONDS = 7 * 24 * 3600

STALLED_REASON = "job stalled: worker stopped before finishing"
STALLED_EXHAUSTED_REASON = "job stalled more than the allowed number of attempts"


@dataclass
class QueueJobRecord:
  """One queued unit of work."""

  id: str
  queue_name: str
  name: str
  data: dict[str, Any]
  status: JobStatus
  max_attempts: int
  backoff_delay_ms: int
  available_at: datetime
  created_at: datetime
  attempts_made: int = 0
  progress: int = 0
  locked_by: str | None = None
  failed_reason: str | None = None
  return_value: dict[str, Any] | None = None
  processed_at: datetime | None = None
  finished_at: datetime | None = None
