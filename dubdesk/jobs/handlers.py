"""Job handlers that run queued pipeline steps inside the worker."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from dubdesk.core.exceptions import StepFailedError, ValidationFailure
from dubdesk.jobs.dispatch import JobProcessorRegistry
from dubdesk.jobs.models import CLEAN_AUDIO_JOB, RUN_STEP_JOB, QueueJobRecord
from dubdesk.pipeline.runner import StepRunner
from dubdesk.pipeline.state import StaleJobError

logger = logging.getLogger(__name__)


class _StepJobHandler(ABC):
  """Run one step for the episode named in the job data.

  Every episode write is conditioned on the job still owning the step. A job
  whose step was re-claimed or already completed finishes as a no-op.
  """

  def __init__(self, runner: StepRunner) -> None:
    self._runner = runner

  @abstractmethod
  def _step_and_params(self, job: QueueJobRecord) -> tuple[int, dict[str, Any]]:
    """Return the step number and service parameters carried by the job."""

  async def process(self, job: QueueJobRecord) -> dict[str, Any] | None:
    episode_id = job.data.get("episodeId")
    if not episode_id:
      raise ValidationFailure(f"Job {job.id} has no episodeId")
    step_number, params = self._step_and_params(job)

    try:
      payload = await self._run(job, episode_id, step_number, params)
    except StaleJobError as exc:
      logger.warning("Skipping job id=%s for episode %s: %s", job.id, episode_id, exc.message)
      return {"episodeId": episode_id, "step": step_number, "skipped": True, "reason": exc.message}
    return {"episodeId": episode_id, "step": step_number, **payload}

  async def _run(self, job: QueueJobRecord, episode_id: str, step_number: int, params: dict[str, Any]) -> dict[str, Any]:
    await self._runner.mark_processing(episode_id, step_number, job_id=job.id)
    try:
      return await self._runner.execute_step(episode_id, step_number, params, job_id=job.id)
    except (StepFailedError, StaleJobError):
      raise
    except Exception as exc:
      # Anything the runner did not already record still lands on the episode.
      await self._runner.record_failure(episode_id, step_number, str(exc) or type(exc).__name__, job_id=job.id)
      raise


class CleanAudioHandler(_StepJobHandler):
  """`clean-audio`: data is `{episodeId, name, videoPath, videoKey}`."""

  def _step_and_params(self, job: QueueJobRecord) -> tuple[int, dict[str, Any]]:
    return 1, {name: job.data.get(name) for name in ("name", "videoPath", "videoKey")}


class RunStepHandler(_StepJobHandler):
  """`run-step`: data is `{episodeId, step, params}`."""

  def _step_and_params(self, job: QueueJobRecord) -> tuple[int, dict[str, Any]]:
    try:
      step_number = int(job.data.get("step"))
    except (TypeError, ValueError) as exc:
      raise ValidationFailure(f"Job {job.id} has an invalid step") from exc
    return step_number, dict(job.data.get("params") or {})


def build_registry(runner: StepRunner) -> JobProcessorRegistry:
  return JobProcessorRegistry({CLEAN_AUDIO_JOB: CleanAudioHandler(runner), RUN_STEP_JOB: RunStepHandler(runner)})
