"""Pure state transitions for the per-episode step map.

Every function takes an `EpisodeRecord` and returns an updated copy. Repositories
run them inside a row lock, so a function that raises leaves the stored episode
untouched.
"""

from __future__ import annotations

import copy
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from dubdesk.core.exceptions import ConflictError, ValidationFailure
from dubdesk.storage.projects_repo import EpisodeRecord

StepStatus = Literal["pending", "processing", "completed", "error"]
FINAL_STEP = 8


class StepOrderError(ValidationFailure):
  """The predecessor step has not completed."""

  def __init__(self, step_number: int) -> None:
    super().__init__(f"Episode must complete step {step_number - 1} first")
    self.step_number = step_number


class StepInFlightError(ConflictError):
  """The step is already being processed."""

  def __init__(self, step_number: int) -> None:
    super().__init__(f"Step {step_number} is already processing")
    self.step_number = step_number


class StaleJobError(ConflictError):
  """A queued job no longer owns the step it was created for."""

  def __init__(self, step_number: int, job_id: str) -> None:
    super().__init__(f"Job {job_id} no longer owns step {step_number}")
    self.step_number = step_number
    self.job_id = job_id


def now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _parse_iso(value: Any) -> datetime | None:
  if not isinstance(value, str) or not value:
    return None
  try:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
  except ValueError:
    return None
  return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def step_key(step_number: int) -> str:
  return f"step{step_number}"


def step_state(episode: EpisodeRecord, key: str) -> dict[str, Any]:
  """Return the stored state for a step key, or an empty dict."""
  state = episode.steps.get(key)
  return state if isinstance(state, dict) else {}


def step_status(episode: EpisodeRecord, step_number: int) -> str:
  return step_state(episode, step_key(step_number)).get("status", "pending")


def is_stalled(episode: EpisodeRecord, step_number: int, *, stale_after_seconds: float, at: str | None = None) -> bool:
  """True when a `processing` step has shown no activity for `stale_after_seconds`."""
  current = step_state(episode, step_key(step_number))
  if current.get("status") != "processing":
    return False
  last_activity = _parse_iso(current.get("updatedAt")) or _parse_iso(current.get("startedAt"))
  if last_activity is None:
    return True
  now = _parse_iso(at) or datetime.now(UTC)
  return now - last_activity > timedelta(seconds=stale_after_seconds)


def ensure_job_owns_step(episode: EpisodeRecord, step_number: int, job_id: str) -> None:
  """Raise `StaleJobError` unless `job_id` holds the step's current claim."""
  current = step_state(episode, step_key(step_number))
  if current.get("jobId") != job_id or current.get("status") == "completed":
    raise StaleJobError(step_number, job_id)


def _with_step(episode: EpisodeRecord, key: str, fields: dict[str, Any], *, drop: tuple[str, ...] = ()) -> dict[str, Any]:
  steps = copy.deepcopy(episode.steps)
  state = dict(steps.get(key) or {})
  for name in drop:
    state.pop(name, None)
  state.update(fields)
  steps[key] = state
  return steps


def claim(episode: EpisodeRecord, step_number: int, *, input_parameters: dict[str, Any] | None = None, job_id: str | None = None, stale_after_seconds: float | None = None, at: str | None = None) -> EpisodeRecord:
  """Move a step to `processing` after checking its predecessor and in-flight state.

  A `processing` step whose last activity is older than `stale_after_seconds` is
  taken over. `job_id` records which queued job owns the claim; inline claims
  carry none, so any job left over from an earlier claim becomes stale.
  """
  if step_number > 1 and step_status(episode, step_number - 1) != "completed":
    raise StepOrderError(step_number)
  if step_status(episode, step_number) == "processing":
    if stale_after_seconds is None or not is_stalled(episode, step_number, stale_after_seconds=stale_after_seconds, at=at):
      raise StepInFlightError(step_number)

  started_at = at or now_iso()
  fields: dict[str, Any] = {"status": "processing", "startedAt": started_at, "updatedAt": started_at, "inputParameters": dict(input_parameters or {})}
  drop: tuple[str, ...] = ("error", "completedAt")
  if job_id is not None:
    fields["jobId"] = job_id
  else:
    drop += ("jobId",)
  steps = _with_step(episode, step_key(step_number), fields, drop=drop)
  episode_status = "cleaning" if step_number == 1 else "processing"
  return replace(episode, steps=steps, step=step_number, status=episode_status, error_detail=None)


def mark_processing(episode: EpisodeRecord, step_number: int, *, episode_status: str | None = None, job_id: str | None = None, at: str | None = None) -> EpisodeRecord:
  """Re-mark a claimed step as processing when a worker (re)starts it."""
  if job_id is not None:
    ensure_job_owns_step(episode, step_number, job_id)
  timestamp = at or now_iso()
  steps = _with_step(episode, step_key(step_number), {"status": "processing", "updatedAt": timestamp}, drop=("error",))
  return replace(episode, steps=steps, step=step_number, status=episode_status or episode.status, error_detail=None)


def complete(episode: EpisodeRecord, step_number: int, payload: dict[str, Any], *, job_id: str | None = None, at: str | None = None) -> EpisodeRecord:
  """Store a step's result, mark it completed and advance the pointer."""
  if job_id is not None:
    ensure_job_owns_step(episode, step_number, job_id)
  timestamp = at or now_iso()
  fields = {**payload, "status": "completed", "completedAt": timestamp, "updatedAt": timestamp}
  steps = _with_step(episode, step_key(step_number), fields, drop=("error",))
  if step_number >= FINAL_STEP:
    return replace(episode, steps=steps, step=FINAL_STEP, status="completed", error_detail=None)
  return replace(episode, steps=steps, step=step_number + 1, status="processing", error_detail=None)


def fail(episode: EpisodeRecord, step_number: int, error: str, *, job_id: str | None = None, at: str | None = None) -> EpisodeRecord:
  """Record a step failure on the episode without advancing the pointer."""
  if job_id is not None:
    ensure_job_owns_step(episode, step_number, job_id)
  message = error.strip() or f"Step {step_number} failed"
  timestamp = at or now_iso()
  steps = _with_step(episode, step_key(step_number), {"status": "error", "error": message, "updatedAt": timestamp})
  return replace(episode, steps=steps, status="error", error_detail=message)


def merge_step(episode: EpisodeRecord, key: str, fields: dict[str, Any], *, at: str | None = None) -> EpisodeRecord:
  """Merge fields into a named (non-numbered) step such as `voiceAssignment`."""
  steps = _with_step(episode, key, {**fields, "updatedAt": at or now_iso()})
  return replace(episode, steps=steps)
