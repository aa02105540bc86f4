"""Dependency-injected job processor dispatch helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from dubdesk.jobs.models import QueueJobRecord


class JobProcessorHandler(Protocol):
  """Processor contract for one job name."""

  async def process(self, job: QueueJobRecord) -> dict[str, Any] | None:
    """Process one claimed job and return its result payload."""


@dataclass(frozen=True)
class JobProcessResult:
  """Result wrapper returned by the central dispatch function."""

  job_id: str
  return_value: dict[str, Any] | None


class UnknownJobError(ValueError):
  """No handler is registered for a job name."""


class JobProcessorRegistry:
  """Registry mapping job names to processor handlers."""

  def __init__(self, handlers: dict[str, JobProcessorHandler]) -> None:
    self._handlers = handlers

  def resolve(self, job_name: str) -> JobProcessorHandler:
    handler = self._handlers.get(job_name)
    if handler is None:
      raise UnknownJobError(f"Unsupported job name: {job_name}")
    return handler


async def process_job(job: QueueJobRecord, registry: JobProcessorRegistry) -> JobProcessResult:
  """Dispatch a claimed job to the handler registered for its name."""
  handler = registry.resolve(job.name)
  return_value = await handler.process(job)
  return JobProcessResult(job_id=job.id, return_value=return_value)
