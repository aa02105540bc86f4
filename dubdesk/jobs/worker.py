"""Background worker that drains one job queue with concurrency 1.

Run it as a separate process::

    python -m dubdesk.jobs.worker --queue audio-cleaner-queue
    python -m dubdesk.jobs.worker --queue pipeline-steps-queue
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import socket

from dubdesk.config import get_settings
from dubdesk.core.database import dispose_engine
from dubdesk.core.logging import initialize_logging
from dubdesk.jobs.dispatch import JobProcessorRegistry, process_job
from dubdesk.jobs.handlers import build_registry
from dubdesk.jobs.models import AUDIO_CLEANER_QUEUE, QUEUE_NAMES
from dubdesk.jobs.queue import JobQueue
from dubdesk.pipeline.client import ProcessingClient
from dubdesk.pipeline.runner import StepRunner
from dubdesk.storage.postgres_projects_repo import PostgresProjectsRepository
from dubdesk.storage.postgres_queue_repo import PostgresQueueRepository

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
  return f"{socket.gethostname()}:{os.getpid()}"


class QueueWorker:
  """Claim jobs from one queue and dispatch them one at a time."""

  def __init__(self, *, queue: JobQueue, registry: JobProcessorRegistry, queue_name: str, worker_id: str | None = None, poll_seconds: float = 1.0) -> None:
    self._queue = queue
    self._registry = registry
    self._queue_name = queue_name
    self._worker_id = worker_id or default_worker_id()
    self._poll_seconds = poll_seconds

  async def process_next(self) -> str | None:
    """Process one due job; return its id, or None when the queue is idle."""
    job = await self._queue.take(self._queue_name, worker_id=self._worker_id)
    if job is None:
      return None

    logger.info("Processing job id=%s name=%s attempt=%s/%s", job.id, job.name, job.attempts_made, job.max_attempts)
    try:
      result = await process_job(job, self._registry)
    except Exception as exc:  # noqa: BLE001
      logger.error("Job id=%s failed", job.id, exc_info=True)
      await self._queue.fail(job, str(exc) or type(exc).__name__)
      return job.id

    await self._queue.complete(job, result.return_value)
    logger.info("Job id=%s completed", job.id)
    return job.id

  async def run(self, stop_event: asyncio.Event) -> None:
    """Poll until `stop_event` is set; a job in progress always finishes first."""
    logger.info("Worker %s listening on %s", self._worker_id, self._queue_name)
    while not stop_event.is_set():
      processed = await self.process_next()
      if processed is not None:
        continue
      try:
        await asyncio.wait_for(stop_event.wait(), timeout=self._poll_seconds)
      except TimeoutError:
        pass
    logger.info("Worker %s stopped", self._worker_id)


async def _serve(queue_name: str, *, once: bool) -> None:
  settings = get_settings()
  initialize_logging(settings, prefix="dubdesk_worker")
  queue = JobQueue.from_settings(PostgresQueueRepository(), settings)
  runner = StepRunner(projects_repo=PostgresProjectsRepository(), queue=queue, client=ProcessingClient(), settings=settings)
  worker = QueueWorker(queue=queue, registry=build_registry(runner), queue_name=queue_name, poll_seconds=settings.queue_poll_seconds)

  try:
    if once:
      await worker.process_next()
      return
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
      loop.add_signal_handler(sig, stop_event.set)
    await worker.run(stop_event)
  finally:
    await dispose_engine()


def main(argv: list[str] | None = None) -> None:
  parser = argparse.ArgumentParser(description="Run the DubDesk job worker.")
  parser.add_argument("--queue", choices=QUEUE_NAMES, default=AUDIO_CLEANER_QUEUE, help="Queue to consume.")
  parser.add_argument("--once", action="store_true", help="Process at most one job and exit.")
  args = parser.parse_args(argv)
  asyncio.run(_serve(args.queue, once=args.once))


if __name__ == "__main__":
  main()
