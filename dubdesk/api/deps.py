"""Shared FastAPI dependencies for repositories and process-wide clients."""

from __future__ import annotations

from fastapi import Depends, Request

from dubdesk.config import Settings, get_settings
from dubdesk.core.exceptions import UpstreamServiceError
from dubdesk.jobs.queue import JobQueue
from dubdesk.pipeline.client import ProcessingClient
from dubdesk.pipeline.runner import StepRunner
from dubdesk.services.storage_client import StorageClient
from dubdesk.storage.dialogues_repo import DialoguesRepository
from dubdesk.storage.postgres_dialogues_repo import PostgresDialoguesRepository
from dubdesk.storage.postgres_projects_repo import PostgresProjectsRepository
from dubdesk.storage.postgres_queue_repo import PostgresQueueRepository
from dubdesk.storage.postgres_users_repo import PostgresUsersRepository
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.queue_repo import QueueRepository
from dubdesk.storage.users_repo import UsersRepository


def get_projects_repo() -> ProjectsRepository:
  return PostgresProjectsRepository()


def get_dialogues_repo() -> DialoguesRepository:
  return PostgresDialoguesRepository()


def get_users_repo() -> UsersRepository:
  return PostgresUsersRepository()


def get_queue_repo() -> QueueRepository:
  return PostgresQueueRepository()


def get_queue(repo: QueueRepository = Depends(get_queue_repo), settings: Settings = Depends(get_settings)) -> JobQueue:  # noqa: B008
  return JobQueue.from_settings(repo, settings)


def get_storage_client(request: Request) -> StorageClient:
  """Return the storage client built once during startup."""
  client = getattr(request.app.state, "storage_client", None)
  if client is None:
    raise UpstreamServiceError("object storage", "storage client is not configured")
  return client


def get_optional_storage_client(request: Request) -> StorageClient | None:
  return getattr(request.app.state, "storage_client", None)


def get_processing_client() -> ProcessingClient:
  return ProcessingClient()


def get_step_runner(
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  queue: JobQueue = Depends(get_queue),  # noqa: B008
  client: ProcessingClient = Depends(get_processing_client),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> StepRunner:
  return StepRunner(projects_repo=projects_repo, queue=queue, client=client, settings=settings)
