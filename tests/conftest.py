"""Shared fixtures: in-memory repositories and an app client wired to them."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator

# Required settings must exist before the app module is imported.
os.environ["DUBDESK_ALLOWED_ORIGINS"] = "http://localhost"
os.environ["DUBDESK_TASK_SECRET"] = "test-task-secret"
os.environ["DUBDESK_MAX_UPLOAD_BYTES"] = "1024"
os.environ["DUBDESK_AUDIO_CLEANER_URL"] = "http://audio-cleaner.test/clean"
os.environ["DUBDESK_SCENE_EXTRACTOR_URL"] = "http://scenes.test/extract"
os.environ["DUBDESK_CLIP_EXTRACTOR_URL"] = "http://clips.test/extract"
os.environ["DUBDESK_TRANSLATION_URL"] = "http://translation.test/translate"
os.environ["DUBDESK_VOICE_ASSIGNMENT_URL"] = "http://voices.test/assign"
os.environ.pop("DUBDESK_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from dubdesk.api.deps import get_dialogues_repo, get_processing_client, get_projects_repo, get_queue_repo, get_users_repo  # noqa: E402
from dubdesk.config import get_settings  # noqa: E402
from dubdesk.core.security import get_current_user  # noqa: E402
from dubdesk.jobs.queue import JobQueue  # noqa: E402
from dubdesk.main import app  # noqa: E402
from dubdesk.pipeline.runner import StepRunner  # noqa: E402
from tests.support import CurrentUser, FakeStorageClient, InMemoryDialoguesRepo, InMemoryProjectsRepo, InMemoryQueueRepo, InMemoryUsersRepo, ServiceStub  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def projects_repo() -> InMemoryProjectsRepo:
  return InMemoryProjectsRepo()


@pytest.fixture
def dialogues_repo() -> InMemoryDialoguesRepo:
  return InMemoryDialoguesRepo()


@pytest.fixture
def users_repo() -> InMemoryUsersRepo:
  return InMemoryUsersRepo()


@pytest.fixture
def queue_repo() -> InMemoryQueueRepo:
  return InMemoryQueueRepo()


@pytest.fixture
def services() -> ServiceStub:
  return ServiceStub()


@pytest.fixture
def storage() -> FakeStorageClient:
  return FakeStorageClient()


@pytest.fixture
def current_user() -> CurrentUser:
  return CurrentUser()


@pytest.fixture
def runner(projects_repo: InMemoryProjectsRepo, queue_repo: InMemoryQueueRepo, services: ServiceStub) -> StepRunner:
  settings = get_settings()
  return StepRunner(projects_repo=projects_repo, queue=JobQueue.from_settings(queue_repo, settings), client=services.client(), settings=settings)


@pytest.fixture
async def api_client(projects_repo, dialogues_repo, users_repo, queue_repo, services, storage, current_user) -> AsyncIterator[AsyncClient]:
  """App client backed by the in-memory repositories; auth resolves to `current_user.user`."""
  app.dependency_overrides[get_projects_repo] = lambda: projects_repo
  app.dependency_overrides[get_dialogues_repo] = lambda: dialogues_repo
  app.dependency_overrides[get_users_repo] = lambda: users_repo
  app.dependency_overrides[get_queue_repo] = lambda: queue_repo
  app.dependency_overrides[get_processing_client] = services.client
  app.dependency_overrides[get_current_user] = current_user
  app.state.storage_client = storage
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
  app.state.storage_client = None


@pytest.fixture
async def anonymous_client(users_repo) -> AsyncIterator[AsyncClient]:
  """App client that goes through real bearer-token resolution."""
  app.dependency_overrides[get_users_repo] = lambda: users_repo
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
