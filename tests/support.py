"""In-memory doubles and record factories shared by the test suite."""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import httpx

from dubdesk.core.exceptions import ConflictError, ValidationFailure
from dubdesk.jobs.models import STALLED_EXHAUSTED_REASON, STALLED_REASON, QueueJobRecord
from dubdesk.pipeline.client import ProcessingClient
from dubdesk.services.storage_client import StoredObject
from dubdesk.storage.dialogues_repo import DialogueRecord, VoiceOverRecord
from dubdesk.storage.projects_repo import AssignedUser, EpisodeRecord, ProjectRecord
from dubdesk.storage.users_repo import UserRecord


class InMemoryProjectsRepo:
  """Projects repository double; episode mutations mirror the row-locked update."""

  def __init__(self) -> None:
    self.projects: dict[str, ProjectRecord] = {}

  def _owner(self, episode_id: str) -> tuple[ProjectRecord, int] | None:
    for project in self.projects.values():
      for position, episode in enumerate(project.episodes):
        if episode.id == episode_id:
          return project, position
    return None

  async def create_project(self, record: ProjectRecord) -> ProjectRecord:
    self.projects[record.id] = copy.deepcopy(record)
    return copy.deepcopy(record)

  async def get_project(self, project_id: str) -> ProjectRecord | None:
    project = self.projects.get(project_id)
    return copy.deepcopy(project) if project is not None else None

  async def get_project_by_database(self, database_name: str) -> ProjectRecord | None:
    for project in self.projects.values():
      if project.database_name == database_name:
        return copy.deepcopy(project)
    return None

  async def list_projects(self, *, username: str | None = None, role: str | None = None) -> list[ProjectRecord]:
    projects = list(self.projects.values())
    if username is not None:
      projects = [project for project in projects if any(entry.username == username and (role is None or entry.role == role) for entry in project.assigned_to)]
    return [copy.deepcopy(project) for project in projects]

  async def update_project(self, project_id: str, **fields: Any) -> ProjectRecord | None:
    project = self.projects.get(project_id)
    if project is None:
      return None
    self.projects[project_id] = replace(project, **fields, updated_at=datetime.now(UTC))
    return copy.deepcopy(self.projects[project_id])

  async def delete_project(self, project_id: str) -> bool:
    return self.projects.pop(project_id, None) is not None

  async def add_episodes(self, project_id: str, episodes: list[EpisodeRecord]) -> ProjectRecord | None:
    project = self.projects.get(project_id)
    if project is None:
      return None
    project.episodes.extend(copy.deepcopy(episodes))
    return copy.deepcopy(project)

  async def get_episode(self, episode_id: str) -> EpisodeRecord | None:
    owner = self._owner(episode_id)
    if owner is None:
      return None
    project, position = owner
    return copy.deepcopy(project.episodes[position])

  async def apply_episode_update(self, episode_id: str, mutate: Callable[[EpisodeRecord], EpisodeRecord]) -> EpisodeRecord | None:
    owner = self._owner(episode_id)
    if owner is None:
      return None
    project, position = owner
    updated = mutate(copy.deepcopy(project.episodes[position]))
    project.episodes[position] = updated
    return copy.deepcopy(updated)


class InMemoryDialoguesRepo:
  def __init__(self) -> None:
    self.dialogues: dict[str, DialogueRecord] = {}
    self.voiceovers: list[VoiceOverRecord] = []

  async def list_dialogues(self, database_name: str, collection_name: str) -> list[DialogueRecord]:
    rows = [row for row in self.dialogues.values() if row.database_name == database_name and row.collection_name == collection_name]
    return [copy.deepcopy(row) for row in sorted(rows, key=lambda row: row.index)]

  async def list_for_project(self, project_id: str) -> list[DialogueRecord]:
    return [copy.deepcopy(row) for row in self.dialogues.values() if row.project_id == project_id]

  async def get_dialogue(self, dialogue_id: str) -> DialogueRecord | None:
    row = self.dialogues.get(dialogue_id)
    return copy.deepcopy(row) if row is not None else None

  async def apply_dialogue_update(self, dialogue_id: str, mutate: Callable[[DialogueRecord], DialogueRecord]) -> DialogueRecord | None:
    row = self.dialogues.get(dialogue_id)
    if row is None:
      return None
    updated = mutate(copy.deepcopy(row))
    self.dialogues[dialogue_id] = updated
    return copy.deepcopy(updated)

  async def insert_dialogues(self, records: list[DialogueRecord]) -> int:
    for record in records:
      self.dialogues[record.id] = copy.deepcopy(record)
    return len(records)

  async def assign_voice(self, database_name: str, collection_name: str, voice_id: str, *, dialogue_ids: list[str] | None = None, character_name: str | None = None, updated_by: str | None = None) -> int:
    if not dialogue_ids and not character_name:
      raise ValidationFailure("Either dialogueIds or characterName is required")
    matched = 0
    for row_id, row in self.dialogues.items():
      if row.database_name != database_name or row.collection_name != collection_name:
        continue
      selected = row.id in dialogue_ids if dialogue_ids else row.character_name == character_name
      if selected:
        self.dialogues[row_id] = replace(row, voice_id=voice_id, updated_by=updated_by, updated_at=datetime.now(UTC))
        matched += 1
    return matched

  async def record_voiceover(self, record: VoiceOverRecord) -> VoiceOverRecord:
    stored = replace(record, created_at=datetime.now(UTC))
    self.voiceovers.append(stored)
    return stored


class InMemoryUsersRepo:
  def __init__(self) -> None:
    self.users: dict[str, UserRecord] = {}

  def add(self, user: UserRecord) -> UserRecord:
    self.users[user.id] = user
    return user

  async def get_user(self, user_id: str) -> UserRecord | None:
    return self.users.get(user_id)

  async def get_by_firebase_uid(self, firebase_uid: str) -> UserRecord | None:
    return next((user for user in self.users.values() if user.firebase_uid == firebase_uid), None)

  async def get_by_usernames(self, usernames: list[str]) -> list[UserRecord]:
    return [user for user in self.users.values() if user.username in usernames]

  async def list_users(self, *, role: str | None = None) -> list[UserRecord]:
    users = sorted(self.users.values(), key=lambda user: user.username)
    return [user for user in users if role is None or user.role == role]

  async def create_user(self, record: UserRecord) -> UserRecord:
    if any(user.username == record.username for user in self.users.values()):
      raise ConflictError("User already exists")
    self.users[record.id] = record
    return record

  async def update_user(self, user_id: str, **fields: Any) -> UserRecord | None:
    user = self.users.get(user_id)
    if user is None:
      return None
    self.users[user_id] = replace(user, **fields)
    return self.users[user_id]


class InMemoryQueueRepo:
  """Queue repository double with the same claim and retention rules as Postgres."""

  def __init__(self) -> None:
    self.jobs: dict[str, QueueJobRecord] = {}

  async def insert(self, record: QueueJobRecord) -> None:
    self.jobs[record.id] = copy.deepcopy(record)

  async def get(self, job_id: str) -> QueueJobRecord | None:
    job = self.jobs.get(job_id)
    return copy.deepcopy(job) if job is not None else None

  async def claim_next(self, queue_name: str, *, worker_id: str, now: datetime) -> QueueJobRecord | None:
    due = [job for job in self.jobs.values() if job.queue_name == queue_name and job.status in ("waiting", "delayed") and job.available_at <= now]
    if not due:
      return None
    job = min(due, key=lambda item: (item.available_at, item.created_at))
    claimed = replace(job, status="active", attempts_made=job.attempts_made + 1, locked_by=worker_id, processed_at=now)
    self.jobs[job.id] = claimed
    return copy.deepcopy(claimed)

  async def recover_stalled(self, queue_name: str, *, stalled_before: datetime, now: datetime) -> list[QueueJobRecord]:
    recovered = []
    for job in list(self.jobs.values()):
      if job.queue_name != queue_name or job.status != "active" or job.processed_at is None or job.processed_at >= stalled_before:
        continue
      if job.attempts_made >= job.max_attempts:
        updated = replace(job, status="failed", locked_by=None, failed_reason=STALLED_EXHAUSTED_REASON, finished_at=now)
      else:
        updated = replace(job, status="waiting", locked_by=None, failed_reason=STALLED_REASON, available_at=now)
      self.jobs[job.id] = updated
      recovered.append(copy.deepcopy(updated))
    return recovered

  async def update(self, job_id: str, **fields: Any) -> QueueJobRecord | None:
    job = self.jobs.get(job_id)
    if job is None:
      return None
    self.jobs[job_id] = replace(job, **fields)
    return copy.deepcopy(self.jobs[job_id])

  async def count_by_status(self, queue_name: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for job in self.jobs.values():
      if job.queue_name == queue_name:
        counts[job.status] = counts.get(job.status, 0) + 1
    return counts

  async def list_jobs(self, queue_name: str, *, statuses: tuple[str, ...], limit: int) -> list[QueueJobRecord]:
    jobs = [job for job in self.jobs.values() if job.queue_name == queue_name and job.status in statuses]
    return [copy.deepcopy(job) for job in sorted(jobs, key=lambda job: job.created_at, reverse=True)[:limit]]

  async def delete_finished(self, queue_name: str, *, status: str, finished_before: datetime | None = None, keep_latest: int | None = None, limit: int | None = None) -> int:
    if finished_before is None and keep_latest is None:
      return 0
    finished = [job for job in self.jobs.values() if job.queue_name == queue_name and job.status == status]
    newest = sorted(finished, key=lambda job: job.finished_at or datetime.min.replace(tzinfo=UTC), reverse=True)
    kept_ids = {job.id for job in newest[:keep_latest]} if keep_latest is not None else None
    doomed = []
    for job in sorted(finished, key=lambda job: job.finished_at or datetime.min.replace(tzinfo=UTC)):
      too_old = finished_before is not None and job.finished_at is not None and job.finished_at < finished_before
      beyond_limit = kept_ids is not None and job.id not in kept_ids
      if too_old or beyond_limit:
        doomed.append(job.id)
    if limit is not None:
      doomed = doomed[:limit]
    for job_id in doomed:
      del self.jobs[job_id]
    return len(doomed)


class FakeStorageClient:
  """Object storage double that keeps uploads in memory."""

  bucket_name = "test-media"

  def __init__(self) -> None:
    self.objects: dict[str, bytes] = {}

  def public_url(self, key: str) -> str:
    return f"https://storage.test/{self.bucket_name}/{key}"

  async def ensure_bucket(self) -> None:
    return None

  async def upload_bytes(self, data: bytes, key: str, *, content_type: str | None = None, cache_control: str = "private, max-age=0") -> StoredObject:
    self.objects[key] = data
    return StoredObject(key=key, url=self.public_url(key), size=len(data), content_type=content_type)

  async def delete_prefix(self, prefix: str) -> int:
    doomed = [key for key in self.objects if key.startswith(prefix)]
    for key in doomed:
      del self.objects[key]
    return len(doomed)


class CurrentUser:
  """Mutable holder so one test can act as several users."""

  def __init__(self) -> None:
    self.user: UserRecord | None = None

  async def __call__(self) -> UserRecord:
    assert self.user is not None, "set current_user.user before calling the API"
    return self.user


class ServiceStub:
  """Route processing-service calls by URL to per-test handlers."""

  def __init__(self) -> None:
    self.handlers: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
    self.requests: list[httpx.Request] = []

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    handler = self.handlers.get(str(request.url))
    if handler is None:
      return httpx.Response(404, json={"error": "no stub"})
    return handler(request)

  def client(self) -> ProcessingClient:
    return ProcessingClient(transport=httpx.MockTransport(self))


def make_user(username: str, role: str, *, is_active: bool = True) -> UserRecord:
  return UserRecord(id=f"user-{username}", username=username, role=role, email=f"{username}@example.com", firebase_uid=f"uid-{username}", is_active=is_active)


def make_project(project_id: str, *, title: str, members: list[tuple[str, str]] | None = None, episodes: int = 1) -> ProjectRecord:
  database_name = f"{title.lower()}_db"
  return ProjectRecord(
    id=project_id,
    title=title,
    source_language="en",
    target_language="es",
    database_name=database_name,
    assigned_to=[AssignedUser(username=username, role=role) for username, role in members or []],
    episodes=[
      EpisodeRecord(id=f"{project_id}-ep{number}", project_id=project_id, name=f"Episode {number}", collection_name=f"{title.lower()}_Ep_{number:02d}", position=number)
      for number in range(1, episodes + 1)
    ],
  )


def make_dialogue(dialogue_id: str, project: ProjectRecord, *, index: int = 0, character_name: str | None = "Ana", original: str = "Hello") -> DialogueRecord:
  episode = project.episodes[0]
  return DialogueRecord(
    id=dialogue_id,
    project_id=project.id,
    database_name=project.database_name,
    collection_name=episode.collection_name,
    index=index,
    character_name=character_name,
    time_start="00:00:01,000",
    time_end="00:00:02,500",
    dialogue={"original": original, "translated": None, "adapted": None},
  )


