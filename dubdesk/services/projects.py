"""Project and episode lifecycle helpers shared by the admin and project routes."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from dubdesk.core.exceptions import ConflictError, NotFoundError, ValidationFailure
from dubdesk.services.rbac import ADMIN, ALL_ROLES, can_act, ensure_can_act
from dubdesk.services.storage_client import StorageClient
from dubdesk.storage.dialogues_repo import DialogueRecord
from dubdesk.storage.projects_repo import AssignedUser, EpisodeRecord, ProjectRecord, ProjectsRepository
from dubdesk.storage.users_repo import UserRecord, UsersRepository
from dubdesk.utils.ids import collection_name_for, database_name_for, generate_id

logger = logging.getLogger(__name__)


def _clean_names(names: list[str]) -> list[str]:
  cleaned = [name.strip() for name in names if name and name.strip()]
  duplicates = {name for name in cleaned if cleaned.count(name) > 1}
  if duplicates:
    raise ValidationFailure("Duplicate episode names", details=sorted(duplicates))
  return cleaned


def build_episodes(project_id: str, database_name: str, names: list[str], *, start_position: int = 0) -> list[EpisodeRecord]:
  """Create episode records numbered after `start_position` existing episodes."""
  episodes = []
  for offset, name in enumerate(names, start=1):
    position = start_position + offset
    episodes.append(EpisodeRecord(id=generate_id(), project_id=project_id, name=name, collection_name=collection_name_for(database_name, position), position=position))
  return episodes


async def create_project(repo: ProjectsRepository, *, title: str, source_language: str, target_language: str, description: str | None = None, episode_names: list[str] | None = None) -> ProjectRecord:
  title = title.strip()
  if not title:
    raise ValidationFailure("Title is required")
  database_name = database_name_for(title)
  if await repo.get_project_by_database(database_name) is not None:
    raise ConflictError(f"A project with database '{database_name}' already exists")

  project_id = generate_id()
  record = ProjectRecord(
    id=project_id,
    title=title,
    description=description,
    source_language=source_language,
    target_language=target_language,
    database_name=database_name,
    episodes=build_episodes(project_id, database_name, _clean_names(episode_names or [])),
  )
  created = await repo.create_project(record)
  logger.info("Created project %s (%s) with %s episodes", project_id, database_name, len(record.episodes))
  return created


async def add_episodes(repo: ProjectsRepository, project_id: str, names: list[str]) -> ProjectRecord:
  project = await require_project(repo, project_id)
  cleaned = _clean_names(names)
  if not cleaned:
    raise ValidationFailure("At least one episode name is required")
  existing = {episode.name for episode in project.episodes}
  clashes = sorted(existing.intersection(cleaned))
  if clashes:
    raise ConflictError("Episodes already exist", details=clashes)

  start = max((episode.position for episode in project.episodes), default=0)
  updated = await repo.add_episodes(project_id, build_episodes(project_id, project.database_name, cleaned, start_position=start))
  if updated is None:
    raise NotFoundError("Project not found")
  return updated


async def require_project(repo: ProjectsRepository, project_id: str) -> ProjectRecord:
  project = await repo.get_project(project_id)
  if project is None:
    raise NotFoundError("Project not found")
  return project


async def get_project_for(repo: ProjectsRepository, user: UserRecord, project_id: str) -> ProjectRecord:
  """Return a project the user may act on with any role."""
  project = await require_project(repo, project_id)
  ensure_can_act(user, project, ALL_ROLES)
  return project


async def list_projects_for(repo: ProjectsRepository, user: UserRecord, *, role: str | None = None) -> list[ProjectRecord]:
  """Admins see every project; everyone else sees projects they are assigned to."""
  if user.role == ADMIN and role is None:
    return await repo.list_projects()
  projects = await repo.list_projects(username=user.username, role=role)
  return [project for project in projects if can_act(user, project, (role,) if role else ALL_ROLES)]


async def assign_users(projects_repo: ProjectsRepository, users_repo: UsersRepository, project_id: str, usernames: list[str]) -> ProjectRecord:
  """Add each named user with their own role; existing entries are kept once."""
  project = await require_project(projects_repo, project_id)
  users = await users_repo.get_by_usernames(usernames)
  missing = sorted(set(usernames) - {user.username for user in users})
  if missing:
    raise NotFoundError("Users not found", details=missing)

  assigned = list(project.assigned_to)
  for user in users:
    entry = AssignedUser(username=user.username, role=user.role)
    if entry not in assigned:
      assigned.append(entry)
  updated = await projects_repo.update_project(project_id, assigned_to=assigned)
  if updated is None:
    raise NotFoundError("Project not found")
  return updated


async def unassign_users(repo: ProjectsRepository, project_id: str, usernames: list[str]) -> ProjectRecord:
  project = await require_project(repo, project_id)
  removed = set(usernames)
  updated = await repo.update_project(project_id, assigned_to=[entry for entry in project.assigned_to if entry.username not in removed])
  if updated is None:
    raise NotFoundError("Project not found")
  return updated


async def delete_project(repo: ProjectsRepository, storage: StorageClient | None, project_id: str) -> None:
  """Delete a project with its episodes and dialogues, then its uploaded media."""
  if not await repo.delete_project(project_id):
    raise NotFoundError("Project not found")
  if storage is None:
    return
  try:
    removed = await storage.delete_prefix(f"projects/{project_id}/")
    logger.info("Deleted %s media objects for project %s", removed, project_id)
  except Exception:  # noqa: BLE001
    logger.warning("Failed to delete media for project %s", project_id, exc_info=True)


async def store_episode_video(repo: ProjectsRepository, storage: StorageClient, *, project_id: str, episode_name: str, filename: str, data: bytes, content_type: str | None) -> EpisodeRecord:
  """Upload an episode's source video and point the episode at it."""
  project = await require_project(repo, project_id)
  episode = project.find_episode(name=episode_name)
  if episode is None:
    raise NotFoundError("Episode not found")
  safe_name = posixpath.basename(filename.replace("\\", "/")).strip()
  if not safe_name:
    raise ValidationFailure("A file name is required")

  stored = await storage.upload_bytes(data, f"projects/{project_id}/{episode_name}/{safe_name}", content_type=content_type)
  uploaded_at = datetime.now(UTC)
  updated = await repo.apply_episode_update(episode.id, lambda current: replace(current, video_path=stored.url, video_key=stored.key, status="uploaded", uploaded_at=uploaded_at))
  if updated is None:
    raise NotFoundError("Episode not found")
  logger.info("Stored video for episode %s at %s", episode.id, stored.key)
  return updated


def compute_progress(project: ProjectRecord, dialogues: list[DialogueRecord]) -> dict[str, Any]:
  """Percentages of transcribed, translated, voiced and approved lines."""
  total = len(dialogues)

  def percent(count: int) -> int:
    return round(count * 100 / total) if total else 0

  return {
    "transcribed": percent(sum(1 for item in dialogues if item.dialogue.get("original"))),
    "translated": percent(sum(1 for item in dialogues if item.dialogue.get("translated"))),
    "voiceOver": percent(sum(1 for item in dialogues if item.voice_over_url)),
    "approved": percent(sum(1 for item in dialogues if item.status == "approved")),
    "total": total,
    "lastUpdated": project.updated_at,
  }
