"""Postgres-backed repository for projects and episodes using SQLAlchemy."""

from __future__ import annotations

import copy
from typing import Any

from sqlalchemy import delete, literal, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from dubdesk.core.database import require_session_factory
from dubdesk.schema.sql import Episode, Project
from dubdesk.storage.projects_repo import AssignedUser, EpisodeMutation, EpisodeRecord, ProjectRecord, ProjectsRepository

_PROJECT_COLUMNS = {"title", "description", "status", "source_language", "target_language", "assigned_to"}


class PostgresProjectsRepository(ProjectsRepository):
  """Persist projects and episodes to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def create_project(self, record: ProjectRecord) -> ProjectRecord:
    async with self._session_factory() as session:
      session.add(
        Project(
          id=record.id,
          title=record.title,
          description=record.description,
          source_language=record.source_language,
          target_language=record.target_language,
          status=record.status,
          database_name=record.database_name,
          assigned_to=[{"username": entry.username, "role": entry.role} for entry in record.assigned_to],
        )
      )
      # Flush the parent first so episode foreign keys resolve.
      await session.flush()
      for episode in record.episodes:
        session.add(self._record_to_episode(episode))
      await session.commit()
      return await self._load_project(session, record.id)

  async def get_project(self, project_id: str) -> ProjectRecord | None:
    async with self._session_factory() as session:
      return await self._load_project(session, project_id)

  async def get_project_by_database(self, database_name: str) -> ProjectRecord | None:
    async with self._session_factory() as session:
      result = await session.execute(select(Project.id).where(Project.database_name == database_name))
      project_id = result.scalar_one_or_none()
      if project_id is None:
        return None
      return await self._load_project(session, project_id)

  async def list_projects(self, *, username: str | None = None, role: str | None = None) -> list[ProjectRecord]:
    async with self._session_factory() as session:
      stmt = select(Project).order_by(Project.created_at.desc())
      if username is not None:
        # JSONB containment keeps the membership filter in the database.
        member: dict[str, str] = {"username": username}
        if role is not None:
          member["role"] = role
        stmt = stmt.where(Project.assigned_to.op("@>")(_jsonb([member])))
      projects = (await session.execute(stmt)).scalars().all()
      episodes = await self._episodes_by_project(session, [project.id for project in projects])
      return [self._project_to_record(project, episodes.get(project.id, [])) for project in projects]

  async def update_project(self, project_id: str, **fields: Any) -> ProjectRecord | None:
    unknown = set(fields) - _PROJECT_COLUMNS
    if unknown:
      raise ValueError(f"Unsupported project fields: {sorted(unknown)}")
    async with self._session_factory() as session:
      row = await session.get(Project, project_id, with_for_update=True)
      if row is None:
        return None
      for name, value in fields.items():
        if name == "assigned_to":
          value = [{"username": entry.username, "role": entry.role} for entry in value]
        setattr(row, name, value)
      await session.commit()
      return await self._load_project(session, project_id)

  async def delete_project(self, project_id: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(Project).where(Project.id == project_id))
      await session.commit()
      return bool(result.rowcount)

  async def add_episodes(self, project_id: str, episodes: list[EpisodeRecord]) -> ProjectRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Project, project_id, with_for_update=True)
      if row is None:
        return None
      for episode in episodes:
        session.add(self._record_to_episode(episode))
      await session.commit()
      return await self._load_project(session, project_id)

  async def get_episode(self, episode_id: str) -> EpisodeRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Episode, episode_id)
      return self._episode_to_record(row) if row is not None else None

  async def apply_episode_update(self, episode_id: str, mutate: EpisodeMutation) -> EpisodeRecord | None:
    async with self._session_factory() as session:
      async with session.begin():
        # SELECT ... FOR UPDATE serializes concurrent step claims on the same episode.
        result = await session.execute(select(Episode).where(Episode.id == episode_id).with_for_update())
        row = result.scalar_one_or_none()
        if row is None:
          return None
        # An exception from `mutate` rolls the transaction back untouched.
        updated = mutate(self._episode_to_record(row))
        row.status = updated.status
        row.step = updated.step
        row.steps = updated.steps
        row.video_path = updated.video_path
        row.video_key = updated.video_key
        row.error_detail = updated.error_detail
        row.uploaded_at = updated.uploaded_at
      return updated

  async def _load_project(self, session: AsyncSession, project_id: str) -> ProjectRecord | None:
    row = await session.get(Project, project_id, populate_existing=True)
    if row is None:
      return None
    episodes = await self._episodes_by_project(session, [project_id])
    return self._project_to_record(row, episodes.get(project_id, []))

  async def _episodes_by_project(self, session: AsyncSession, project_ids: list[str]) -> dict[str, list[EpisodeRecord]]:
    if not project_ids:
      return {}
    stmt = select(Episode).where(Episode.project_id.in_(project_ids)).order_by(Episode.position, Episode.created_at)
    grouped: dict[str, list[EpisodeRecord]] = {}
    for row in (await session.execute(stmt)).scalars():
      grouped.setdefault(row.project_id, []).append(self._episode_to_record(row))
    return grouped

  @staticmethod
  def _project_to_record(row: Project, episodes: list[EpisodeRecord]) -> ProjectRecord:
    return ProjectRecord(
      id=row.id,
      title=row.title,
      description=row.description,
      source_language=row.source_language,
      target_language=row.target_language,
      status=row.status,
      database_name=row.database_name,
      assigned_to=[AssignedUser(username=entry["username"], role=entry["role"]) for entry in row.assigned_to or []],
      episodes=episodes,
      created_at=row.created_at,
      updated_at=row.updated_at,
    )

  @staticmethod
  def _episode_to_record(row: Episode) -> EpisodeRecord:
    return EpisodeRecord(
      id=row.id,
      project_id=row.project_id,
      name=row.name,
      collection_name=row.collection_name,
      status=row.status,
      step=row.step,
      # Copy so mutations never alias the ORM-tracked JSON value.
      steps=copy.deepcopy(row.steps or {}),
      video_path=row.video_path,
      video_key=row.video_key,
      error_detail=row.error_detail,
      uploaded_at=row.uploaded_at,
      position=row.position,
    )

  @staticmethod
  def _record_to_episode(record: EpisodeRecord) -> Episode:
    return Episode(
      id=record.id,
      project_id=record.project_id,
      position=record.position,
      name=record.name,
      collection_name=record.collection_name,
      video_path=record.video_path,
      video_key=record.video_key,
      status=record.status,
      step=record.step,
      steps=record.steps,
      error_detail=record.error_detail,
      uploaded_at=record.uploaded_at,
    )


def _jsonb(value: Any) -> Any:
  return literal(value, type_=JSONB)
