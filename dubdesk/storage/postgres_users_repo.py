"""Postgres-backed repository for users using SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from dubdesk.core.database import require_session_factory
from dubdesk.core.exceptions import ConflictError
from dubdesk.schema.sql import User
from dubdesk.storage.users_repo import UserRecord, UsersRepository

_USER_COLUMNS = {"role", "is_active", "email", "firebase_uid"}


class PostgresUsersRepository(UsersRepository):
  """Persist users to the `users` table."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get_user(self, user_id: str) -> UserRecord | None:
    async with self._session_factory() as session:
      row = await session.get(User, user_id)
      return self._model_to_record(row) if row is not None else None

  async def get_by_firebase_uid(self, firebase_uid: str) -> UserRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(select(User).where(User.firebase_uid == firebase_uid))).scalar_one_or_none()
      return self._model_to_record(row) if row is not None else None

  async def get_by_usernames(self, usernames: list[str]) -> list[UserRecord]:
    if not usernames:
      return []
    async with self._session_factory() as session:
      rows = (await session.execute(select(User).where(User.username.in_(usernames)))).scalars().all()
      by_name = {row.username: self._model_to_record(row) for row in rows}
      # Preserve the caller's order.
      return [by_name[name] for name in dict.fromkeys(usernames) if name in by_name]

  async def list_users(self, *, role: str | None = None) -> list[UserRecord]:
    async with self._session_factory() as session:
      stmt = select(User).order_by(User.username)
      if role is not None:
        stmt = stmt.where(User.role == role)
      return [self._model_to_record(row) for row in (await session.execute(stmt)).scalars()]

  async def create_user(self, record: UserRecord) -> UserRecord:
    async with self._session_factory() as session:
      row = User(id=record.id, username=record.username, email=record.email, role=record.role, firebase_uid=record.firebase_uid, is_active=record.is_active)
      session.add(row)
      try:
        await session.commit()
      except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(f"User '{record.username}' already exists") from exc
      await session.refresh(row)
      return self._model_to_record(row)

  async def update_user(self, user_id: str, **fields: Any) -> UserRecord | None:
    unknown = set(fields) - _USER_COLUMNS
    if unknown:
      raise ValueError(f"Unsupported user fields: {sorted(unknown)}")
    async with self._session_factory() as session:
      row = await session.get(User, user_id, with_for_update=True)
      if row is None:
        return None
      for name, value in fields.items():
        setattr(row, name, value)
      try:
        await session.commit()
      except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Firebase identity is already bound to another user") from exc
      await session.refresh(row)
      return self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: User) -> UserRecord:
    return UserRecord(id=row.id, username=row.username, role=row.role, email=row.email, firebase_uid=row.firebase_uid, is_active=row.is_active, created_at=row.created_at)
