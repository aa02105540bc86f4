"""Storage interfaces for users."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol


@dataclass
class UserRecord:
  """A signed-in identity mapped to one username and role."""

  id: str
  username: str
  role: str
  email: str | None = None
  firebase_uid: str | None = None
  is_active: bool = True
  created_at: datetime | None = None


class UsersRepository(Protocol):
  """Repository contract for user persistence."""

  async def get_user(self, user_id: str) -> UserRecord | None:
    """Fetch a user by identifier."""

  async def get_by_firebase_uid(self, firebase_uid: str) -> UserRecord | None:
    """Fetch the user bound to a Firebase identity."""

  async def get_by_usernames(self, usernames: list[str]) -> list[UserRecord]:
    """Fetch the users with the given usernames; unknown names are skipped."""

  async def list_users(self, *, role: str | None = None) -> list[UserRecord]:
    """List users ordered by username, optionally filtered by role."""

  async def create_user(self, record: UserRecord) -> UserRecord:
    """Persist a new user; raises ConflictError on a duplicate username or uid."""

  async def update_user(self, user_id: str, **fields: Any) -> UserRecord | None:
    """Apply partial updates (role, is_active, email, firebase_uid)."""
