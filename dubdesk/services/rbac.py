"""Project-scoped authorization shared by every route and the step runner."""

from __future__ import annotations

from collections.abc import Iterable

from dubdesk.core.exceptions import AuthorizationError
from dubdesk.storage.projects_repo import ProjectRecord
from dubdesk.storage.users_repo import UserRecord

ADMIN = "admin"
TRANSCRIBER = "transcriber"
TRANSLATOR = "translator"
DIRECTOR = "director"
SR_DIRECTOR = "srDirector"
VOICE_OVER = "voiceOver"

ALL_ROLES = (TRANSCRIBER, TRANSLATOR, DIRECTOR, SR_DIRECTOR, VOICE_OVER, ADMIN)
DIALOGUE_ROLES = ALL_ROLES
STEP_TRIGGER_ROLES = (ADMIN, SR_DIRECTOR)
VOICE_ROLES = (DIRECTOR, SR_DIRECTOR, VOICE_OVER, ADMIN)


def can_act(user: UserRecord, project: ProjectRecord, allowed_roles: Iterable[str]) -> bool:
  """Return True when `user` may act on `project` with one of `allowed_roles`.

  A global admin passes whenever `admin` is allowed. Everyone else needs an
  `assignedTo` entry with their username and an allowed role.
  """
  allowed = set(allowed_roles)
  if not user.is_active:
    return False
  if user.role == ADMIN and ADMIN in allowed:
    return True
  return any(entry.username == user.username and entry.role in allowed for entry in project.assigned_to)


def ensure_can_act(user: UserRecord, project: ProjectRecord, allowed_roles: Iterable[str]) -> None:
  if not can_act(user, project, allowed_roles):
    raise AuthorizationError("You do not have permission to perform this action on this project")


def acting_role(user: UserRecord, project: ProjectRecord, allowed_roles: Iterable[str]) -> str | None:
  """Pick the role the user acts with on this project, preferring their global role."""
  allowed = tuple(allowed_roles)
  if user.role == ADMIN and ADMIN in allowed:
    return ADMIN
  roles = [entry.role for entry in project.assigned_to if entry.username == user.username and entry.role in allowed]
  if user.role in roles:
    return user.role
  return roles[0] if roles else None
