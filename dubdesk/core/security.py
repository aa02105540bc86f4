from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from dubdesk.api.deps import get_users_repo
from dubdesk.core.exceptions import AuthenticationError, AuthorizationError
from dubdesk.core.firebase import verify_id_token
from dubdesk.storage.users_repo import UserRecord, UsersRepository

# auto_error=False so a missing header goes through our 401 error body.
security_scheme = HTTPBearer(auto_error=False)


async def get_current_user(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)], users_repo: UsersRepository = Depends(get_users_repo)) -> UserRecord:  # noqa: B008
  """Verify the Firebase ID token and resolve the active user it belongs to."""
  if token is None or not token.credentials:
    raise AuthenticationError("Unauthorized")

  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    raise AuthenticationError("Invalid authentication credentials")

  firebase_uid = decoded_claims.get("uid")
  if not firebase_uid:
    raise AuthenticationError("Invalid token claims")

  user = await users_repo.get_by_firebase_uid(firebase_uid)
  if user is None:
    raise AuthenticationError("User not found")
  if not user.is_active:
    raise AuthorizationError("Inactive user")
  return user


def require_roles(*roles: str):  # noqa: ANN201
  """Build a dependency that admits only users whose global role is listed."""

  async def _dependency(current_user: UserRecord = Depends(get_current_user)) -> UserRecord:  # noqa: B008
    if current_user.role not in roles:
      raise AuthorizationError("Not enough permissions")
    return current_user

  return _dependency
