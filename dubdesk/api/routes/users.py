from __future__ import annotations

from fastapi import APIRouter, Depends

from dubdesk.api.models import UserOut
from dubdesk.core.security import get_current_user
from dubdesk.storage.users_repo import UserRecord

router = APIRouter()


@router.get("/me", response_model=UserOut)
async def get_me(current_user: UserRecord = Depends(get_current_user)) -> UserOut:  # noqa: B008
  """
  Get the current user's profile.
  """
  return UserOut.from_record(current_user)
