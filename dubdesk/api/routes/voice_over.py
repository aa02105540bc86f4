from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile

from dubdesk.api.deps import get_dialogues_repo, get_projects_repo, get_storage_client
from dubdesk.api.models import UploadResponse
from dubdesk.config import Settings, get_settings
from dubdesk.core.exceptions import ValidationFailure
from dubdesk.core.security import get_current_user
from dubdesk.services.storage_client import StorageClient
from dubdesk.services.voiceovers import upload_voiceover
from dubdesk.storage.dialogues_repo import DialoguesRepository
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.users_repo import UserRecord

router = APIRouter()


@router.post("/voice-over/upload", response_model=UploadResponse)
async def upload(
  audio: UploadFile | None = File(default=None),  # noqa: B008
  file: UploadFile | None = File(default=None),  # noqa: B008
  dialogue_id: str | None = Form(default=None, alias="dialogueId"),
  current_user: UserRecord = Depends(get_current_user),  # noqa: B008
  storage: StorageClient = Depends(get_storage_client),  # noqa: B008
  projects_repo: ProjectsRepository = Depends(get_projects_repo),  # noqa: B008
  dialogues_repo: DialoguesRepository = Depends(get_dialogues_repo),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> UploadResponse:
  """Store a recording under `voiceovers/{uuid}` and attach it to a dialogue when one is named."""
  upload_file = audio or file
  if upload_file is None:
    raise ValidationFailure("No audio file provided")
  # At most limit + 1 bytes are read; anything longer is rejected.
  data = await upload_file.read(settings.max_upload_bytes + 1)
  record = await upload_voiceover(storage, projects_repo, dialogues_repo, current_user, data=data, content_type=upload_file.content_type, dialogue_id=dialogue_id or None, max_bytes=settings.max_upload_bytes)
  return UploadResponse(url=record.url, key=record.key)
