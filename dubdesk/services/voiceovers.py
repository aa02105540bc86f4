"""Voice-over recording uploads."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime

from dubdesk.core.exceptions import NotFoundError, PayloadTooLargeError, ValidationFailure
from dubdesk.services.rbac import VOICE_ROLES, ensure_can_act
from dubdesk.services.storage_client import StorageClient
from dubdesk.storage.dialogues_repo import DialoguesRepository, VoiceOverRecord
from dubdesk.storage.projects_repo import ProjectsRepository
from dubdesk.storage.users_repo import UserRecord
from dubdesk.utils.ids import generate_id

logger = logging.getLogger(__name__)


def check_upload(data: bytes, *, max_bytes: int, label: str = "audio file") -> None:
  if not data:
    raise ValidationFailure(f"No {label} provided")
  if len(data) > max_bytes:
    raise PayloadTooLargeError(f"File exceeds the {max_bytes} byte upload limit")


async def upload_voiceover(storage: StorageClient, projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, *, data: bytes, content_type: str | None, dialogue_id: str | None, max_bytes: int) -> VoiceOverRecord:
  """Store a recording and, when a dialogue is named, attach it to that line."""
  check_upload(data, max_bytes=max_bytes)

  # Authorize against the dialogue's project before anything is written.
  if dialogue_id:
    dialogue = await dialogues_repo.get_dialogue(dialogue_id)
    if dialogue is None:
      raise NotFoundError("Dialogue not found")
    project = await projects_repo.get_project(dialogue.project_id)
    if project is None:
      raise NotFoundError("Project not found")
    ensure_can_act(user, project, VOICE_ROLES)

  object_id = generate_id()
  stored = await storage.upload_bytes(data, f"voiceovers/{object_id}", content_type=content_type or "audio/wav")
  record = await dialogues_repo.record_voiceover(VoiceOverRecord(id=object_id, key=stored.key, url=stored.url, username=user.username, dialogue_id=dialogue_id, content_type=content_type))

  if dialogue_id:
    now = datetime.now(UTC)
    await dialogues_repo.apply_dialogue_update(dialogue_id, lambda current: replace(current, voice_over_url=stored.url, recorded_audio_url=stored.url, voice_over_key=stored.key, updated_by=user.username, updated_at=now))
  logger.info("Stored voice-over %s (%s bytes) for %s", stored.key, stored.size, user.username)
  return record
