from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr
from pydantic.alias_generators import to_camel

from dubdesk.jobs.models import QueueJobRecord
from dubdesk.storage.dialogues_repo import DialogueRecord
from dubdesk.storage.projects_repo import EpisodeRecord, ProjectRecord
from dubdesk.storage.users_repo import UserRecord

RoleName = Literal["transcriber", "translator", "director", "srDirector", "voiceOver", "admin"]
ProjectStatusName = Literal["pending", "in-progress", "completed", "on-hold"]
DialogueStatusName = Literal["pending", "approved", "revision-requested", "needs-rerecord"]


class CamelModel(BaseModel):
  """Base model that speaks camelCase on the wire and snake_case in Python."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssignedUserOut(CamelModel):
  username: str
  role: str


class EpisodeOut(CamelModel):
  id: str = Field(alias="_id")
  name: str
  collection_name: str
  video_path: str | None = None
  video_key: str | None = None
  status: str
  step: int
  steps: dict[str, Any]
  error_detail: str | None = None
  uploaded_at: datetime | None = None

  @classmethod
  def from_record(cls, record: EpisodeRecord) -> EpisodeOut:
    return cls(
      id=record.id,
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


class ProjectOut(CamelModel):
  id: str = Field(alias="_id")
  title: str
  description: str | None = None
  source_language: str
  target_language: str
  status: str
  database_name: str
  assigned_to: list[AssignedUserOut]
  episodes: list[EpisodeOut]
  created_at: datetime | None = None
  updated_at: datetime | None = None

  @classmethod
  def from_record(cls, record: ProjectRecord) -> ProjectOut:
    return cls(
      id=record.id,
      title=record.title,
      description=record.description,
      source_language=record.source_language,
      target_language=record.target_language,
      status=record.status,
      database_name=record.database_name,
      assigned_to=[AssignedUserOut(username=entry.username, role=entry.role) for entry in record.assigned_to],
      episodes=[EpisodeOut.from_record(episode) for episode in record.episodes],
      created_at=record.created_at,
      updated_at=record.updated_at,
    )


class ProjectCreate(CamelModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  title: StrictStr = Field(min_length=1, max_length=200)
  source_language: StrictStr = Field(min_length=1)
  target_language: StrictStr = Field(min_length=1)
  description: StrictStr | None = None
  episodes: list[StrictStr] = Field(default_factory=list, description="Episode names in order.")


class ProjectUpdate(CamelModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  title: StrictStr | None = Field(default=None, min_length=1, max_length=200)
  description: StrictStr | None = None
  status: ProjectStatusName | None = None
  source_language: StrictStr | None = Field(default=None, min_length=1)
  target_language: StrictStr | None = Field(default=None, min_length=1)


class EpisodesAdd(CamelModel):
  episodes: list[StrictStr] = Field(min_length=1)


class AssignRequest(CamelModel):
  usernames: list[StrictStr] = Field(min_length=1)


class ProgressOut(CamelModel):
  transcribed: int
  translated: int
  voice_over: int
  approved: int
  total: int
  last_updated: datetime | None = None


class DialogueText(BaseModel):
  original: str | None = None
  translated: str | None = None
  adapted: str | None = None


class DialogueTextUpdate(BaseModel):
  model_config = ConfigDict(extra="forbid")

  original: StrictStr | None = None
  translated: StrictStr | None = None
  adapted: StrictStr | None = None


class DialogueOut(CamelModel):
  id: str = Field(alias="_id")
  project_id: str
  database_name: str
  collection_name: str
  dialogue_number: str | None = None
  scene_number: str | None = None
  index: int
  subtitle_index: int | None = None
  time_start: str | None = None
  time_end: str | None = None
  character_name: str | None = None
  dialogue: DialogueText
  status: str
  revision_requested: bool
  needs_rerecord: bool = Field(alias="needsReRecord")
  director_notes: str | None = None
  voice_over_notes: str | None = None
  voice_id: str | None = None
  recorded_audio_url: str | None = None
  voice_over_url: str | None = None
  voice_over_key: str | None = None
  ai_converted_voiceover_url: str | None = Field(default=None, alias="ai_converted_voiceover_url")
  emotions: Any = None
  character_profile: Any = None
  tone: Any = None
  lip_movements: Any = None
  technical_notes: Any = None
  cultural_notes: Any = None
  scenario: Any = None
  words: Any = None
  updated_at: datetime | None = None
  updated_by: str | None = None

  @classmethod
  def from_record(cls, record: DialogueRecord) -> DialogueOut:
    details = record.details
    return cls(
      id=record.id,
      project_id=record.project_id,
      database_name=record.database_name,
      collection_name=record.collection_name,
      dialogue_number=record.dialogue_number,
      scene_number=record.scene_number,
      index=record.index,
      subtitle_index=record.subtitle_index,
      time_start=record.time_start,
      time_end=record.time_end,
      character_name=record.character_name,
      dialogue=DialogueText(**{key: record.dialogue.get(key) for key in ("original", "translated", "adapted")}),
      status=record.status,
      revision_requested=record.revision_requested,
      needs_rerecord=record.needs_rerecord,
      director_notes=record.director_notes,
      voice_over_notes=record.voice_over_notes,
      voice_id=record.voice_id,
      recorded_audio_url=record.recorded_audio_url,
      voice_over_url=record.voice_over_url,
      voice_over_key=record.voice_over_key,
      ai_converted_voiceover_url=record.ai_converted_voiceover_url,
      emotions=details.get("emotions"),
      character_profile=details.get("characterProfile"),
      tone=details.get("tone"),
      lip_movements=details.get("lipMovements"),
      technical_notes=details.get("technicalNotes"),
      cultural_notes=details.get("culturalNotes"),
      scenario=details.get("scenario"),
      words=details.get("words"),
      updated_at=record.updated_at,
      updated_by=record.updated_by,
    )


class DialogueUpdate(CamelModel):
  """Fields a reviewer may submit; which ones are accepted depends on the role."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  dialogue: DialogueTextUpdate | None = None
  character_name: StrictStr | None = None
  time_start: StrictStr | None = None
  time_end: StrictStr | None = None
  status: DialogueStatusName | None = None
  revision_requested: bool | None = None
  needs_rerecord: bool | None = Field(default=None, alias="needsReRecord")
  director_notes: StrictStr | None = None
  voice_over_notes: StrictStr | None = None
  voice_id: StrictStr | None = None
  ai_converted_voiceover_url: StrictStr | None = Field(default=None, alias="ai_converted_voiceover_url")
  emotions: Any = None
  character_profile: Any = None
  tone: Any = None
  lip_movements: Any = None
  technical_notes: Any = None
  cultural_notes: Any = None
  scenario: Any = None
  words: Any = None


class EpisodeSummary(CamelModel):
  name: str
  status: str


class ProjectSummary(CamelModel):
  id: str = Field(alias="_id")
  title: str
  source_language: str
  target_language: str


class DialogueListResponse(CamelModel):
  data: list[DialogueOut]
  episode: EpisodeSummary
  project: ProjectSummary


class VoiceAssignmentRequest(CamelModel):
  character_name: StrictStr = Field(min_length=1)
  voice_id: StrictStr = Field(min_length=1)
  dialogue_ids: list[StrictStr] | None = None


class UserOut(CamelModel):
  id: str
  username: str
  email: str | None = None
  role: str
  is_active: bool
  created_at: datetime | None = None

  @classmethod
  def from_record(cls, record: UserRecord) -> UserOut:
    return cls(id=record.id, username=record.username, email=record.email, role=record.role, is_active=record.is_active, created_at=record.created_at)


class UserCreate(CamelModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  username: StrictStr = Field(min_length=1, max_length=100)
  role: RoleName
  email: StrictStr | None = None
  firebase_uid: StrictStr | None = None


class UserUpdate(CamelModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  role: RoleName | None = None
  is_active: bool | None = None
  email: StrictStr | None = None
  firebase_uid: StrictStr | None = None


class QueueJobOut(CamelModel):
  id: str
  queue_name: str
  name: str
  data: dict[str, Any]
  status: str
  progress: int
  attempts_made: int
  max_attempts: int
  failed_reason: str | None = None
  return_value: dict[str, Any] | None = None
  available_at: datetime
  created_at: datetime
  processed_at: datetime | None = None
  finished_at: datetime | None = None

  @classmethod
  def from_record(cls, record: QueueJobRecord) -> QueueJobOut:
    return cls(
      id=record.id,
      queue_name=record.queue_name,
      name=record.name,
      data=record.data,
      status=record.status,
      progress=record.progress,
      attempts_made=record.attempts_made,
      max_attempts=record.max_attempts,
      failed_reason=record.failed_reason,
      return_value=record.return_value,
      available_at=record.available_at,
      created_at=record.created_at,
      processed_at=record.processed_at,
      finished_at=record.finished_at,
    )


class CleanupRequest(CamelModel):
  grace_ms: int = Field(default=24 * 3600 * 1000, ge=0)
  limit: int | None = Field(default=None, gt=0)


class UploadResponse(CamelModel):
  url: str
  key: str
