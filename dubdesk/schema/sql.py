from __future__ import annotations

import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dubdesk.core.database import Base
from dubdesk.schema.queue import QueueJob  # noqa: F401


class UserRole(str, Enum):
  TRANSCRIBER = "transcriber"
  TRANSLATOR = "translator"
  DIRECTOR = "director"
  SR_DIRECTOR = "srDirector"
  VOICE_OVER = "voiceOver"
  ADMIN = "admin"


class ProjectStatus(str, Enum):
  PENDING = "pending"
  IN_PROGRESS = "in-progress"
  COMPLETED = "completed"
  ON_HOLD = "on-hold"


class EpisodeStatus(str, Enum):
  UPLOADED = "uploaded"
  CLEANING = "cleaning"
  PROCESSING = "processing"
  ERROR = "error"
  COMPLETED = "completed"


class DialogueStatus(str, Enum):
  PENDING = "pending"
  APPROVED = "approved"
  REVISION_REQUESTED = "revision-requested"
  NEEDS_RERECORD = "needs-rerecord"


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
  email: Mapped[str | None] = mapped_column(String, nullable=True)
  role: Mapped[str] = mapped_column(String, nullable=False)
  firebase_uid: Mapped[str | None] = mapped_column(String, unique=True, nullable=True, index=True)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  source_language: Mapped[str] = mapped_column(String, nullable=False)
  target_language: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default=ProjectStatus.PENDING.value)
  database_name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
  # List of {"username", "role"} entries; membership checks scan it.
  assigned_to: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb"))
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Episode(Base):
  __tablename__ = "episodes"
  __table_args__ = (UniqueConstraint("project_id", "name", name="ux_episodes_project_name"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  name: Mapped[str] = mapped_column(String, nullable=False)
  collection_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
  video_path: Mapped[str | None] = mapped_column(Text, nullable=True)
  video_key: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default=EpisodeStatus.UPLOADED.value)
  step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  steps: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default=text("'{}'::jsonb"))
  error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
  uploaded_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Dialogue(Base):
  __tablename__ = "dialogues"
  __table_args__ = (Index("ix_dialogues_namespace", "database_name", "collection_name", "index"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  database_name: Mapped[str] = mapped_column(String, nullable=False)
  collection_name: Mapped[str] = mapped_column(String, nullable=False)
  dialogue_number: Mapped[str | None] = mapped_column(String, nullable=True)
  scene_number: Mapped[str | None] = mapped_column(String, nullable=True)
  index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  subtitle_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
  time_start: Mapped[str | None] = mapped_column(String, nullable=True)
  time_end: Mapped[str | None] = mapped_column(String, nullable=True)
  character_name: Mapped[str | None] = mapped_column(String, nullable=True)
  # {"original", "translated", "adapted"}
  dialogue: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  status: Mapped[str] = mapped_column(String, nullable=False, default=DialogueStatus.PENDING.value)
  revision_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  needs_rerecord: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  director_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
  voice_over_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
  voice_id: Mapped[str | None] = mapped_column(String, nullable=True)
  recorded_audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  voice_over_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  voice_over_key: Mapped[str | None] = mapped_column(Text, nullable=True)
  ai_converted_voiceover_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  # emotions, characterProfile, tone, lipMovements, notes, scenario, words
  details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default=text("'{}'::jsonb"))
  updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
  updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class VoiceOver(Base):
  __tablename__ = "voiceovers"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
  url: Mapped[str] = mapped_column(Text, nullable=False)
  username: Mapped[str] = mapped_column(String, nullable=False, index=True)
  dialogue_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  content_type: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
