"""Storage interfaces for dialogues and uploaded voice-over recordings."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass
class DialogueRecord:
  """One timed line of an episode with its text variants and review state."""

  id: str
  project_id: str
  database_name: str
  collection_name: str
  index: int = 0
  dialogue_number: str | None = None
  scene_number: str | None = None
  subtitle_index: int | None = None
  time_start: str | None = None
  time_end: str | None = None
  character_name: str | None = None
  # {"original", "translated", "adapted"}
  dialogue: dict[str, Any] = field(default_factory=dict)
  status: str = "pending"
  revision_requested: bool = False
  needs_rerecord: bool = False
  director_notes: str | None = None
  voice_over_notes: str | None = None
  voice_id: str | None = None
  recorded_audio_url: str | None = None
  voice_over_url: str | None = None
  voice_over_key: str | None = None
  ai_converted_voiceover_url: str | None = None
  # emotions, characterProfile, tone, lipMovements, technicalNotes, culturalNotes, scenario, words
  details: dict[str, Any] = field(default_factory=dict)
  updated_by: str | None = None
  updated_at: datetime | None = None


@dataclass
class VoiceOverRecord:
  """An uploaded voice-over object."""

  id: str
  key: str
  url: str
  username: str
  dialogue_id: str | None = None
  content_type: str | None = None
  created_at: datetime | None = None


DialogueMutation = Callable[[DialogueRecord], DialogueRecord]


class DialoguesRepository(Protocol):
  """Repository contract for dialogue persistence."""

  async def list_dialogues(self, database_name: str, collection_name: str) -> list[DialogueRecord]:
    """List an episode's dialogues ordered by index."""

  async def list_for_project(self, project_id: str) -> list[DialogueRecord]:
    """List every dialogue of a project."""

  async def get_dialogue(self, dialogue_id: str) -> DialogueRecord | None:
    """Fetch one dialogue by identifier."""

  async def apply_dialogue_update(self, dialogue_id: str, mutate: DialogueMutation) -> DialogueRecord | None:
    """Atomically read, transform and write one dialogue; None when it does not exist."""

  async def insert_dialogues(self, records: list[DialogueRecord]) -> int:
    """Insert dialogues, returning how many were written."""

  async def assign_voice(self, database_name: str, collection_name: str, voice_id: str, *, dialogue_ids: list[str] | None = None, character_name: str | None = None, updated_by: str | None = None) -> int:
    """Set `voice_id` on dialogues selected by id or character name; returns the match count."""

  async def record_voiceover(self, record: VoiceOverRecord) -> VoiceOverRecord:
    """Persist an uploaded voice-over row."""
