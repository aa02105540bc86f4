"""Postgres-backed repository for dialogues using SQLAlchemy."""

from __future__ import annotations

import copy
from dataclasses import fields as dataclass_fields
from datetime import UTC, datetime

from sqlalchemy import select, update

from dubdesk.core.database import require_session_factory
from dubdesk.core.exceptions import ValidationFailure
from dubdesk.schema.sql import Dialogue, VoiceOver
from dubdesk.storage.dialogues_repo import DialogueMutation, DialogueRecord, DialoguesRepository, VoiceOverRecord

# Identity and namespace columns never change after insert.
_IMMUTABLE = {"id", "project_id", "database_name", "collection_name"}
_COLUMNS = tuple(item.name for item in dataclass_fields(DialogueRecord))


class PostgresDialoguesRepository(DialoguesRepository):
  """Persist dialogues to the `dialogues` table."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def list_dialogues(self, database_name: str, collection_name: str) -> list[DialogueRecord]:
    async with self._session_factory() as session:
      stmt = select(Dialogue).where(Dialogue.database_name == database_name, Dialogue.collection_name == collection_name).order_by(Dialogue.index, Dialogue.id)
      return [self._model_to_record(row) for row in (await session.execute(stmt)).scalars()]

  async def list_for_project(self, project_id: str) -> list[DialogueRecord]:
    async with self._session_factory() as session:
      stmt = select(Dialogue).where(Dialogue.project_id == project_id).order_by(Dialogue.collection_name, Dialogue.index)
      return [self._model_to_record(row) for row in (await session.execute(stmt)).scalars()]

  async def get_dialogue(self, dialogue_id: str) -> DialogueRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Dialogue, dialogue_id)
      return self._model_to_record(row) if row is not None else None

  async def apply_dialogue_update(self, dialogue_id: str, mutate: DialogueMutation) -> DialogueRecord | None:
    async with self._session_factory() as session:
      async with session.begin():
        row = (await session.execute(select(Dialogue).where(Dialogue.id == dialogue_id).with_for_update())).scalar_one_or_none()
        if row is None:
          return None
        current = self._model_to_record(row)
        updated = mutate(current)
        for name in _COLUMNS:
          if name in _IMMUTABLE:
            continue
          value = getattr(updated, name)
          if value != getattr(current, name):
            setattr(row, name, value)
      return self._model_to_record(row)

  async def insert_dialogues(self, records: list[DialogueRecord]) -> int:
    if not records:
      return 0
    async with self._session_factory() as session:
      session.add_all([Dialogue(**{name: getattr(record, name) for name in _COLUMNS}) for record in records])
      await session.commit()
      return len(records)

  async def assign_voice(self, database_name: str, collection_name: str, voice_id: str, *, dialogue_ids: list[str] | None = None, character_name: str | None = None, updated_by: str | None = None) -> int:
    stmt = update(Dialogue).where(Dialogue.database_name == database_name, Dialogue.collection_name == collection_name)
    if dialogue_ids:
      stmt = stmt.where(Dialogue.id.in_(dialogue_ids))
    elif character_name:
      stmt = stmt.where(Dialogue.character_name == character_name)
    else:
      raise ValidationFailure("Either dialogueIds or characterName is required")
    async with self._session_factory() as session:
      result = await session.execute(stmt.values(voice_id=voice_id, updated_by=updated_by, updated_at=datetime.now(UTC)))
      await session.commit()
      return int(result.rowcount or 0)

  async def record_voiceover(self, record: VoiceOverRecord) -> VoiceOverRecord:
    async with self._session_factory() as session:
      row = VoiceOver(id=record.id, key=record.key, url=record.url, username=record.username, dialogue_id=record.dialogue_id, content_type=record.content_type)
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return VoiceOverRecord(id=row.id, key=row.key, url=row.url, username=row.username, dialogue_id=row.dialogue_id, content_type=row.content_type, created_at=row.created_at)

  @staticmethod
  def _model_to_record(row: Dialogue) -> DialogueRecord:
    values = {name: getattr(row, name) for name in _COLUMNS}
    # Copy JSON columns so callers can mutate records freely.
    values["dialogue"] = copy.deepcopy(row.dialogue or {})
    values["details"] = copy.deepcopy(row.details or {})
    return DialogueRecord(**values)
