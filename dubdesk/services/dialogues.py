"""Role-scoped dialogue review and voice assignment."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from dubdesk.core.exceptions import AuthorizationError, NotFoundError, ValidationFailure
from dubdesk.pipeline.state import merge_step
from dubdesk.services.rbac import ADMIN, DIALOGUE_ROLES, DIRECTOR, SR_DIRECTOR, TRANSCRIBER, TRANSLATOR, VOICE_OVER, VOICE_ROLES, acting_role, ensure_can_act
from dubdesk.storage.dialogues_repo import DialogueRecord, DialoguesRepository
from dubdesk.storage.projects_repo import EpisodeRecord, ProjectRecord, ProjectsRepository
from dubdesk.storage.users_repo import UserRecord

logger = logging.getLogger(__name__)

VOICE_ASSIGNMENT_ROLES = (ADMIN, SR_DIRECTOR, DIRECTOR)

TEXT_FIELDS = ("original", "translated", "adapted")
# Stored in the `details` JSON column under these camelCase keys.
DETAIL_FIELDS = {
  "emotions": "emotions",
  "character_profile": "characterProfile",
  "tone": "tone",
  "lip_movements": "lipMovements",
  "technical_notes": "technicalNotes",
  "cultural_notes": "culturalNotes",
  "scenario": "scenario",
  "words": "words",
}
SCALAR_FIELDS = ("character_name", "time_start", "time_end", "status", "revision_requested", "needs_rerecord", "director_notes", "voice_over_notes", "voice_id", "ai_converted_voiceover_url")

_TIMING = {"character_name", "time_start", "time_end"}
_ALL_TEXT = {f"dialogue.{name}" for name in TEXT_FIELDS}

ROLE_FIELDS: dict[str, frozenset[str]] = {
  TRANSCRIBER: frozenset({"dialogue.original", *_TIMING, "emotions", "character_profile", "tone", "lip_movements", "technical_notes"}),
  TRANSLATOR: frozenset({"dialogue.translated", "dialogue.adapted", "cultural_notes"}),
  DIRECTOR: frozenset({*_ALL_TEXT, *_TIMING, "status", "revision_requested", "needs_rerecord", "director_notes", "voice_id", "ai_converted_voiceover_url"}),
  VOICE_OVER: frozenset({"voice_over_notes"}),
  ADMIN: frozenset({*_ALL_TEXT, *DETAIL_FIELDS, *SCALAR_FIELDS}),
}
ROLE_FIELDS[SR_DIRECTOR] = ROLE_FIELDS[DIRECTOR]

_DIRECTOR_ROLES = (DIRECTOR, SR_DIRECTOR)
# Non-null columns; a null here would clear a required value.
_REQUIRED = ("status", "revision_requested", "needs_rerecord")


def submitted_fields(changes: dict[str, Any]) -> set[str]:
  """Flatten a change set into field names, expanding nested dialogue text."""
  names: set[str] = set()
  for name, value in changes.items():
    if name == "dialogue":
      if not isinstance(value, dict):
        raise ValidationFailure("dialogue must be an object")
      unknown = set(value) - set(TEXT_FIELDS)
      if unknown:
        raise ValidationFailure("Unknown dialogue text fields", details=sorted(unknown))
      names.update(f"dialogue.{key}" for key in value)
    else:
      names.add(name)
  return names


def director_status(revision_requested: bool, needs_rerecord: bool) -> str:
  if needs_rerecord:
    return "needs-rerecord"
  if revision_requested:
    return "revision-requested"
  return "approved"


def apply_changes(record: DialogueRecord, changes: dict[str, Any], *, role: str, username: str, at: datetime | None = None) -> DialogueRecord:
  """Return `record` with a role's changes applied; raise before touching anything not allowed."""
  fields = submitted_fields(changes)
  allowed = ROLE_FIELDS.get(role, frozenset())
  forbidden = sorted(fields - allowed)
  if forbidden:
    raise AuthorizationError(f"Role '{role}' cannot update these fields", details=forbidden)
  nulls = [name for name in _REQUIRED if name in changes and changes[name] is None]
  if nulls:
    raise ValidationFailure("Fields cannot be null", details=nulls)

  dialogue = dict(record.dialogue)
  dialogue.update(changes.get("dialogue") or {})
  details = dict(record.details)
  scalars: dict[str, Any] = {}
  for name, value in changes.items():
    if name in DETAIL_FIELDS:
      details[DETAIL_FIELDS[name]] = value
    elif name in SCALAR_FIELDS:
      scalars[name] = value

  updated = replace(record, dialogue=dialogue, details=details, **scalars, updated_by=username, updated_at=at or datetime.now(UTC))
  if role in _DIRECTOR_ROLES and "status" not in changes:
    updated = replace(updated, status=director_status(updated.revision_requested, updated.needs_rerecord))
  return updated


async def _project_for_dialogue(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, dialogue_id: str, allowed_roles: tuple[str, ...]) -> tuple[DialogueRecord, ProjectRecord]:
  dialogue = await dialogues_repo.get_dialogue(dialogue_id)
  if dialogue is None:
    raise NotFoundError("Dialogue not found")
  project = await projects_repo.get_project(dialogue.project_id)
  # Unknown and foreign projects look the same to the caller.
  if project is None or acting_role(user, project, allowed_roles) is None:
    raise NotFoundError("Dialogue not found")
  return dialogue, project


async def list_episode_dialogues(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, *, database_name: str, collection_name: str) -> dict[str, Any]:
  project = await projects_repo.get_project_by_database(database_name)
  if project is None or acting_role(user, project, DIALOGUE_ROLES) is None:
    raise NotFoundError("Project not found or unauthorized")
  episode = project.find_episode(collection_name=collection_name)
  if episode is None:
    raise NotFoundError("Episode not found")
  dialogues = await dialogues_repo.list_dialogues(database_name, collection_name)
  return {"data": dialogues, "episode": episode, "project": project}


async def get_dialogue_for(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, dialogue_id: str) -> DialogueRecord:
  dialogue, _project = await _project_for_dialogue(projects_repo, dialogues_repo, user, dialogue_id, DIALOGUE_ROLES)
  return dialogue


async def update_dialogue(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, dialogue_id: str, changes: dict[str, Any]) -> DialogueRecord:
  """Apply a review save with the fields the caller's project role permits."""
  if not changes:
    raise ValidationFailure("No fields to update")
  _dialogue, project = await _project_for_dialogue(projects_repo, dialogues_repo, user, dialogue_id, DIALOGUE_ROLES)
  role = acting_role(user, project, DIALOGUE_ROLES) or ""
  updated = await dialogues_repo.apply_dialogue_update(dialogue_id, lambda current: apply_changes(current, changes, role=role, username=user.username))
  if updated is None:
    raise NotFoundError("Dialogue not found")
  logger.info("Dialogue %s updated by %s as %s", dialogue_id, user.username, role)
  return updated


async def remove_voice(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, dialogue_id: str) -> DialogueRecord:
  await _project_for_dialogue(projects_repo, dialogues_repo, user, dialogue_id, VOICE_ROLES)
  now = datetime.now(UTC)
  updated = await dialogues_repo.apply_dialogue_update(dialogue_id, lambda current: replace(current, voice_id=None, ai_converted_voiceover_url=None, updated_by=user.username, updated_at=now))
  if updated is None:
    raise NotFoundError("Dialogue not found")
  return updated


async def _episode_with_project(projects_repo: ProjectsRepository, user: UserRecord, episode_id: str) -> tuple[EpisodeRecord, ProjectRecord]:
  episode = await projects_repo.get_episode(episode_id)
  if episode is None:
    raise NotFoundError("Episode not found")
  project = await projects_repo.get_project(episode.project_id)
  if project is None:
    raise NotFoundError("Project not found")
  ensure_can_act(user, project, VOICE_ASSIGNMENT_ROLES)
  return episode, project


async def get_voice_assignments(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, episode_id: str) -> dict[str, str]:
  """Map each character to the voice set on its dialogues; later lines win."""
  episode, project = await _episode_with_project(projects_repo, user, episode_id)
  assignments: dict[str, str] = {}
  for dialogue in await dialogues_repo.list_dialogues(project.database_name, episode.collection_name):
    if dialogue.character_name and dialogue.voice_id:
      assignments[dialogue.character_name] = dialogue.voice_id
  return assignments


async def assign_voice(projects_repo: ProjectsRepository, dialogues_repo: DialoguesRepository, user: UserRecord, episode_id: str, *, character_name: str, voice_id: str, dialogue_ids: list[str] | None = None) -> int:
  episode, project = await _episode_with_project(projects_repo, user, episode_id)
  matched = await dialogues_repo.assign_voice(project.database_name, episode.collection_name, voice_id, dialogue_ids=dialogue_ids or None, character_name=character_name, updated_by=user.username)

  def _mark(current: EpisodeRecord) -> EpisodeRecord:
    assignments = dict((current.steps.get("voiceAssignment") or {}).get("assignments") or {})
    assignments[character_name] = voice_id
    return merge_step(current, "voiceAssignment", {"status": "completed", "assignments": assignments})

  await projects_repo.apply_episode_update(episode_id, _mark)
  logger.info("Assigned voice %s to %s on %s dialogues of episode %s", voice_id, character_name, matched, episode_id)
  return matched
