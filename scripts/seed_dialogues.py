"""Import dialogue lines for one episode from a JSON file.

Usage::

    python scripts/seed_dialogues.py --project <project-id> --episode "Episode 1" dialogues.json

The file holds a list of objects using the API field names (``characterName``,
``timeStart``, ``dialogue.original`` ...). Lines are stored in file order.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from dubdesk.core.database import dispose_engine, require_session_factory
from dubdesk.storage.dialogues_repo import DialogueRecord
from dubdesk.storage.postgres_dialogues_repo import PostgresDialoguesRepository
from dubdesk.storage.postgres_projects_repo import PostgresProjectsRepository
from dubdesk.utils.ids import generate_id

logger = logging.getLogger("scripts.seed_dialogues")

_DETAIL_KEYS = ("emotions", "characterProfile", "tone", "lipMovements", "technicalNotes", "culturalNotes", "scenario", "words")


def _optional_int(raw: Any) -> int | None:
  if raw is None or raw == "":
    return None
  return int(raw)


def build_records(entries: list[dict[str, Any]], *, project_id: str, database_name: str, collection_name: str) -> list[DialogueRecord]:
  """Convert raw JSON entries into dialogue records for one collection."""
  records: list[DialogueRecord] = []
  for position, entry in enumerate(entries):
    text = entry.get("dialogue") or {}
    if isinstance(text, str):
      text = {"original": text}
    records.append(
      DialogueRecord(
        id=entry.get("_id") or generate_id(),
        project_id=project_id,
        database_name=database_name,
        collection_name=collection_name,
        index=int(entry.get("index", position)),
        dialogue_number=entry.get("dialogNumber") or entry.get("dialogueNumber"),
        scene_number=entry.get("sceneNumber"),
        subtitle_index=_optional_int(entry.get("subtitleIndex")),
        time_start=entry.get("timeStart"),
        time_end=entry.get("timeEnd"),
        character_name=entry.get("characterName"),
        dialogue={"original": text.get("original", ""), "translated": text.get("translated", ""), "adapted": text.get("adapted", "")},
        details={key: entry[key] for key in _DETAIL_KEYS if key in entry},
      )
    )
  return records


async def seed(path: Path, *, project_id: str, episode_name: str) -> int:
  # Fail before reading the file when no database is configured.
  require_session_factory()
  entries = json.loads(path.read_text(encoding="utf-8"))
  if not isinstance(entries, list):
    raise ValueError(f"{path} must contain a JSON list of dialogues.")

  project = await PostgresProjectsRepository().get_project(project_id)
  if project is None:
    raise RuntimeError(f"Project {project_id} not found.")
  episode = project.find_episode(name=episode_name)
  if episode is None:
    raise RuntimeError(f"Episode {episode_name!r} not found in project {project_id}.")

  records = build_records(entries, project_id=project.id, database_name=project.database_name, collection_name=episode.collection_name)
  inserted = await PostgresDialoguesRepository().insert_dialogues(records)
  logger.info("Inserted %s dialogues into %s/%s", inserted, project.database_name, episode.collection_name)
  return inserted


async def _run(args: argparse.Namespace) -> None:
  try:
    await seed(args.file, project_id=args.project, episode_name=args.episode)
  finally:
    await dispose_engine()


def main(argv: list[str] | None = None) -> None:
  logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
  parser = argparse.ArgumentParser(description="Seed dialogues for an episode from a JSON file.")
  parser.add_argument("file", type=Path, help="JSON file with a list of dialogues.")
  parser.add_argument("--project", required=True, help="Project id.")
  parser.add_argument("--episode", required=True, help="Episode name, e.g. 'Episode 1'.")
  asyncio.run(_run(parser.parse_args(argv)))


if __name__ == "__main__":
  main()
