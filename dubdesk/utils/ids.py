"""Identifier utilities."""

from __future__ import annotations

import re
import uuid

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def generate_id() -> str:
  """Return a new document identifier."""
  return str(uuid.uuid4())


def generate_job_id() -> str:
  """Return a new queue job identifier."""
  return str(uuid.uuid4())


def database_name_for(title: str) -> str:
  """Derive the dialogue namespace for a project title."""
  sanitized = _NON_ALNUM.sub("_", title.strip().lower())
  return f"{sanitized}_db"


def collection_name_for(database_name: str, episode_number: int) -> str:
  """Return the dialogue collection name for the N-th episode of a project."""
  base = database_name.removesuffix("_db")
  return f"{base}_Ep_{episode_number:02d}"
