"""Storage interfaces for projects and their embedded episodes."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class AssignedUser:
  """One project membership entry."""

  username: str
  role: str


@dataclass
class EpisodeRecord:
  """One unit of media moving through the dubbing pipeline."""

  id: str
  project_id: str
  name: str
  collection_name: str
  status: str = "uploaded"
  step: int = 1
  steps: dict[str, Any] = field(default_factory=dict)
  video_path: str | None = None
  video_key: str | None = None
  error_detail: str | None = None
  uploaded_at: datetime | None = None
  position: int = 0


@dataclass
class ProjectRecord:
  """A localization project with its members and episodes."""

  id: str
  title: str
  source_language: str
  target_language: str
  database_name: str
  status: str = "pending"
  description: str | None = None
  assigned_to: list[AssignedUser] = field(default_factory=list)
  episodes: list[EpisodeRecord] = field(default_factory=list)
  created_at: datetime | None = None
  updated_at: datetime | None = None

  def find_episode(self, *, episode_id: str | None = None, name: str | None = None, collection_name: str | None = None) -> EpisodeRecord | None:
    """Return the first episode matching every given selector."""
    for episode in self.episodes:
      if episode_id is not None and episode.id != episode_id:
        continue
      if name is not None and episode.name != name:
        continue
      if collection_name is not None and episode.collection_name != collection_name:
        continue
      return episode
    return None


EpisodeMutation = Callable[[EpisodeRecord], EpisodeRecord]


class ProjectsRepository(Protocol):
  """Repository contract for project and episode persistence."""

  async def create_project(self, record: ProjectRecord) -> ProjectRecord:
    """Persist a project together with its initial episodes."""

  async def get_project(self, project_id: str) -> ProjectRecord | None:
    """Fetch a project with embedded episodes."""

  async def get_project_by_database(self, database_name: str) -> ProjectRecord | None:
    """Fetch the project owning a dialogue namespace."""

  async def list_projects(self, *, username: str | None = None, role: str | None = None) -> list[ProjectRecord]:
    """List projects, optionally limited to those assigned to `username` (and `role`)."""

  async def update_project(self, project_id: str, **fields: Any) -> ProjectRecord | None:
    """Apply partial updates to project columns (title, description, status, languages, assigned_to)."""

  async def delete_project(self, project_id: str) -> bool:
    """Delete a project; episodes and dialogues cascade."""

  async def add_episodes(self, project_id: str, episodes: list[EpisodeRecord]) -> ProjectRecord | None:
    """Append episodes to an existing project."""

  async def get_episode(self, episode_id: str) -> EpisodeRecord | None:
    """Fetch one episode by identifier."""

  async def apply_episode_update(self, episode_id: str, mutate: EpisodeMutation) -> EpisodeRecord | None:
    """Atomically read, transform and write one episode.

    The read and the write happen under a row lock, so `mutate` may check
    preconditions and raise to abort without writing anything. Returns None
    when the episode does not exist.
    """
