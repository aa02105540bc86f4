"""ORM tables; importing this package registers them on Base.metadata."""

from .queue import QueueJob
from .sql import Dialogue, DialogueStatus, Episode, EpisodeStatus, Project, ProjectStatus, User, UserRole, VoiceOver

__all__ = ["Dialogue", "DialogueStatus", "Episode", "EpisodeStatus", "Project", "ProjectStatus", "QueueJob", "User", "UserRole", "VoiceOver"]
