from . import admin, dialogues, episodes, projects, queue, users, voice_over

__all__ = ["admin", "dialogues", "episodes", "projects", "queue", "users", "voice_over"]
