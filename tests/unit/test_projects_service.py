from __future__ import annotations

import pytest

from dubdesk.core.exceptions import ConflictError, NotFoundError, ValidationFailure
from dubdesk.services import projects as project_service
from dubdesk.utils.ids import collection_name_for, database_name_for
from tests.support import InMemoryProjectsRepo, InMemoryUsersRepo, make_dialogue, make_project, make_user


def test_namespace_names_derive_from_title() -> None:
  assert database_name_for("Star Quest: Rise!") == "star_quest__rise__db"
  assert collection_name_for("star_quest_db", 3) == "star_quest_Ep_03"


@pytest.mark.anyio
async def test_create_project_numbers_episodes() -> None:
  repo = InMemoryProjectsRepo()

  project = await project_service.create_project(repo, title="Star Quest", source_language="en", target_language="es", episode_names=["Pilot", " Finale "])

  assert project.database_name == "star_quest_db"
  assert [(episode.name, episode.collection_name) for episode in project.episodes] == [("Pilot", "star_quest_Ep_01"), ("Finale", "star_quest_Ep_02")]
  with pytest.raises(ConflictError):
    await project_service.create_project(repo, title="star quest", source_language="en", target_language="fr")


@pytest.mark.anyio
async def test_duplicate_episode_names_are_rejected() -> None:
  with pytest.raises(ValidationFailure):
    await project_service.create_project(InMemoryProjectsRepo(), title="Dup", source_language="en", target_language="es", episode_names=["A", "A"])


@pytest.mark.anyio
async def test_added_episodes_continue_numbering() -> None:
  repo = InMemoryProjectsRepo()
  project = await project_service.create_project(repo, title="Show", source_language="en", target_language="es", episode_names=["One", "Two"])

  updated = await project_service.add_episodes(repo, project.id, ["Three"])

  assert updated.episodes[-1].collection_name == "show_Ep_03"
  with pytest.raises(ConflictError):
    await project_service.add_episodes(repo, project.id, ["One"])


@pytest.mark.anyio
async def test_assign_users_uses_each_users_role_once() -> None:
  projects = InMemoryProjectsRepo()
  users = InMemoryUsersRepo()
  users.add(make_user("alice", "translator"))
  users.add(make_user("dana", "director"))
  project = await projects.create_project(make_project("p1", title="Show"))

  await project_service.assign_users(projects, users, project.id, ["alice"])
  updated = await project_service.assign_users(projects, users, project.id, ["alice", "dana"])

  assert [(entry.username, entry.role) for entry in updated.assigned_to] == [("alice", "translator"), ("dana", "director")]
  with pytest.raises(NotFoundError) as excinfo:
    await project_service.assign_users(projects, users, project.id, ["ghost"])
  assert excinfo.value.details == ["ghost"]


def test_compute_progress_rounds_percentages() -> None:
  project = make_project("p1", title="Show")
  dialogues = [make_dialogue(f"d{n}", project, index=n) for n in range(3)]
  dialogues[0].dialogue["translated"] = "Hola"
  dialogues[0].status = "approved"
  dialogues[1].voice_over_url = "https://media/take.wav"

  progress = project_service.compute_progress(project, dialogues)

  assert progress["transcribed"] == 100
  assert progress["translated"] == 33
  assert progress["voiceOver"] == 33
  assert progress["approved"] == 33
  assert progress["total"] == 3


def test_compute_progress_handles_empty_episode() -> None:
  assert project_service.compute_progress(make_project("p1", title="Show"), [])["translated"] == 0
