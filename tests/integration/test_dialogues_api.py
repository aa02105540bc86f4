from __future__ import annotations

from dataclasses import replace

import pytest

from tests.support import make_dialogue, make_project, make_user


@pytest.fixture
async def seeded(projects_repo, dialogues_repo):
  """Two projects: alice translates on Show, bob directs on Other."""
  show = make_project("p-show", title="Show", members=[("alice", "translator"), ("dana", "director"), ("vic", "voiceOver")])
  other = make_project("p-other", title="Other", members=[("bob", "director")])
  await projects_repo.create_project(show)
  await projects_repo.create_project(other)
  await dialogues_repo.insert_dialogues([
    make_dialogue("d2", show, index=2, character_name="Ben", original="Bye"),
    make_dialogue("d1", show, index=1, character_name="Ana", original="Hello"),
    make_dialogue("x1", other, index=1),
  ])
  return show, other


@pytest.mark.anyio
async def test_list_dialogues_orders_by_index(api_client, current_user, seeded) -> None:
  show, _other = seeded
  current_user.user = make_user("alice", "translator")

  response = await api_client.get("/api/dialogues", params={"databaseName": show.database_name, "collectionName": show.episodes[0].collection_name})

  assert response.status_code == 200
  body = response.json()
  assert [item["_id"] for item in body["data"]] == ["d1", "d2"]
  assert body["project"] == {"_id": "p-show", "title": "Show", "sourceLanguage": "en", "targetLanguage": "es"}
  assert body["episode"] == {"name": "Episode 1", "status": "uploaded"}
  assert body["data"][0]["dialogue"] == {"original": "Hello", "translated": None, "adapted": None}
  assert body["data"][0]["needsReRecord"] is False


@pytest.mark.anyio
async def test_other_tenants_dialogues_are_hidden(api_client, current_user, seeded) -> None:
  _show, other = seeded
  current_user.user = make_user("alice", "translator")

  listing = await api_client.get("/api/dialogues", params={"databaseName": other.database_name, "collectionName": other.episodes[0].collection_name})
  single = await api_client.get("/api/dialogues/x1")
  project = await api_client.get(f"/api/projects/{other.id}")

  assert listing.status_code == 404
  assert listing.json()["error"] == "Project not found or unauthorized"
  assert single.status_code == 404
  assert project.status_code == 403


@pytest.mark.anyio
async def test_list_requires_both_namespace_params(api_client, current_user, seeded) -> None:
  current_user.user = make_user("alice", "translator")

  response = await api_client.get("/api/dialogues", params={"databaseName": "show_db"})

  assert response.status_code == 400
  assert response.json()["error"] == "Invalid request"


@pytest.mark.anyio
async def test_translator_save_round_trips(api_client, current_user, seeded) -> None:
  current_user.user = make_user("alice", "translator")

  saved = await api_client.patch("/api/dialogues/d1", json={"dialogue": {"translated": "Hola"}, "culturalNotes": "informal"})
  fetched = await api_client.get("/api/dialogues/d1")

  assert saved.status_code == 200
  assert saved.json()["dialogue"]["translated"] == "Hola"
  assert saved.json()["updatedBy"] == "alice"
  assert fetched.json()["dialogue"] == {"original": "Hello", "translated": "Hola", "adapted": None}
  assert fetched.json()["culturalNotes"] == "informal"


@pytest.mark.anyio
async def test_translator_cannot_approve(api_client, current_user, dialogues_repo, seeded) -> None:
  current_user.user = make_user("alice", "translator")

  response = await api_client.patch("/api/dialogues/d1", json={"status": "approved"})

  assert response.status_code == 403
  assert response.json()["details"] == ["status"]
  assert (await dialogues_repo.get_dialogue("d1")).status == "pending"


@pytest.mark.anyio
async def test_director_review_flags_update_status(api_client, current_user, seeded) -> None:
  current_user.user = make_user("dana", "director")

  response = await api_client.patch("/api/dialogues/d2", json={"revisionRequested": True, "directorNotes": "slower"})

  assert response.status_code == 200
  assert response.json()["status"] == "revision-requested"
  assert response.json()["revisionRequested"] is True


@pytest.mark.anyio
async def test_empty_save_is_rejected(api_client, current_user, seeded) -> None:
  current_user.user = make_user("dana", "director")

  response = await api_client.patch("/api/dialogues/d2", json={})

  assert response.status_code == 400
  assert response.json()["error"] == "No fields to update"


@pytest.mark.anyio
async def test_unknown_field_is_rejected(api_client, current_user, seeded) -> None:
  current_user.user = make_user("dana", "director")

  response = await api_client.patch("/api/dialogues/d2", json={"projectId": "p-other"})

  assert response.status_code == 400


@pytest.mark.anyio
async def test_assign_and_read_voice_map(api_client, current_user, projects_repo, seeded) -> None:
  show, _other = seeded
  episode_id = show.episodes[0].id
  current_user.user = make_user("dana", "director")

  assigned = await api_client.post(f"/api/episodes/{episode_id}/voice-assignments", json={"characterName": "Ana", "voiceId": "voice-ana"})
  voices = await api_client.get(f"/api/episodes/{episode_id}/voice-assignments")

  assert assigned.status_code == 200
  assert assigned.json()["updated"] == 1
  assert voices.json() == {"Ana": "voice-ana"}
  stored = await projects_repo.get_episode(episode_id)
  assert stored.steps["voiceAssignment"]["status"] == "completed"
  assert stored.steps["voiceAssignment"]["assignments"] == {"Ana": "voice-ana"}


@pytest.mark.anyio
async def test_voice_over_cannot_assign_voices(api_client, current_user, seeded) -> None:
  show, _other = seeded
  current_user.user = make_user("vic", "voiceOver")

  response = await api_client.post(f"/api/episodes/{show.episodes[0].id}/voice-assignments", json={"characterName": "Ana", "voiceId": "v"})

  assert response.status_code == 403


@pytest.mark.anyio
async def test_remove_voice_clears_assignment(api_client, current_user, dialogues_repo, seeded) -> None:
  current_user.user = make_user("dana", "director")
  await dialogues_repo.apply_dialogue_update("d1", lambda current: replace(current, voice_id="v1", ai_converted_voiceover_url="https://media.test/ai.wav"))

  response = await api_client.post("/api/dialogues/d1/remove-voice")

  assert response.status_code == 200
  assert response.json()["voiceId"] is None
  assert response.json()["ai_converted_voiceover_url"] is None


@pytest.mark.anyio
async def test_my_projects_lists_only_assignments(api_client, current_user, seeded) -> None:
  current_user.user = make_user("alice", "translator")

  response = await api_client.get("/api/projects")

  assert response.status_code == 200
  assert [project["_id"] for project in response.json()] == ["p-show"]
