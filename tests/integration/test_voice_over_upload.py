from __future__ import annotations

import pytest

from tests.support import make_dialogue, make_project, make_user


@pytest.fixture
async def dialogue(projects_repo, dialogues_repo):
  project = make_project("p1", title="Show", members=[("vic", "voiceOver"), ("alice", "translator")])
  await projects_repo.create_project(project)
  record = make_dialogue("d1", project)
  await dialogues_repo.insert_dialogues([record])
  return record


@pytest.mark.anyio
async def test_upload_attaches_recording_to_dialogue(api_client, current_user, dialogues_repo, storage, dialogue) -> None:
  current_user.user = make_user("vic", "voiceOver")

  response = await api_client.post("/api/voice-over/upload", files={"audio": ("take.wav", b"RIFFtake", "audio/wav")}, data={"dialogueId": dialogue.id})

  assert response.status_code == 200
  body = response.json()
  assert body["key"].startswith("voiceovers/")
  assert storage.objects[body["key"]] == b"RIFFtake"
  stored = await dialogues_repo.get_dialogue(dialogue.id)
  assert stored.voice_over_url == body["url"]
  assert stored.recorded_audio_url == body["url"]
  assert stored.voice_over_key == body["key"]
  assert dialogues_repo.voiceovers[0].username == "vic"


@pytest.mark.anyio
async def test_upload_accepts_file_field_without_dialogue(api_client, current_user, dialogues_repo, dialogue) -> None:
  current_user.user = make_user("vic", "voiceOver")

  response = await api_client.post("/api/voice-over/upload", files={"file": ("take.wav", b"RIFF", "audio/wav")})

  assert response.status_code == 200
  assert dialogues_repo.voiceovers[0].dialogue_id is None


@pytest.mark.anyio
async def test_upload_without_audio_is_400(api_client, current_user, dialogue) -> None:
  current_user.user = make_user("vic", "voiceOver")

  response = await api_client.post("/api/voice-over/upload", data={"dialogueId": dialogue.id})

  assert response.status_code == 400
  assert response.json()["error"] == "No audio file provided"


@pytest.mark.anyio
async def test_oversized_upload_is_413(api_client, current_user, storage, dialogue) -> None:
  current_user.user = make_user("vic", "voiceOver")

  response = await api_client.post("/api/voice-over/upload", files={"audio": ("take.wav", b"x" * 2048, "audio/wav")}, data={"dialogueId": dialogue.id})

  assert response.status_code == 413
  assert storage.objects == {}


@pytest.mark.anyio
async def test_translator_cannot_upload_for_dialogue(api_client, current_user, storage, dialogue) -> None:
  current_user.user = make_user("alice", "translator")

  response = await api_client.post("/api/voice-over/upload", files={"audio": ("take.wav", b"RIFF", "audio/wav")}, data={"dialogueId": dialogue.id})

  assert response.status_code == 403
  assert storage.objects == {}
