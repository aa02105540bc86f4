"""Audio-cleaner jobs end to end: trigger step 1, then let the worker drain the queue."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from dubdesk.config import get_settings
from dubdesk.jobs.handlers import build_registry
from dubdesk.jobs.models import AUDIO_CLEANER_QUEUE, PIPELINE_QUEUE, RUN_STEP_JOB
from dubdesk.jobs.queue import JobQueue
from dubdesk.jobs.worker import QueueWorker
from dubdesk.pipeline.runner import StepRunner
from tests.support import make_project, make_user

CLEANER_URL = "http://audio-cleaner.test/clean"
CLEANED = {
  "cleanedSpeechPath": "https://media.test/ep1/speech.wav",
  "cleanedSpeechKey": "ep1/speech.wav",
  "musicAndSoundEffectsPath": "https://media.test/ep1/sfx.wav",
  "musicAndSoundEffectsKey": "ep1/sfx.wav",
}


@pytest.fixture
async def episode(projects_repo):
  project = make_project("p1", title="Show")
  project.episodes[0].video_path = "https://media.test/ep1.mp4"
  project.episodes[0].video_key = "projects/p1/Episode 1/ep1.mp4"
  await projects_repo.create_project(project)
  return project.episodes[0]


def _worker(runner: StepRunner, queue: JobQueue, queue_name: str = AUDIO_CLEANER_QUEUE) -> QueueWorker:
  return QueueWorker(queue=queue, registry=build_registry(runner), queue_name=queue_name, worker_id="test-worker")


def _runner(projects_repo, queue: JobQueue, services) -> StepRunner:
  return StepRunner(projects_repo=projects_repo, queue=queue, client=services.client(), settings=get_settings())


@pytest.mark.anyio
async def test_clean_audio_success_completes_step1(projects_repo, queue_repo, services, episode) -> None:
  queue = JobQueue(queue_repo)
  runner = _runner(projects_repo, queue, services)
  services.handlers[CLEANER_URL] = lambda request: httpx.Response(200, json=CLEANED)
  queued = await runner.trigger(episode.id, 1, {}, user=make_user("root", "admin"))

  processed = await _worker(runner, queue).process_next()

  assert processed == queued["jobId"]
  sent = json.loads(services.requests[0].content)
  assert sent == {"name": "Episode 1", "videoPath": episode.video_path, "videoKey": episode.video_key, "episodeId": episode.id}
  stored = await projects_repo.get_episode(episode.id)
  assert stored.step == 2
  assert stored.status == "processing"
  assert stored.steps["step1"]["status"] == "completed"
  assert stored.steps["step1"]["cleanedSpeechKey"] == "ep1/speech.wav"
  job = await queue_repo.get(processed)
  assert job.status == "completed"
  assert job.return_value == {"episodeId": episode.id, "step": 1, **CLEANED}


@pytest.mark.anyio
async def test_clean_audio_failure_marks_episode_error(projects_repo, queue_repo, services, episode) -> None:
  queue = JobQueue(queue_repo, default_attempts=1)
  runner = _runner(projects_repo, queue, services)
  services.handlers[CLEANER_URL] = lambda request: httpx.Response(500, json={"error": "ffmpeg crashed"})
  queued = await runner.trigger(episode.id, 1, {}, user=make_user("root", "admin"))

  await _worker(runner, queue).process_next()

  stored = await projects_repo.get_episode(episode.id)
  assert stored.status == "error"
  assert stored.steps["step1"]["status"] == "error"
  assert stored.steps["step1"]["error"] == "audio cleanup: returned HTTP 500"
  job = await queue_repo.get(queued["jobId"])
  assert job.status == "failed"
  assert job.failed_reason == "Failed to process step 1"


@pytest.mark.anyio
async def test_failure_with_attempts_left_is_retried(projects_repo, queue_repo, services, episode) -> None:
  queue = JobQueue(queue_repo, default_attempts=3)
  runner = _runner(projects_repo, queue, services)
  services.handlers[CLEANER_URL] = lambda request: httpx.Response(503)
  queued = await runner.trigger(episode.id, 1, {}, user=make_user("root", "admin"))

  await _worker(runner, queue).process_next()

  job = await queue_repo.get(queued["jobId"])
  assert job.status == "delayed"
  assert job.attempts_made == 1


@pytest.mark.anyio
async def test_idle_queue_returns_none(projects_repo, queue_repo, services) -> None:
  queue = JobQueue(queue_repo)

  assert await _worker(_runner(projects_repo, queue, services), queue).process_next() is None


@pytest.mark.anyio
async def test_unknown_job_name_fails_the_job(projects_repo, queue_repo, services) -> None:
  queue = JobQueue(queue_repo, default_attempts=1)
  job = await queue.add(AUDIO_CLEANER_QUEUE, "transcode", {"episodeId": "ep-x"})

  await _worker(_runner(projects_repo, queue, services), queue).process_next()

  failed = await queue_repo.get(job.id)
  assert failed.status == "failed"
  assert failed.failed_reason == "Unsupported job name: transcode"


@pytest.mark.anyio
async def test_run_step_job_executes_translation(projects_repo, queue_repo, services, episode) -> None:
  queue = JobQueue(queue_repo)
  runner = _runner(projects_repo, queue, services)

  def _clips_done(current):
    for number in (1, 2):
      current.steps[f"step{number}"] = {"status": "completed"}
    current.steps["step3"] = {"status": "completed", "videoClips": [{"id": "c1"}]}
    return current

  await projects_repo.apply_episode_update(episode.id, _clips_done)
  services.handlers["http://translation.test/translate"] = lambda request: httpx.Response(200, json={"dialogues": [{"characterName": "Ana", "text": "Hola"}]})
  queued = await runner.trigger(episode.id, 4, {"style": "casual"}, user=make_user("root", "admin"))
  assert queued["queue"] == PIPELINE_QUEUE
  assert (await queue_repo.get(queued["jobId"])).name == RUN_STEP_JOB

  await _worker(runner, queue, PIPELINE_QUEUE).process_next()

  sent = json.loads(services.requests[0].content)
  assert sent["sourceLanguage"] == "en"
  assert sent["targetLanguage"] == "es"
  assert sent["style"] == "casual"
  stored = await projects_repo.get_episode(episode.id)
  assert stored.step == 5
  assert stored.steps["step4"]["translationData"] == {"dialogues": [{"characterName": "Ana", "text": "Hola"}]}


class _Clock:
  def __init__(self, now: datetime) -> None:
    self.now = now

  def __call__(self) -> datetime:
    return self.now


@pytest.mark.anyio
async def test_delayed_retry_of_replaced_job_leaves_pipeline_alone(projects_repo, queue_repo, services, episode) -> None:
  clock = _Clock(datetime(2024, 1, 1, tzinfo=UTC))
  queue = JobQueue(queue_repo, default_attempts=3, default_backoff_ms=1000, clock=clock)
  runner = _runner(projects_repo, queue, services)
  replies = [httpx.Response(503), httpx.Response(200, json=CLEANED)]
  services.handlers[CLEANER_URL] = lambda request: replies.pop(0)
  services.handlers["http://scenes.test/extract"] = lambda request: httpx.Response(200, json={"sceneData": {"scenes": []}})
  admin = make_user("root", "admin")
  worker = _worker(runner, queue)

  first = await runner.trigger(episode.id, 1, {}, user=admin)
  await worker.process_next()
  assert (await queue_repo.get(first["jobId"])).status == "delayed"
  second = await runner.trigger(episode.id, 1, {}, user=admin)
  assert await worker.process_next() == second["jobId"]
  await runner.trigger(episode.id, 2, {}, user=admin)
  before = await projects_repo.get_episode(episode.id)
  assert before.step == 3

  clock.now += timedelta(seconds=5)
  assert await worker.process_next() == first["jobId"]

  after = await projects_repo.get_episode(episode.id)
  assert after == before
  stale = await queue_repo.get(first["jobId"])
  assert stale.status == "completed"
  assert stale.return_value["skipped"] is True
  # The replaced job never reached the cleaner again.
  assert len([request for request in services.requests if str(request.url) == CLEANER_URL]) == 2


@pytest.mark.anyio
async def test_inline_step_unexpected_error_is_recorded(projects_repo, queue_repo, services, episode) -> None:
  runner = _runner(projects_repo, JobQueue(queue_repo), services)

  def _done(current):
    current.steps["step1"] = {"status": "completed"}
    return current

  await projects_repo.apply_episode_update(episode.id, _done)

  def _explode(request: httpx.Request) -> httpx.Response:
    raise RuntimeError("connection pool exhausted")

  services.handlers["http://scenes.test/extract"] = _explode

  with pytest.raises(RuntimeError):
    await runner.trigger(episode.id, 2, {}, user=make_user("root", "admin"))

  stored = await projects_repo.get_episode(episode.id)
  assert stored.status == "error"
  assert stored.steps["step2"]["status"] == "error"
  assert stored.steps["step2"]["error"] == "connection pool exhausted"


@pytest.mark.anyio
async def test_step_stuck_in_processing_can_be_triggered_again(projects_repo, queue_repo, services, episode) -> None:
  queue = JobQueue(queue_repo)
  runner = _runner(projects_repo, queue, services)
  admin = make_user("root", "admin")
  first = await runner.trigger(episode.id, 1, {}, user=admin)

  def _abandoned(current):
    long_ago = (datetime.now(UTC) - timedelta(minutes=5)).isoformat()
    current.steps["step1"].update(startedAt=long_ago, updatedAt=long_ago)
    return current

  await projects_repo.apply_episode_update(episode.id, _abandoned)

  second = await runner.trigger(episode.id, 1, {}, user=admin)

  assert second["jobId"] != first["jobId"]
  stored = await projects_repo.get_episode(episode.id)
  assert stored.steps["step1"]["status"] == "processing"
  assert stored.steps["step1"]["jobId"] == second["jobId"]
