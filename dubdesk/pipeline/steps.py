"""Step registry: what each pipeline step sends, where, and what it stores."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from dubdesk.config import Settings
from dubdesk.core.exceptions import NotFoundError, UpstreamServiceError, ValidationFailure
from dubdesk.jobs.models import AUDIO_CLEANER_QUEUE, CLEAN_AUDIO_JOB, PIPELINE_QUEUE, RUN_STEP_JOB
from dubdesk.pipeline.state import step_state
from dubdesk.storage.projects_repo import EpisodeRecord, ProjectRecord

Dispatch = Literal["inline", "queued"]
RequestBuilder = Callable[[EpisodeRecord, ProjectRecord, dict[str, Any]], dict[str, Any]]
ResultApplier = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class StepDefinition:
  """Static description of one numbered pipeline step."""

  number: int
  name: str
  service_setting: str
  timeout_seconds: float
  dispatch: Dispatch
  build_request: RequestBuilder
  apply_result: ResultApplier
  validate: Callable[[EpisodeRecord], None] | None = None
  queue_name: str | None = None
  job_name: str | None = None

  def service_url(self, settings: Settings) -> str | None:
    return getattr(settings, self.service_setting)

  def headers(self, settings: Settings) -> dict[str, str]:
    if self.number == 6 and settings.voice_conversion_api_key:
      return {"X-API-Key": settings.voice_conversion_api_key}
    return {}


def _require(response: dict[str, Any], service: str, *fields: str) -> dict[str, Any]:
  """Pick fields from a service response, failing when any is missing."""
  missing = [name for name in fields if response.get(name) in (None, "")]
  if missing:
    raise UpstreamServiceError(service, f"response missing {', '.join(missing)}")
  return {name: response[name] for name in fields}


def _translation_dialogues(episode: EpisodeRecord) -> list[dict[str, Any]]:
  translation = step_state(episode, "step4").get("translationData") or {}
  dialogues = translation.get("dialogues") if isinstance(translation, dict) else None
  return dialogues if isinstance(dialogues, list) else []


# Request builders


def _clean_audio_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  return {
    "name": params.get("name") or episode.name,
    "videoPath": params.get("videoPath") or episode.video_path,
    "videoKey": params.get("videoKey") or episode.video_key,
    "episodeId": episode.id,
  }


def _scene_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  step1 = step_state(episode, "step1")
  return {"episodeId": episode.id, "videoPath": episode.video_path, "videoKey": episode.video_key, "cleanedSpeechPath": step1.get("cleanedSpeechPath"), "cleanedSpeechKey": step1.get("cleanedSpeechKey"), **params}


def _clips_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  return {"episodeId": episode.id, "videoPath": episode.video_path, "videoKey": episode.video_key, "sceneData": step_state(episode, "step2").get("sceneData"), **params}


def _translation_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  return {"videoClips": step_state(episode, "step3").get("videoClips"), "episodeId": episode.id, "sourceLanguage": project.source_language, "targetLanguage": project.target_language, **params}


def _voice_assignment_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  # Unique character names in first-seen order.
  characters = list(dict.fromkeys(d.get("characterName") for d in _translation_dialogues(episode) if d.get("characterName")))
  return {"characters": characters, "episodeId": episode.id, "targetLanguage": project.target_language, **params}


def _voice_conversion_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  return {"dialogues": _translation_dialogues(episode), "characterVoices": step_state(episode, "step5").get("characterVoices"), "episodeId": episode.id, **params}


def _audio_merge_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  return {"voiceConversions": step_state(episode, "step6").get("voiceConversions"), "sfxAudioPath": step_state(episode, "step1").get("musicAndSoundEffectsPath"), "episodeId": episode.id, **params}


def _video_merge_request(episode: EpisodeRecord, project: ProjectRecord, params: dict[str, Any]) -> dict[str, Any]:
  step7 = step_state(episode, "step7")
  return {"videoPath": episode.video_path, "videoKey": episode.video_key, "mergedAudioPath": step7.get("mergedAudioPath"), "mergedAudioKey": step7.get("mergedAudioKey"), "episodeId": episode.id, **params}


# Input checks run against the claimed episode; a failure is recorded as the step error.


def _needs_source_video(episode: EpisodeRecord) -> None:
  params = step_state(episode, "step1").get("inputParameters") or {}
  missing = [name for name, fallback in (("videoPath", episode.video_path), ("videoKey", episode.video_key)) if not (params.get(name) or fallback)]
  if missing:
    raise ValidationFailure("Missing required fields", details=missing)


def _needs_video(episode: EpisodeRecord) -> None:
  if not episode.video_path and not episode.video_key:
    raise ValidationFailure("Episode has no uploaded video")


def _needs_clips(episode: EpisodeRecord) -> None:
  if not step_state(episode, "step3").get("videoClips"):
    raise ValidationFailure("Missing video clips from step 3")


def _needs_translation(episode: EpisodeRecord) -> None:
  if not _translation_dialogues(episode):
    raise ValidationFailure("Invalid translation data from step 4")


def _needs_voices(episode: EpisodeRecord) -> None:
  _needs_translation(episode)
  if not step_state(episode, "step5").get("characterVoices"):
    raise ValidationFailure("Missing character voices from step 5")


def _needs_conversions(episode: EpisodeRecord) -> None:
  if not isinstance(step_state(episode, "step6").get("voiceConversions"), list):
    raise ValidationFailure("Invalid voice conversion data from step 6")
  if not step_state(episode, "step1").get("musicAndSoundEffectsPath"):
    raise ValidationFailure("Missing SFX audio from step 1")


def _needs_merged_audio(episode: EpisodeRecord) -> None:
  step7 = step_state(episode, "step7")
  if not step7.get("mergedAudioPath") or not step7.get("mergedAudioKey"):
    raise ValidationFailure("Missing merged audio from step 7")


STEPS: dict[int, StepDefinition] = {
  1: StepDefinition(
    number=1,
    name="audio cleanup",
    service_setting="audio_cleaner_url",
    timeout_seconds=30,
    dispatch="queued",
    build_request=_clean_audio_request,
    apply_result=lambda body: _require(body, "audio cleaner", "cleanedSpeechPath", "cleanedSpeechKey", "musicAndSoundEffectsPath", "musicAndSoundEffectsKey"),
    validate=_needs_source_video,
    queue_name=AUDIO_CLEANER_QUEUE,
    job_name=CLEAN_AUDIO_JOB,
  ),
  2: StepDefinition(
    number=2,
    name="scene extraction",
    service_setting="scene_extractor_url",
    timeout_seconds=10 * 60,
    dispatch="inline",
    build_request=_scene_request,
    apply_result=lambda body: _require(body, "scene extractor", "sceneData"),
    validate=_needs_video,
  ),
  3: StepDefinition(
    number=3,
    name="video clip extraction",
    service_setting="clip_extractor_url",
    timeout_seconds=30 * 60,
    dispatch="queued",
    build_request=_clips_request,
    apply_result=lambda body: _require(body, "clip extractor", "videoClips"),
    queue_name=PIPELINE_QUEUE,
    job_name=RUN_STEP_JOB,
  ),
  4: StepDefinition(
    number=4,
    name="translation",
    service_setting="translation_url",
    timeout_seconds=30 * 60,
    dispatch="queued",
    build_request=_translation_request,
    apply_result=lambda body: {"translationData": body},
    validate=_needs_clips,
    queue_name=PIPELINE_QUEUE,
    job_name=RUN_STEP_JOB,
  ),
  5: StepDefinition(
    number=5,
    name="voice assignment",
    service_setting="voice_assignment_url",
    timeout_seconds=5 * 60,
    dispatch="inline",
    build_request=_voice_assignment_request,
    apply_result=lambda body: {"characterVoices": _require(body, "voice assignment", "voiceAssignments")["voiceAssignments"]},
    validate=_needs_translation,
  ),
  6: StepDefinition(
    number=6,
    name="voice conversion",
    service_setting="voice_conversion_url",
    timeout_seconds=60 * 60,
    dispatch="queued",
    build_request=_voice_conversion_request,
    apply_result=lambda body: {"voiceConversions": _require(body, "voice conversion", "conversions")["conversions"]},
    validate=_needs_voices,
    queue_name=PIPELINE_QUEUE,
    job_name=RUN_STEP_JOB,
  ),
  7: StepDefinition(
    number=7,
    name="audio merge",
    service_setting="audio_merger_url",
    timeout_seconds=30 * 60,
    dispatch="queued",
    build_request=_audio_merge_request,
    apply_result=lambda body: _require(body, "audio merger", "mergedAudioPath", "mergedAudioKey"),
    validate=_needs_conversions,
    queue_name=PIPELINE_QUEUE,
    job_name=RUN_STEP_JOB,
  ),
  8: StepDefinition(
    number=8,
    name="final video merge",
    service_setting="video_merger_url",
    timeout_seconds=60 * 60,
    dispatch="queued",
    build_request=_video_merge_request,
    apply_result=lambda body: _require(body, "video merger", "finalVideoPath", "finalVideoKey"),
    validate=_needs_merged_audio,
    queue_name=PIPELINE_QUEUE,
    job_name=RUN_STEP_JOB,
  ),
}


def get_step(step_number: int) -> StepDefinition:
  definition = STEPS.get(step_number)
  if definition is None:
    raise NotFoundError(f"Unknown step {step_number}")
  return definition
