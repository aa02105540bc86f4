"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dubdesk.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the DubDesk service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  log_http_bodies: bool
  log_http_body_bytes: int
  pg_dsn: str | None
  pg_connect_timeout: int
  media_bucket: str
  media_public_url: str
  gcs_storage_host: str | None
  gcp_project_id: str | None
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  audio_cleaner_url: str | None
  scene_extractor_url: str | None
  clip_extractor_url: str | None
  translation_url: str | None
  voice_assignment_url: str | None
  voice_conversion_url: str | None
  audio_merger_url: str | None
  video_merger_url: str | None
  voice_conversion_api_key: str | None
  queue_attempts: int
  queue_backoff_ms: int
  queue_poll_seconds: float
  queue_stall_seconds: float
  task_secret: str | None
  max_upload_bytes: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("DUBDESK_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("DUBDESK_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("DUBDESK_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("DUBDESK_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("DUBDESK_DEBUG"))

  log_max_bytes = _positive_int("DUBDESK_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("DUBDESK_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("DUBDESK_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx errors and of HTTP bodies with a size cap.
  log_http_4xx = _parse_bool(os.getenv("DUBDESK_LOG_HTTP_4XX"))
  log_http_bodies = _parse_bool(os.getenv("DUBDESK_LOG_HTTP_BODIES"))
  log_http_body_bytes = _positive_int("DUBDESK_LOG_HTTP_BODY_BYTES", "2048")

  media_bucket = (os.getenv("DUBDESK_MEDIA_BUCKET") or "dubdesk-media").strip()
  media_public_url = (os.getenv("DUBDESK_MEDIA_PUBLIC_URL") or f"https://storage.googleapis.com/{media_bucket}").strip().rstrip("/")

  # Queue defaults: three attempts with exponential backoff from one second.
  queue_attempts = _positive_int("DUBDESK_QUEUE_ATTEMPTS", "3")
  queue_backoff_ms = _positive_int("DUBDESK_QUEUE_BACKOFF_MS", "1000")
  queue_poll_seconds = float(os.getenv("DUBDESK_QUEUE_POLL_SECONDS", "1.0"))
  if queue_poll_seconds <= 0:
    raise ValueError("DUBDESK_QUEUE_POLL_SECONDS must be positive.")
  # An `active` job older than this is treated as abandoned by its worker; keep it above the slowest step timeout.
  queue_stall_seconds = float(_positive_int("DUBDESK_QUEUE_STALL_SECONDS", "5400"))

  max_upload_bytes = _positive_int("DUBDESK_MAX_UPLOAD_BYTES", str(200 * 1024 * 1024))

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("DUBDESK_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    log_http_bodies=log_http_bodies,
    log_http_body_bytes=log_http_body_bytes,
    pg_dsn=os.getenv("DUBDESK_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=int(os.getenv("DUBDESK_PG_CONNECT_TIMEOUT", "5")),
    media_bucket=media_bucket,
    media_public_url=media_public_url,
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    audio_cleaner_url=_optional_str(os.getenv("DUBDESK_AUDIO_CLEANER_URL")),
    scene_extractor_url=_optional_str(os.getenv("DUBDESK_SCENE_EXTRACTOR_URL")),
    clip_extractor_url=_optional_str(os.getenv("DUBDESK_CLIP_EXTRACTOR_URL")),
    translation_url=_optional_str(os.getenv("DUBDESK_TRANSLATION_URL")),
    voice_assignment_url=_optional_str(os.getenv("DUBDESK_VOICE_ASSIGNMENT_URL")),
    voice_conversion_url=_optional_str(os.getenv("DUBDESK_VOICE_CONVERSION_URL")),
    audio_merger_url=_optional_str(os.getenv("DUBDESK_AUDIO_MERGER_URL")),
    video_merger_url=_optional_str(os.getenv("DUBDESK_VIDEO_MERGER_URL")),
    voice_conversion_api_key=_optional_str(os.getenv("DUBDESK_VOICE_CONVERSION_API_KEY")),
    queue_attempts=queue_attempts,
    queue_backoff_ms=queue_backoff_ms,
    queue_poll_seconds=queue_poll_seconds,
    queue_stall_seconds=queue_stall_seconds,
    task_secret=_optional_str(os.getenv("DUBDESK_TASK_SECRET")),
    max_upload_bytes=max_upload_bytes,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and the seed script do not require unrelated env vars.
  debug = _parse_bool(os.getenv("DUBDESK_DEBUG"))
  pg_connect_timeout = int(os.getenv("DUBDESK_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("DUBDESK_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = os.getenv("DUBDESK_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
