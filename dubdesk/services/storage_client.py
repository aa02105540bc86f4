"""Object storage for episode video, audio and voice-over media."""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import quote, urlparse, urlunparse

from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from dubdesk.config import Settings


@dataclass(frozen=True)
class StoredObject:
  """Where an uploaded object landed."""

  key: str
  url: str
  size: int
  content_type: str | None


class StorageClient:
  """GCS (or emulator) access for the media bucket.

  The SDK is synchronous, so every call runs in the threadpool.
  """

  def __init__(self, settings: Settings) -> None:
    self._bucket_name = settings.media_bucket
    self._public_base_url = settings.media_public_url
    self._storage_host = settings.gcs_storage_host
    if self._storage_host:
      emulator_endpoint = _normalize_emulator_endpoint(self._storage_host)
      os.environ["STORAGE_EMULATOR_HOST"] = emulator_endpoint
      self._client = storage.Client(project=settings.gcp_project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": emulator_endpoint})
    else:
      self._client = storage.Client(project=settings.gcp_project_id)

  @property
  def bucket_name(self) -> str:
    return self._bucket_name

  def public_url(self, key: str) -> str:
    return f"{self._public_base_url}/{quote(key, safe='/')}"

  async def ensure_bucket(self) -> None:
    """Create the media bucket when running against the emulator."""
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def upload_bytes(self, data: bytes, key: str, *, content_type: str | None = None, cache_control: str = "private, max-age=0") -> StoredObject:
    blob = self._client.bucket(self._bucket_name).blob(key)
    blob.cache_control = cache_control
    await run_in_threadpool(blob.upload_from_string, data, content_type or "application/octet-stream")
    return StoredObject(key=key, url=self.public_url(key), size=len(data), content_type=content_type)

  async def delete_prefix(self, prefix: str) -> int:
    """Delete every object under `prefix`; returns the number removed."""

    def _delete_all() -> int:
      removed = 0
      for blob in self._client.list_blobs(self._bucket_name, prefix=prefix):
        blob.delete()
        removed += 1
      return removed

    return await run_in_threadpool(_delete_all)


def build_storage_client(settings: Settings) -> StorageClient:
  """Create a storage client with environment-aware credentials."""
  return StorageClient(settings)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Keep only scheme, host and port for the SDK."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
