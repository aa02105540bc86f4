import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dubdesk.core.database import dispose_engine
from dubdesk.core.firebase import initialize_firebase
from dubdesk.core.logging import initialize_logging
from dubdesk.services.storage_client import build_storage_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, Firebase and the shared storage client; release the engine on shutdown."""
  from dubdesk.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("dubdesk.core.lifespan")
  initialize_logging(settings)
  logger.info("Startup: environment=%s", settings.environment)

  initialize_firebase()

  # One storage client per process; routes receive it through a dependency.
  app.state.storage_client = None
  try:
    storage_client = build_storage_client(settings)
    await storage_client.ensure_bucket()
    app.state.storage_client = storage_client
    logger.info("Media bucket ready: %s", storage_client.bucket_name)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Storage client unavailable at startup: %s", exc)

  try:
    yield
  finally:
    await dispose_engine()
    logger.info("Shutdown complete.")
