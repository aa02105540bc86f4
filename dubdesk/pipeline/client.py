"""HTTP client for the external media processing services."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dubdesk.core.exceptions import UpstreamServiceError

logger = logging.getLogger(__name__)


class ProcessingClient:
  """POST JSON to a processing service and return its JSON body.

  Each call opens a short-lived `httpx.AsyncClient` with the caller's timeout,
  since timeouts differ per step (30 seconds up to an hour). Tests inject a
  transport to stub the services.
  """

  def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._transport = transport

  async def post_json(self, service: str, url: str | None, payload: dict[str, Any], *, timeout_seconds: float, headers: dict[str, str] | None = None) -> dict[str, Any]:
    """Call `url` and raise UpstreamServiceError on any transport, status or body failure."""
    if not url:
      raise UpstreamServiceError(service, "service URL is not configured")

    request_headers = {"Content-Type": "application/json", **(headers or {})}
    logger.info("Calling %s url=%s timeout=%ss", service, url, timeout_seconds)
    try:
      async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=self._transport) as client:
        response = await client.post(url, json=payload, headers=request_headers)
        response.raise_for_status()
    except httpx.TimeoutException as exc:
      logger.warning("%s timed out after %ss", service, timeout_seconds)
      raise UpstreamServiceError(service, f"timed out after {timeout_seconds:g}s") from exc
    except httpx.HTTPStatusError as exc:
      logger.warning("%s returned HTTP %s", service, exc.response.status_code)
      raise UpstreamServiceError(service, f"returned HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
      logger.warning("%s request failed: %s", service, exc)
      raise UpstreamServiceError(service, f"request failed: {exc}") from exc

    try:
      body = response.json()
    except ValueError as exc:
      raise UpstreamServiceError(service, "returned a non-JSON body") from exc
    if not isinstance(body, dict):
      raise UpstreamServiceError(service, "returned a non-object JSON body")
    return body
