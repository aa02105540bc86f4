import json
import logging
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from dubdesk.config import get_settings

logger = logging.getLogger("dubdesk.core.middleware")

_SENSITIVE_KEYS = {"password", "token", "key", "authorization", "cookie", "secret", "email", "phone", "firebaseuid", "firebase_uid"}
_TEXTUAL_PREFIXES = ("text/",)
_TEXTUAL_MARKERS = ("application/json", "+json", "application/x-www-form-urlencoded")


def _redact_sensitive_keys(data: Any) -> Any:
  """Redact sensitive keys from a dictionary or list recursively."""
  if isinstance(data, dict):
    return {k: ("***" if k.lower() in _SENSITIVE_KEYS else _redact_sensitive_keys(v)) for k, v in data.items()}
  if isinstance(data, list):
    return [_redact_sensitive_keys(item) for item in data]
  return data


def _header(scope_or_message: Scope | Message, name: str) -> str | None:
  """Read one header from an ASGI scope or response-start message."""
  target = name.encode("latin-1")
  for key, value in scope_or_message.get("headers", []):
    if key.lower() == target:
      return value.decode("latin-1")
  return None


def _request_target(scope: Scope) -> str:
  """Build a readable path with query string for logging."""
  path = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  if query_string:
    return f"{path}?{query_string.decode('latin-1')}"
  return path


def _is_textual(content_type: str | None) -> bool:
  if not content_type:
    return False
  normalized = content_type.lower()
  return normalized.startswith(_TEXTUAL_PREFIXES) or any(marker in normalized for marker in _TEXTUAL_MARKERS)


def _format_body_for_log(body: bytes, content_type: str | None, max_bytes: int) -> str:
  """Format a request/response body for logging with redaction."""
  if not body:
    return "<empty>"

  # Multipart uploads and media are never dumped into logs.
  if not _is_textual(content_type):
    return f"<non-text body {len(body)} bytes>"

  text = body[:max_bytes].decode("utf-8", errors="replace")
  if len(body) > max_bytes:
    return f"{text}...(truncated)"

  if content_type and "json" in content_type.lower():
    try:
      parsed = json.loads(text)
    except json.JSONDecodeError:
      return text
    return json.dumps(_redact_sensitive_keys(parsed), ensure_ascii=True)

  return text


class RequestLoggingMiddleware:
  """Assign a request id, echo it back, and log request/response timing."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    # Skip non-HTTP scopes to avoid interfering with websocket or lifespan events.
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    settings = get_settings()
    log_bodies = settings.log_http_bodies
    max_bytes = settings.log_http_body_bytes

    # Store the request id where handlers and exception handlers can find it.
    request_id = _header(scope, "x-request-id") or str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id
    start_time = time.perf_counter()
    logger.info("Incoming request request_id=%s %s %s", request_id, scope.get("method", "UNKNOWN"), _request_target(scope))

    receive_wrapper = receive
    if log_bodies:
      # Drain and replay the body so downstream handlers still receive it.
      chunks: list[bytes] = []
      more_body = True
      while more_body:
        message = await receive()
        if message.get("type") != "http.request":
          break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)
      request_body = b"".join(chunks)
      replayed = False

      async def receive_wrapper() -> Message:
        nonlocal replayed
        if replayed:
          return {"type": "http.request", "body": b"", "more_body": False}
        replayed = True
        return {"type": "http.request", "body": request_body, "more_body": False}

      logger.info("Request body request_id=%s body=%s", request_id, _format_body_for_log(request_body, _header(scope, "content-type"), max_bytes))

    status_code = 0
    response_type: str | None = None
    response_chunks: list[bytes] = []

    async def send_wrapper(message: Message) -> None:
      nonlocal status_code, response_type
      if message["type"] == "http.response.start":
        status_code = message.get("status", 0)
        headers = MutableHeaders(scope=message)
        if "x-request-id" not in headers:
          headers["x-request-id"] = request_id
        response_type = headers.get("content-type")
      elif log_bodies and message["type"] == "http.response.body" and sum(len(chunk) for chunk in response_chunks) <= max_bytes:
        response_chunks.append(message.get("body", b""))
      await send(message)

    await self.app(scope, receive_wrapper, send_wrapper)

    elapsed_ms = (time.perf_counter() - start_time) * 1000
    logger.info("Response request_id=%s status=%s (took %.2fms)", request_id, status_code, elapsed_ms)
    if log_bodies:
      logger.info("Response body request_id=%s body=%s", request_id, _format_body_for_log(b"".join(response_chunks), response_type, max_bytes))


class SecurityHeadersMiddleware:
  """Middleware to strip server-identifying headers from responses."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    async def send_wrapper(message: Message) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for name in ("x-powered-by", "server"):
          if name in headers:
            del headers[name]
        headers.setdefault("x-content-type-options", "nosniff")

      await send(message)

    await self.app(scope, receive, send_wrapper)
