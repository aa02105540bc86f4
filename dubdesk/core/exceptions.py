import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError

from dubdesk.core.json import DocumentJSONResponse


class DubDeskError(Exception):
  """Base class for errors that map onto a client-facing status code."""

  status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

  def __init__(self, message: str, *, details: Any = None) -> None:
    super().__init__(message)
    self.message = message
    self.details = details


class AuthenticationError(DubDeskError):
  status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(DubDeskError):
  status_code = status.HTTP_403_FORBIDDEN


class ValidationFailure(DubDeskError):
  status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DubDeskError):
  status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DubDeskError):
  status_code = status.HTTP_409_CONFLICT


class PayloadTooLargeError(DubDeskError):
  status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UpstreamServiceError(DubDeskError):
  """An external processing service failed, timed out or returned an unusable body."""

  status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

  def __init__(self, service: str, message: str) -> None:
    super().__init__(f"{service}: {message}")
    self.service = service


class StepFailedError(DubDeskError):
  """A pipeline step failed after its outcome was recorded on the episode."""

  status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

  def __init__(self, step_number: int, details: str) -> None:
    super().__init__(f"Failed to process step {step_number}", details=details)
    self.step_number = step_number


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  # Keep native JSON primitives unchanged.
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Serialize exception instances explicitly to avoid leaking non-serializable objects.
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(error: str, *, details: Any = None, request_id: str | None = None) -> dict[str, Any]:
  """Build the `{error, details?, requestId?}` body shared by every failure response."""
  payload: dict[str, Any] = {"error": error}
  if details is not None:
    payload["details"] = _coerce_json_safe(details)
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    # Remove nested input values from context payloads as well.
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


def _should_log_client_errors() -> bool:
  from dubdesk.config import get_settings

  return get_settings().log_http_4xx


async def dubdesk_exception_handler(request: Request, exc: DubDeskError) -> DocumentJSONResponse:
  """Render domain errors with their mapped status code."""
  request_id = getattr(request.state, "request_id", None)
  logger = logging.getLogger("uvicorn.error")
  if exc.status_code >= 500:
    logger.error("%s request_id=%s path=%s error=%s details=%s", type(exc).__name__, request_id, request.url.path, exc.message, exc.details)
  elif _should_log_client_errors():
    logger.warning("%s request_id=%s path=%s error=%s", type(exc).__name__, request_id, request.url.path, exc.message)
  return DocumentJSONResponse(status_code=exc.status_code, content=_error_payload(exc.message, details=exc.details, request_id=request_id))


async def global_exception_handler(request: Request, exc: Exception) -> DocumentJSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return DocumentJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> DocumentJSONResponse:
  """Report malformed requests as 400 without echoing payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger = logging.getLogger("uvicorn.error")
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return DocumentJSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_payload("Invalid request", details=sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> DocumentJSONResponse:
  """Handle FastAPI HTTPExceptions while avoiding leaking internal diagnostics."""
  request_id = getattr(request.state, "request_id", None)
  # Log 5xx HTTPExceptions with a traceback for diagnostics; do not expose `exc.detail` to callers.
  if exc.status_code >= 500:
    logger = logging.getLogger("uvicorn.error")
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return DocumentJSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  if _should_log_client_errors():
    logger = logging.getLogger("uvicorn.error")
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  # Preserve 4xx details for client-correctable errors.
  if isinstance(exc.detail, str):
    content = _error_payload(exc.detail, request_id=request_id)
  else:
    content = _error_payload("Request failed", details=exc.detail, request_id=request_id)
  return DocumentJSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))
