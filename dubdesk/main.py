from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from dubdesk.api.routes import admin, dialogues, episodes, projects, queue, users, voice_over
from dubdesk.config import get_settings
from dubdesk.core.exceptions import DubDeskError, dubdesk_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from dubdesk.core.json import DocumentJSONResponse
from dubdesk.core.lifespan import lifespan
from dubdesk.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(title="DubDesk", default_response_class=DocumentJSONResponse, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None if settings.environment == "production" else "/openapi.json")

app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.allowed_origins,
  allow_credentials=True,
  allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
  allow_headers=["content-type", "authorization", "x-request-id"],
  expose_headers=["content-length", "x-request-id"],
)

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(DubDeskError, dubdesk_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(projects.router, prefix="/api", tags=["projects"])
app.include_router(episodes.router, prefix="/api", tags=["episodes"])
app.include_router(dialogues.router, prefix="/api", tags=["dialogues"])
app.include_router(voice_over.router, prefix="/api", tags=["voice-over"])
app.include_router(queue.router, prefix="/api", tags=["queue"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
