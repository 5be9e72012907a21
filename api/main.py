"""
api/main.py -- FastAPI application entry point for VidTube.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
                              (credentials allowed so auth cookies flow)
  2. log_requests          -- one log line per request with latency

Lifespan builds the long-lived collaborators once and parks them on app.state:
  settings         -- core.config.Settings
  user_store       -- auth.store.UserStore
  session_service  -- auth.session.SessionService (store + settings injected)

Route handlers and dependencies only ever reach them through app.state, so
tests can swap the whole set by patching the lifespan.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ApiResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.session import SessionService
from auth.store import UserStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vidtube.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store and session service on startup; dispose the engine on shutdown.

    Settings are resolved here and passed down explicitly. Nothing below this
    point reads the environment.
    """
    logger.info("VidTube API starting up")
    settings = get_settings()
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.session_service = SessionService(app.state.user_store, settings)
    logger.info(
        "Auth initialized (access ttl=%ss, refresh ttl=%ss, secure cookies=%s)",
        settings.access_token_expire_seconds,
        settings.refresh_token_expire_seconds,
        settings.secure_cookies,
    )

    yield

    app.state.user_store.close()
    logger.info("VidTube API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VidTube API",
    description="Accounts and sessions for the VidTube video platform.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Refresh-Token"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ApiResponse envelope as successful routes, with
# success=false and data=null, so clients parse one shape everywhere.
# ---------------------------------------------------------------------------


def _error(status: int, message: str, data=None) -> JSONResponse:
    return JSONResponse(status_code=status, content=ApiResponse.build(status, data, message).model_dump())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap HTTPException (raised by routes, dependencies and the router itself)."""
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body or query fails validation.

    Only field locations are echoed back. Pydantic's error entries include the
    rejected input, which may be a password, so they are not passed through.
    """
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return _error(400, "Request validation failed.", {"fields": fields})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    try:
        db_status = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        db_status = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": db_status})
