"""
api/main.py -- FastAPI application factory for ProjectGate.

Run with:      uvicorn asgi:app --reload

create_app(settings) builds the app from an explicit Settings object. Nothing
below this point reads the environment; asgi.py is the one place that calls
get_settings().

Middleware stack (outermost to innermost):
  1. log_requests    -- method, path, status, latency for every request
  2. AuthMiddleware  -- soft authentication; sets request.state.identity

Lifespan handles startup (store, session/permission services, purge task)
and shutdown (cancel purge task, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.projects import router as projects_router
from auth.errors import Forbidden, InvalidOrExpiredSession, PasswordTooShort, StorageError, Unauthorized
from auth.middleware import AuthMiddleware
from auth.passwords import PasswordHasher
from auth.permissions import AuthorizationEngine
from auth.sessions import SessionCookie, SessionStore
from auth.store import AuthStore
from core.config import Settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("projectgate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every `interval` seconds.

    Expired sessions are already rejected by validate_session(); this only
    bounds table growth. Any failed purge is logged and retried next interval,
    so one bad run never ends the task. CancelledError from task.cancel() at
    shutdown unwinds out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(app.state.sessions.purge_expired)
        except StorageError:
            logger.warning("Expired session purge failed", exc_info=True)
        except Exception:
            logger.exception("Expired session purge failed unexpectedly")


async def _stop_task(task: asyncio.Task) -> None:
    """Cancel task and wait for it to unwind."""
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings, store: AuthStore | None = None) -> FastAPI:
    """Build the ASGI app.

    Args:
        settings: The startup configuration. Already validated (a production
                  config without SESSION_SECRET never gets this far).
        store:    Optional pre-built AuthStore. Tests pass an in-memory store;
                  the caller then owns closing it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("ProjectGate API starting up (env=%s)", settings.env)
        auth_store = store if store is not None else AuthStore(settings.database_url)
        app.state.store = auth_store
        app.state.sessions = SessionStore(auth_store, ttl=settings.session_ttl)
        app.state.hasher = PasswordHasher(cost=settings.bcrypt_cost)
        app.state.authz = AuthorizationEngine(auth_store)
        app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

        yield

        await _stop_task(app.state.purge_task)
        if store is None:
            auth_store.close()
        logger.info("ProjectGate API shutdown complete")

    app = FastAPI(
        title="ProjectGate API",
        description="Session authentication and project-role authorization.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_cookie = SessionCookie(settings)

    app.add_middleware(AuthMiddleware)

    # Registered last so it wraps AuthMiddleware and times the whole request.
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

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
    app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])

    _register_exception_handlers(app)

    @app.get("/api/v1/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Return liveness and a database round-trip check. No auth required."""
        try:
            db_ok = request.app.state.store.ping()
        except SQLAlchemyError:
            logger.warning("Health check database ping failed", exc_info=True)
            db_ok = False
        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=VERSION,
            components={"app": "ok", "database": "ok" if db_ok else "error"},
        )

    return app


# ---------------------------------------------------------------------------
# Exception handlers
#
# JSON errors share the ErrorResponse envelope. The one exception is the
# hard-auth rejection, which is a bare plain-text 401.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Unauthorized)
    @app.exception_handler(InvalidOrExpiredSession)
    async def unauthorized_handler(request: Request, exc: Exception) -> PlainTextResponse:
        return PlainTextResponse("Unauthorized", status_code=401)

    @app.exception_handler(Forbidden)
    async def forbidden_handler(request: Request, exc: Forbidden) -> JSONResponse:
        return _error(403, "forbidden", str(exc))

    @app.exception_handler(PasswordTooShort)
    async def password_policy_handler(request: Request, exc: PasswordTooShort) -> JSONResponse:
        return _error(400, "password_too_short", str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        """Storage internals stay in the log; the client gets a generic 503."""
        logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
        return _error(503, "storage_unavailable", "The service is temporarily unavailable.")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Route handlers raise HTTPException with a dict detail; use it as the error body directly."""
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
        return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected errors. The trace goes to the log, never the response body."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error(500, "internal_error", "An unexpected error occurred.")
