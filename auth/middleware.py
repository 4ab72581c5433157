"""
auth/middleware.py -- Request identity: soft middleware and hard dependency.

Two modes:
  Soft (AuthMiddleware): installed on the whole app. Reads the session cookie,
      validates it and stores the result on request.state.identity. A missing,
      tampered, unknown or expired credential all leave identity as None and
      the request continues. Soft mode never rejects; the reason a credential
      failed is never exposed on the anonymous path.

  Hard (require_identity): a FastAPI dependency for routes that need a known
      caller. No usable identity raises Unauthorized, which the API maps to a
      plain-text 401 before the route body runs. On success the Identity is
      handed to the route as an argument.

Accessors for downstream code:
  get_identity(request)      -> (Identity | None, present)
  is_authenticated(request)  -> bool

Only this module and auth/sessions.py touch the cookie. Everything else sees
an Identity value.

The SessionStore and SessionCookie are looked up on request.app.state
("sessions", "session_cookie"), which api/main.py populates.
"""

from __future__ import annotations

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import HTTPConnection
from starlette.responses import Response

from auth.errors import InvalidOrExpiredSession, Unauthorized
from auth.models import Identity


def resolve_identity(conn: HTTPConnection) -> Identity | None:
    """Turn the request's session cookie into an Identity, or None. Never raises on bad credentials."""
    token = conn.app.state.session_cookie.read(conn)
    if token is None:
        return None
    try:
        user_id = conn.app.state.sessions.validate_session(token)
    except InvalidOrExpiredSession:
        return None
    return Identity(user_id=user_id)


class AuthMiddleware(BaseHTTPMiddleware):
    """Soft authentication for every request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # validate_session is a blocking DB call; keep it off the event loop.
        request.state.identity = await run_in_threadpool(resolve_identity, request)
        return await call_next(request)


def get_identity(request: HTTPConnection) -> tuple[Identity | None, bool]:
    """Return (identity, present) for the current request."""
    identity = getattr(request.state, "identity", None)
    return identity, identity is not None


def is_authenticated(request: HTTPConnection) -> bool:
    _, present = get_identity(request)
    return present


def require_identity(request: Request) -> Identity:
    """Hard authentication. Use as a FastAPI dependency:

        @router.post("/projects/{project_id}/members/{user_id}")
        def route(identity: Identity = Depends(require_identity)): ...

    When AuthMiddleware already ran, its result is reused. Otherwise the
    cookie is validated here.
    """
    if hasattr(request.state, "identity"):
        identity = request.state.identity
    else:
        identity = resolve_identity(request)
        request.state.identity = identity
    if identity is None:
        raise Unauthorized()
    return identity
