"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; opens a session (sets cookie)
  POST /api/v1/auth/login      -- password login; opens a session (sets cookie)
  POST /api/v1/auth/logout     -- destroys the session (idempotent); clears cookie
  GET  /api/v1/auth/me         -- current caller, or authenticated=false

Security:
  [C1] PasswordHasher.authenticate() equalizes timing for unknown emails --
       use it, never inline get_user_by_email() + check_password().
  [C2] Wrong email and wrong password return the same bad_credentials error.
  [C3] Cache-Control: no-store on every response that sets a session cookie.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.models import AuthPayload, LoginRequest, MeResponse, RegisterRequest, UserResponse
from auth.errors import StorageError
from auth.middleware import get_identity
from auth.models import User
from auth.passwords import PasswordHasher
from auth.sessions import SessionCookie, SessionStore
from auth.store import AuthStore

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/logout:   public -- logging out without a session is a no-op
# - GET  /api/v1/auth/me:       soft auth -- anonymous callers get authenticated=false
router = APIRouter()


@router.post("/auth/register", response_model=AuthPayload, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a local account and log it in.

    Password policy violations surface as 400 password_too_short via the
    PasswordTooShort exception handler in api/main.py.
    """
    store: AuthStore = request.app.state.store
    hasher: PasswordHasher = request.app.state.hasher
    sessions: SessionStore = request.app.state.sessions

    hasher.validate_password(body.password)
    user = User(email=body.email, name=body.name, password_hash=hasher.hash_password(body.password))
    try:
        user_id = store.create_user(user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that email already exists."},
        ) from exc
    except SQLAlchemyError as exc:
        raise StorageError("Failed to create user.") from exc

    token = sessions.create_session(user_id)
    try:
        created = store.get_user_by_id(user_id)
    except SQLAlchemyError as exc:
        raise StorageError("Failed to load new user.") from exc
    return _session_response(request, token, created, status_code=201)


@router.post("/auth/login", response_model=AuthPayload)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; open a session."""
    store: AuthStore = request.app.state.store
    hasher: PasswordHasher = request.app.state.hasher
    sessions: SessionStore = request.app.state.sessions

    try:
        user = hasher.authenticate(store, body.email, body.password)  # [C1]
    except SQLAlchemyError as exc:
        raise StorageError("Failed to look up user.") from exc
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},  # [C2]
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = sessions.create_session(user.id)
    return _session_response(request, token, user)


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Destroy the caller's session, if any, and clear the cookie."""
    cookie: SessionCookie = request.app.state.session_cookie
    sessions: SessionStore = request.app.state.sessions

    token = cookie.read(request)
    if token is not None:
        sessions.destroy_session(token)
    resp = JSONResponse(content={"success": True})
    cookie.clear(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> MeResponse:
    """Return the current caller. Anonymous callers get authenticated=false, not 401."""
    identity, present = get_identity(request)
    if not present:
        return MeResponse(authenticated=False)
    store: AuthStore = request.app.state.store
    try:
        user = store.get_user_by_id(identity.user_id)
    except SQLAlchemyError as exc:
        raise StorageError("Failed to look up user.") from exc
    if user is None:
        return MeResponse(authenticated=False)
    return MeResponse(authenticated=True, user=UserResponse.from_user(user))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_response(request: Request, token: str, user: User | None, status_code: int = 200) -> JSONResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    resp = JSONResponse(
        status_code=status_code,
        content=AuthPayload(success=True, user=UserResponse.from_user(user)).model_dump(mode="json"),
    )
    request.app.state.session_cookie.set(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [C3]
    return resp
