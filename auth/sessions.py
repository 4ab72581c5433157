"""
auth/sessions.py -- Opaque session tokens backed by the sessions table.

Security design decisions:
  Tokens: secrets.token_bytes(32) -> 256 bits from the OS CSPRNG, encoded
       URL-safe base64 with the '=' padding stripped (43 characters). There is
       no uniqueness re-check before insert; at 256 bits a collision is not a
       practical concern and UNIQUE(token) in the store is the final guard.

  Validation is a single SELECT filtered on token AND expires_at > now. A
       missing row and an expired row are indistinguishable to the caller
       (InvalidOrExpiredSession). Storage failures during validation are
       logged here and collapsed into the same error so storage internals
       never reach the client.

  No renewal: a session row is written once and deleted on logout. Expired
       rows are invalid immediately; purge_expired() only trims the table.

  Logout race: destroy_session() and validate_session() are not ordered
       against each other. A validation that started just before a concurrent
       destroy committed may still succeed once. This window is accepted; no
       lock is taken.

  Cookie transport: the cookie value is the token signed with SESSION_SECRET
       (itsdangerous Signer). A value with a bad signature is treated exactly
       like a missing cookie. The signature protects the transport; the token
       alone is the capability checked against the store.

Layer rule: no imports from api/. Settings are passed in, not imported.
"""

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from itsdangerous import BadSignature, Signer
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import HTTPConnection
from starlette.responses import Response

from auth.errors import InvalidOrExpiredSession, StorageError
from auth.models import Session
from auth.store import AuthStore, to_iso, utcnow
from core.config import SESSION_TTL, Settings

logger = logging.getLogger("projectgate.auth")

SESSION_COOKIE = "session"
TOKEN_BYTES = 32


def generate_token() -> str:
    """Return a 256-bit random token, URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(TOKEN_BYTES)).rstrip(b"=").decode("ascii")


class SessionStore:
    """Create, validate and destroy sessions against an AuthStore.

    Usage:
        sessions = SessionStore(store)
        token = sessions.create_session(user_id)
        sessions.validate_session(token)   # -> user_id
        sessions.destroy_session(token)
    """

    def __init__(
        self,
        store: AuthStore,
        ttl: timedelta = SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    def create_session(self, user_id: str) -> str:
        """Persist a new session for user_id and return its token.

        Raises StorageError if the insert fails.
        """
        token = generate_token()
        created = self._clock()
        session = Session(
            user_id=user_id,
            token=token,
            created_at=to_iso(created),
            expires_at=to_iso(created + self.ttl),
        )
        try:
            self.store.insert_session(session)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to create session.") from exc
        logger.info("Session created for user %s", user_id)
        return token

    def validate_session(self, token: str) -> str:
        """Return the user_id owning token, or raise InvalidOrExpiredSession."""
        if not token:
            raise InvalidOrExpiredSession()
        try:
            session = self.store.find_active_session(token, to_iso(self._clock()))
        except SQLAlchemyError:
            logger.warning("Session lookup failed; treating session as invalid", exc_info=True)
            raise InvalidOrExpiredSession() from None
        if session is None:
            raise InvalidOrExpiredSession()
        return session.user_id

    def destroy_session(self, token: str) -> None:
        """Delete the session for token. Deleting an unknown token is a no-op."""
        try:
            removed = self.store.delete_session(token)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to destroy session.") from exc
        if removed:
            logger.info("Session destroyed")

    def purge_expired(self) -> int:
        """Delete expired session rows. Returns the number removed."""
        try:
            removed = self.store.delete_expired_sessions(to_iso(self._clock()))
        except SQLAlchemyError as exc:
            raise StorageError("Failed to purge expired sessions.") from exc
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed


# ---------------------------------------------------------------------------
# Cookie transport
# ---------------------------------------------------------------------------


class SessionCookie:
    """Reads and writes the signed `session` cookie.

    Attributes follow the deployment mode:
      development: SameSite=Lax, Secure=false (plain-HTTP localhost works).
      production:  SameSite=Strict, Secure=true.
    Both: Path=/, HttpOnly, Max-Age = session TTL.
    """

    def __init__(self, settings: Settings) -> None:
        self._signer = Signer(settings.session_secret, salt="projectgate.session-cookie")
        self.max_age = settings.session_ttl_seconds
        self.secure = settings.is_production
        self.samesite = "strict" if settings.is_production else "lax"

    def read(self, conn: HTTPConnection) -> str | None:
        """Return the token carried by the request, or None if absent or tampered."""
        raw = conn.cookies.get(SESSION_COOKIE)
        if not raw:
            return None
        try:
            return self._signer.unsign(raw).decode("utf-8")
        except BadSignature:
            return None

    def set(self, response: Response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            value=self._signer.sign(token).decode("utf-8"),
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
        )

    def clear(self, response: Response) -> None:
        response.delete_cookie(
            SESSION_COOKIE,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
        )
