"""
auth/passwords.py -- Password hashing, verification and policy.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). The salt and cost are embedded
  in the hash string, so there is no separate salt column. The cost comes from
  Settings.bcrypt_cost (default 14); tests lower it for speed.

  check_password() never raises. A malformed hash, a non-bcrypt string or an
  oversized input all read as False, so callers cannot use errors as an
  oracle. bcrypt.checkpw does the constant-time comparison internally.

  bcrypt only looks at the first 72 bytes. Inputs are truncated explicitly
  before hashing and checking so bcrypt 4.x does not reject them.

  authenticate() always runs bcrypt, against a dummy hash when the email is
  unknown, so response time does not reveal whether an account exists.

Layer rule: no imports from api/. Settings are passed in, not imported.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import PasswordTooShort

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import AuthStore

logger = logging.getLogger("projectgate.auth")

MIN_PASSWORD_LENGTH = 8
DEFAULT_COST = 14

_BCRYPT_MAX_BYTES = 72


def _encode(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt hashing with a configured work factor.

    Usage:
        hasher = PasswordHasher(cost=settings.bcrypt_cost)
        h = hasher.hash_password("correct horse")
        hasher.check_password("correct horse", h)  # True
    """

    def __init__(self, cost: int = DEFAULT_COST) -> None:
        self.cost = cost
        # Built up front so the first unknown-email login costs one bcrypt check,
        # the same as a wrong-password login.
        self._dummy_hash = self.hash_password("projectgate_timing_dummy")

    def hash_password(self, plaintext: str) -> str:
        return bcrypt.hashpw(_encode(plaintext), bcrypt.gensalt(rounds=self.cost)).decode("utf-8")

    def check_password(self, plaintext: str, password_hash: str) -> bool:
        """Return True only if plaintext matches password_hash."""
        try:
            return bcrypt.checkpw(_encode(plaintext), password_hash.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False

    def validate_password(self, plaintext: str) -> None:
        """Raise PasswordTooShort if plaintext is under MIN_PASSWORD_LENGTH characters.

        Entropy checks and denylists would go here.
        """
        if len(plaintext) < MIN_PASSWORD_LENGTH:
            raise PasswordTooShort(MIN_PASSWORD_LENGTH)

    def authenticate(self, store: AuthStore, email: str, password: str) -> User | None:
        """Return the User when email and password match, None otherwise.

        Unknown email: bcrypt runs against a dummy hash of the same cost.
        Wrong password: bcrypt runs against the real hash.
        Both cost the same, so timing does not enumerate accounts.
        """
        user = store.get_user_by_email(email)
        if user is None:
            self.check_password(password, self._dummy_hash)
            return None
        if not self.check_password(password, user.password_hash):
            return None
        return user

