"""
auth/errors.py -- Error kinds raised by the auth core.

Unauthorized means "no usable identity"; Forbidden means "known identity,
wrong role". The API layer maps these to 401 and 403 respectively. The core
never formats user-facing text beyond the short messages below.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""


class InvalidOrExpiredSession(AuthError):
    """No session row matches the token, or the matching row has expired.

    Deliberately a single kind: callers cannot tell a missing token from an
    expired one.
    """

    def __init__(self, message: str = "Invalid or expired session.") -> None:
        super().__init__(message)


class Unauthorized(AuthError):
    """The request carries no valid session credential."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class Forbidden(AuthError):
    """The caller is authenticated but lacks the required project role."""

    def __init__(self, project_id: str, required_role: str) -> None:
        self.project_id = project_id
        self.required_role = required_role
        super().__init__(f"Role {required_role} required on project {project_id}.")


class PasswordTooShort(AuthError):
    def __init__(self, min_length: int) -> None:
        self.min_length = min_length
        super().__init__(f"Password must be at least {min_length} characters long.")


class StorageError(AuthError):
    """A persistence operation failed. The original exception is chained as __cause__."""
