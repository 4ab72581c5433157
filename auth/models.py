"""
auth/models.py -- Domain dataclasses and the role hierarchy.

Pattern: Data class (pure data container, zero logic), same as the stores'
row mappers expect. Role is the one exception: it carries its rank so every
permission check in the repository consults a single ordered definition.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class Role(IntEnum):
    """Project roles, ordered by privilege. The integer value is the rank."""

    VIEWER = 1
    MEMBER = 2
    ADMIN = 3
    OWNER = 4

    @classmethod
    def parse(cls, value: str | Role | None) -> Role | None:
        """Normalize role text case-insensitively. Anything else, padded text included, is None."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        return cls.__members__.get(value.upper())


@dataclass
class User:
    """A local account. password_hash is a self-contained bcrypt string."""

    email: str
    name: str
    password_hash: str
    id: str | None = None
    created_at: str | None = None


@dataclass
class Session:
    """A persisted login. Never updated in place; deleted on logout.

    expires_at is created_at + session TTL (7 days by default). A session is
    valid iff its row exists and now < expires_at.
    """

    user_id: str
    token: str
    created_at: str  # ISO 8601 UTC
    expires_at: str  # ISO 8601 UTC
    id: str | None = None


@dataclass
class ProjectRole:
    """Binds a user to one role within one project. Unique per (project_id, user_id)."""

    project_id: str
    user_id: str
    role: str  # stored text; normalize with Role.parse()
    id: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """The resolved caller. The only view of authentication downstream code gets."""

    user_id: str
