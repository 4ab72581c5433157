"""
auth/permissions.py -- Project-scoped role checks.

Every check resolves roles through auth.models.Role, the single ordered
definition of VIEWER < MEMBER < ADMIN < OWNER.

Fail-closed: an absent identity, a missing role row, a role string that does
not normalize, or a failed lookup all answer False. Nothing ambiguous ever
grants access.

This is a guard, not a filter. Callers performing a project-scoped mutation
must call has_project_permission() or ensure_project_permission() first;
nothing here intercepts requests on its own. Roles are re-read from the store
on every call.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import Forbidden, Unauthorized
from auth.models import Identity, Role
from auth.store import AuthStore

logger = logging.getLogger("projectgate.auth")


def rank_of(role: str | Role | None) -> tuple[int, bool]:
    """Return (rank, ok) for role text, case-insensitive. Unknown roles give (0, False)."""
    parsed = Role.parse(role)
    if parsed is None:
        return 0, False
    return int(parsed), True


def satisfies(user_role: str | Role | None, required_role: str | Role | None) -> bool:
    """True iff both roles are known and user_role ranks at or above required_role."""
    user_rank, user_ok = rank_of(user_role)
    required_rank, required_ok = rank_of(required_role)
    if not (user_ok and required_ok):
        return False
    return user_rank >= required_rank


class AuthorizationEngine:
    """Answers "may this identity act at this role on this project?"."""

    def __init__(self, store: AuthStore) -> None:
        self.store = store

    def role_of(self, identity: Identity | None, project_id: str) -> Role | None:
        """Return the caller's normalized role on project_id, or None."""
        if identity is None:
            return None
        try:
            stored = self.store.get_project_role(project_id, identity.user_id)
        except SQLAlchemyError:
            logger.warning("Project role lookup failed for project %s; denying", project_id, exc_info=True)
            return None
        return Role.parse(stored)

    def has_project_permission(
        self,
        identity: Identity | None,
        project_id: str,
        required_role: str | Role,
    ) -> bool:
        return satisfies(self.role_of(identity, project_id), required_role)

    def ensure_project_permission(
        self,
        identity: Identity | None,
        project_id: str,
        required_role: str | Role,
    ) -> Identity:
        """Return identity if permitted. Raise Unauthorized (no identity) or Forbidden."""
        if identity is None:
            raise Unauthorized()
        if not self.has_project_permission(identity, project_id, required_role):
            required = Role.parse(required_role)
            raise Forbidden(project_id, required.name if required else str(required_role))
        return identity
