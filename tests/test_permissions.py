"""
tests/test_permissions.py -- Unit tests for auth/permissions.py and the Role enum.

Covers:
  - rank_of() table, case-insensitivity, unknown roles
  - satisfies() ordering and fail-closed behaviour
  - AuthorizationEngine.has_project_permission(): absent identity, missing
    row, unrecognized stored role, lookup failure, fresh reads
  - ensure_project_permission(): Unauthorized vs Forbidden
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import Forbidden, Unauthorized
from auth.models import Identity, Role
from auth.permissions import AuthorizationEngine, rank_of, satisfies

ALICE = Identity(user_id="alice")
PROJECT = "project-1"


class TestRankOf:
    @pytest.mark.parametrize(
        "role, rank",
        [("OWNER", 4), ("ADMIN", 3), ("MEMBER", 2), ("VIEWER", 1)],
    )
    def test_known_roles(self, role: str, rank: int) -> None:
        assert rank_of(role) == (rank, True)

    @pytest.mark.parametrize("role", ["owner", "Owner", "oWnEr"])
    def test_case_insensitive(self, role: str) -> None:
        assert rank_of(role) == (4, True)

    @pytest.mark.parametrize("role", ["unknown", "", "SUPERUSER", "OWNERS", " owner ", " OWNER\n", None, 4])
    def test_unknown_is_not_ok(self, role) -> None:
        assert rank_of(role) == (0, False)

    def test_accepts_enum_members(self) -> None:
        assert rank_of(Role.ADMIN) == (3, True)


class TestSatisfies:
    def test_owner_satisfies_viewer(self) -> None:
        assert satisfies("OWNER", "VIEWER") is True

    def test_viewer_does_not_satisfy_owner(self) -> None:
        assert satisfies("VIEWER", "OWNER") is False

    def test_case_insensitive(self) -> None:
        assert satisfies("owner", "viewer") is True

    def test_unknown_user_role_denies(self) -> None:
        assert satisfies("unknown", "VIEWER") is False

    def test_unknown_required_role_denies(self) -> None:
        assert satisfies("OWNER", "GOD") is False

    def test_equal_roles_satisfy(self) -> None:
        for role in Role:
            assert satisfies(role.name, role.name) is True

    def test_full_ordering(self) -> None:
        ordered = ["VIEWER", "MEMBER", "ADMIN", "OWNER"]
        for i, user_role in enumerate(ordered):
            for j, required in enumerate(ordered):
                assert satisfies(user_role, required) is (i >= j)


class TestHasProjectPermission:
    def test_absent_identity_denies(self, authz: AuthorizationEngine) -> None:
        assert authz.has_project_permission(None, PROJECT, "VIEWER") is False

    def test_no_role_row_denies(self, authz: AuthorizationEngine) -> None:
        assert authz.has_project_permission(ALICE, PROJECT, "VIEWER") is False

    def test_role_on_other_project_does_not_count(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role("other-project", ALICE.user_id, "OWNER")
        assert authz.has_project_permission(ALICE, PROJECT, "VIEWER") is False

    def test_member_meets_member_but_not_admin(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, "MEMBER")
        assert authz.has_project_permission(ALICE, PROJECT, "MEMBER") is True
        assert authz.has_project_permission(ALICE, PROJECT, Role.VIEWER) is True
        assert authz.has_project_permission(ALICE, PROJECT, "ADMIN") is False

    def test_lowercase_stored_role_is_normalized(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, "admin")
        assert authz.has_project_permission(ALICE, PROJECT, "MEMBER") is True

    def test_unrecognized_stored_role_denies(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, "SUPERUSER")
        assert authz.has_project_permission(ALICE, PROJECT, "VIEWER") is False

    def test_whitespace_padded_stored_role_denies(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, " OWNER\n")
        assert authz.has_project_permission(ALICE, PROJECT, "OWNER") is False
        assert authz.has_project_permission(ALICE, PROJECT, "VIEWER") is False

    def test_unrecognized_required_role_denies(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, "OWNER")
        assert authz.has_project_permission(ALICE, PROJECT, "ROOT") is False

    def test_lookup_failure_denies(self) -> None:
        store = MagicMock()
        store.get_project_role.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        assert AuthorizationEngine(store).has_project_permission(ALICE, PROJECT, "VIEWER") is False

    def test_role_changes_are_seen_immediately(self, store, authz: AuthorizationEngine) -> None:
        """No caching: every check re-reads the store."""
        store.set_project_role(PROJECT, ALICE.user_id, "VIEWER")
        assert authz.has_project_permission(ALICE, PROJECT, "ADMIN") is False
        store.set_project_role(PROJECT, ALICE.user_id, "ADMIN")
        assert authz.has_project_permission(ALICE, PROJECT, "ADMIN") is True
        store.remove_project_role(PROJECT, ALICE.user_id)
        assert authz.has_project_permission(ALICE, PROJECT, "VIEWER") is False


class TestEnsureProjectPermission:
    def test_no_identity_is_unauthorized(self, authz: AuthorizationEngine) -> None:
        with pytest.raises(Unauthorized):
            authz.ensure_project_permission(None, PROJECT, Role.VIEWER)

    def test_insufficient_role_is_forbidden(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, "MEMBER")
        with pytest.raises(Forbidden) as exc_info:
            authz.ensure_project_permission(ALICE, PROJECT, Role.ADMIN)
        assert exc_info.value.project_id == PROJECT
        assert exc_info.value.required_role == "ADMIN"

    def test_sufficient_role_returns_identity(self, store, authz: AuthorizationEngine) -> None:
        store.set_project_role(PROJECT, ALICE.user_id, "OWNER")
        assert authz.ensure_project_permission(ALICE, PROJECT, "admin") == ALICE


class TestProjectRoleStore:
    def test_one_row_per_member(self, store) -> None:
        store.set_project_role(PROJECT, "bob", "VIEWER")
        store.set_project_role(PROJECT, "bob", "ADMIN")
        rows = store.list_project_roles(PROJECT)
        assert [(r.user_id, r.role) for r in rows] == [("bob", "ADMIN")]
