"""
tests/test_permissions.py -- Unit tests for auth/permissions.py.

Pure functions, no store: users are built by hand from dataclasses.

Coverage:
  - resolve_permissions: union of direct and role permissions, deduplicated
  - inactive permissions and inactive roles never contribute
  - enforce_permissions: AND semantics, missing codes reported sorted
  - empty requirement allows any principal, but never a missing one
"""

from __future__ import annotations

import pytest

from auth.errors import InsufficientPermission
from auth.models import Permission, Principal, Role, User
from auth.permissions import enforce_permissions, resolve_permissions


def _perm(code: str, active: bool = True) -> Permission:
    return Permission(code=code, is_active=active)


def _principal(*codes: str) -> Principal:
    return Principal(user_id=1, email="p@example.com", permissions=frozenset(codes))


class TestResolvePermissions:
    def test_union_of_direct_and_role_permissions(self) -> None:
        """Direct and role-derived codes are merged into one set."""
        user = User(
            email="u@example.com",
            permissions=[_perm("jobs:read")],
            roles=[Role(code="recruiter", permissions=[_perm("applications:update"), _perm("jobs:read")])],
        )
        assert resolve_permissions(user) == frozenset({"jobs:read", "applications:update"})

    def test_duplicates_across_roles_collapse(self) -> None:
        user = User(
            email="u@example.com",
            roles=[
                Role(code="a", permissions=[_perm("x:read"), _perm("x:update")]),
                Role(code="b", permissions=[_perm("x:update"), _perm("x:read")]),
            ],
        )
        assert resolve_permissions(user) == frozenset({"x:read", "x:update"})

    def test_order_of_roles_is_irrelevant(self) -> None:
        r1 = Role(code="a", permissions=[_perm("x:read")])
        r2 = Role(code="b", permissions=[_perm("y:read")])
        u1 = User(email="u@example.com", roles=[r1, r2])
        u2 = User(email="u@example.com", roles=[r2, r1])
        assert resolve_permissions(u1) == resolve_permissions(u2)

    def test_inactive_direct_permission_is_ignored(self) -> None:
        user = User(email="u@example.com", permissions=[_perm("users:delete", active=False)])
        assert resolve_permissions(user) == frozenset()

    def test_inactive_role_permission_is_ignored(self) -> None:
        """A still-linked but deactivated permission must not be granted through a role."""
        user = User(
            email="u@example.com",
            roles=[Role(code="admin", permissions=[_perm("users:delete", active=False), _perm("users:read")])],
        )
        assert resolve_permissions(user) == frozenset({"users:read"})

    def test_inactive_role_contributes_nothing(self) -> None:
        user = User(
            email="u@example.com",
            roles=[Role(code="admin", is_active=False, permissions=[_perm("users:delete")])],
        )
        assert resolve_permissions(user) == frozenset()

    def test_user_without_links_has_empty_set(self) -> None:
        assert resolve_permissions(User(email="u@example.com")) == frozenset()


class TestEnforcePermissions:
    def test_subset_is_allowed(self) -> None:
        enforce_permissions({"users:read"}, _principal("users:read", "users:update"))

    def test_all_required_codes_needed(self) -> None:
        """AND semantics: holding one of two required codes is not enough."""
        with pytest.raises(InsufficientPermission) as exc_info:
            enforce_permissions({"users:read", "users:delete"}, _principal("users:read"))
        assert exc_info.value.missing == ["users:delete"]
        assert exc_info.value.status_code == 403

    def test_dropping_any_required_code_flips_to_reject(self) -> None:
        required = {"a:read", "b:read", "c:read"}
        enforce_permissions(required, _principal(*required))
        for code in required:
            with pytest.raises(InsufficientPermission):
                enforce_permissions(required, _principal(*(required - {code})))

    def test_missing_codes_are_sorted_in_detail(self) -> None:
        with pytest.raises(InsufficientPermission) as exc_info:
            enforce_permissions({"z:read", "a:read"}, _principal())
        assert exc_info.value.missing == ["a:read", "z:read"]
        assert exc_info.value.detail == "Missing required permissions: a:read, z:read"

    def test_empty_requirement_allows_any_principal(self) -> None:
        enforce_permissions(set(), _principal())

    def test_missing_principal_is_refused(self) -> None:
        with pytest.raises(InsufficientPermission):
            enforce_permissions(set(), None)
