"""Tests for the static role/permission registry."""

import pytest

from scriptgov.core.permissions import (
    DEFAULT_ROLE, Permission, ROLE_PERMISSIONS, ROLE_RANK, UserRole,
    can_manage_role, outranks, permissions_for, role_has_permission,
)

A, M, D, V = UserRole.admin, UserRole.manager, UserRole.developer, UserRole.viewer


@pytest.mark.parametrize("current,target,expected", [
    (A, A, True), (A, M, True), (A, D, True), (A, V, True),
    (M, A, False), (M, M, False), (M, D, True), (M, V, True),
    (D, A, False), (D, M, False), (D, D, False), (D, V, True),
    (V, A, False), (V, M, False), (V, D, False), (V, V, False),
])
def test_can_manage_role(current, target, expected):
    assert can_manage_role(current, target) is expected


def test_rank_is_total_order():
    assert ROLE_RANK[A] > ROLE_RANK[M] > ROLE_RANK[D] > ROLE_RANK[V]
    assert outranks(M, D)
    assert not outranks(D, D)


def test_admin_holds_every_permission():
    assert permissions_for(A) == frozenset(Permission)


def test_manager_permissions():
    perms = permissions_for(M)
    assert Permission.script_approve in perms
    assert Permission.script_reject in perms
    assert Permission.user_role_assign in perms
    assert Permission.user_manage not in perms
    assert Permission.system_manage not in perms


def test_developer_cannot_review():
    assert role_has_permission(D, Permission.script_create)
    assert role_has_permission(D, Permission.script_update)
    assert not role_has_permission(D, Permission.script_approve)
    assert not role_has_permission(D, Permission.script_delete)


def test_viewer_is_read_only():
    assert permissions_for(V) == frozenset({Permission.script_read, Permission.history_read})
    assert DEFAULT_ROLE == V


def test_registry_is_immutable():
    with pytest.raises(TypeError):
        ROLE_PERMISSIONS[V] = frozenset(Permission)
    with pytest.raises(TypeError):
        ROLE_RANK[V] = 10


def test_permission_wire_names():
    assert Permission.user_role_assign.value == "user:role:assign"
    assert Permission.script_create.value == "script:create"
