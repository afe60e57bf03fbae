"""Static role and permission registry.

The role -> permission table is compiled in and read-only; nothing at runtime
can grant a role an extra capability.
"""

import enum
from types import MappingProxyType
from typing import FrozenSet, Mapping


class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    developer = "developer"
    viewer = "viewer"


class Permission(str, enum.Enum):
    # Scripts
    script_create = "script:create"
    script_read = "script:read"
    script_update = "script:update"
    script_delete = "script:delete"
    script_execute = "script:execute"
    script_approve = "script:approve"
    script_reject = "script:reject"

    # History
    history_read = "history:read"
    history_delete = "history:delete"

    # Users
    user_manage = "user:manage"
    user_role_assign = "user:role:assign"

    # System
    system_manage = "system:manage"
    cache_manage = "cache:manage"


ROLE_RANK: Mapping[UserRole, int] = MappingProxyType({
    UserRole.admin: 4,
    UserRole.manager: 3,
    UserRole.developer: 2,
    UserRole.viewer: 1,
})

ROLE_PERMISSIONS: Mapping[UserRole, FrozenSet[Permission]] = MappingProxyType({
    UserRole.admin: frozenset(Permission),
    UserRole.manager: frozenset({
        Permission.script_create,
        Permission.script_read,
        Permission.script_update,
        Permission.script_delete,
        Permission.script_execute,
        Permission.script_approve,
        Permission.script_reject,
        Permission.history_read,
        Permission.user_role_assign,
    }),
    UserRole.developer: frozenset({
        Permission.script_create,
        Permission.script_read,
        Permission.script_update,
        Permission.script_execute,
        Permission.history_read,
    }),
    UserRole.viewer: frozenset({
        Permission.script_read,
        Permission.history_read,
    }),
})

DEFAULT_ROLE = UserRole.viewer


def permissions_for(role: UserRole) -> FrozenSet[Permission]:
    """Return the permission set granted to a role."""
    return ROLE_PERMISSIONS[UserRole(role)]


def role_has_permission(role: UserRole, permission: Permission) -> bool:
    return Permission(permission) in permissions_for(role)


def outranks(current_role: UserRole, target_role: UserRole) -> bool:
    """True when current_role sits strictly above target_role."""
    return ROLE_RANK[UserRole(current_role)] > ROLE_RANK[UserRole(target_role)]


def can_manage_role(current_role: UserRole, target_role: UserRole) -> bool:
    """Whether a holder of current_role may assign or revoke target_role.

    Only strictly lower roles can be managed, except that an admin may
    assign admin.
    """
    current_role = UserRole(current_role)
    target_role = UserRole(target_role)
    if current_role == UserRole.admin:
        return True
    return outranks(current_role, target_role)
