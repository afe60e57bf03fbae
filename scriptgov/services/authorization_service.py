"""Authorization engine: permission checks and role management.

Every "may this caller do X" question in the service is answered here, from
the caller's stored role and the static permission registry. Outcomes are
typed; the engine never raises for a denial.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scriptgov.core import permissions as registry
from scriptgov.core.exceptions import (
    ActionResult, AuthorizationError, FailureReason, InvalidStateError,
    ResourceNotFoundError, ScriptGovernanceError, StoreUnavailableError,
)
from scriptgov.core.permissions import Permission, UserRole
from scriptgov.db.session import store_errors
from scriptgov.models.role_assignment import RoleAssignment
from scriptgov.services.audit_service import audit_service
from scriptgov.services.role_service import role_service

logger = logging.getLogger("script_governance")


@dataclass(frozen=True)
class AuthorizationResult:
    authorized: bool
    user_role: Optional[UserRole] = None
    reason: Optional[FailureReason] = None


class AuthorizationService:
    """Resolves callers' roles and gates role assignment."""

    @staticmethod
    def resolve_role(db: Session, user_id: str, email: Optional[str] = None) -> Optional[UserRole]:
        """Return the caller's active role, provisioning the default on first sight.

        A deactivated assignment resolves to None and is not re-provisioned.
        """
        assignment = role_service.get_assignment(db, user_id)
        if assignment is None:
            assignment = role_service.provision_default(db, user_id, email)
        if assignment is None or not assignment.is_active:
            return None
        return assignment.role

    @staticmethod
    def require_permission(
        db: Session,
        user_id: str,
        permission: Permission,
        email: Optional[str] = None,
    ) -> AuthorizationResult:
        """Check whether the user's role grants ``permission``.

        Fails closed: if the store cannot be read, the answer is "no".
        """
        try:
            role = AuthorizationService.resolve_role(db, user_id, email)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Permission check for %s failed closed: %s", user_id, exc)
            return AuthorizationResult(authorized=False, reason=FailureReason.store_unavailable)

        if role is None:
            return AuthorizationResult(authorized=False, reason=FailureReason.unauthorized)
        if not registry.role_has_permission(role, permission):
            return AuthorizationResult(
                authorized=False, user_role=role, reason=FailureReason.unauthorized,
            )
        return AuthorizationResult(authorized=True, user_role=role)

    @staticmethod
    def can_manage_role(current_role: UserRole, target_role: UserRole) -> bool:
        return registry.can_manage_role(current_role, target_role)

    @staticmethod
    def get_user_role(db: Session, user_id: str) -> Optional[UserRole]:
        with store_errors(db):
            return role_service.get_user_role(db, user_id)

    @staticmethod
    def get_user_permissions(db: Session, user_id: str) -> List[Permission]:
        """Sorted permission list for the user's active role."""
        role = AuthorizationService.get_user_role(db, user_id)
        if role is None:
            return []
        return sorted(registry.permissions_for(role), key=lambda p: p.value)

    @staticmethod
    def get_all_user_roles(db: Session) -> List[RoleAssignment]:
        with store_errors(db):
            return role_service.list_active(db)

    @staticmethod
    def set_user_role(
        db: Session,
        target_user_id: str,
        target_email: str,
        role: UserRole,
        assigned_by: str,
        assigned_by_email: Optional[str] = None,
    ) -> ActionResult:
        """Assign ``role`` to the target user on behalf of ``assigned_by``."""
        try:
            with store_errors(db):
                role = UserRole(role)
                if not target_user_id or not target_email:
                    raise InvalidStateError("targetUserId and targetEmail are required")

                caller_role = AuthorizationService._caller_role_with(
                    db, assigned_by, Permission.user_role_assign,
                )
                if not registry.can_manage_role(caller_role, role):
                    raise AuthorizationError(
                        f"Insufficient permission: {caller_role.value} cannot assign {role.value}"
                    )
                if target_user_id == assigned_by and caller_role != UserRole.admin:
                    raise AuthorizationError("Cannot modify your own role")

                existing = role_service.get_assignment(db, target_user_id)
                previous_role = existing.role if existing and existing.is_active else None
                if (
                    previous_role is not None
                    and target_user_id != assigned_by
                    and not registry.can_manage_role(caller_role, previous_role)
                ):
                    raise AuthorizationError(
                        f"Insufficient permission: {caller_role.value} cannot manage {previous_role.value}"
                    )

                assignment = role_service.upsert(
                    db, target_user_id, target_email, role, assigned_by_email or assigned_by,
                )
                audit_service.log(
                    db,
                    actor_id=assigned_by,
                    actor_email=assigned_by_email,
                    action="role.assigned",
                    resource_type="user_role",
                    resource_id=target_user_id,
                    old_value={"role": previous_role.value} if previous_role else None,
                    new_value={"role": role.value, "email": target_email},
                )
        except StoreUnavailableError:
            raise
        except ValueError:
            return ActionResult.failed(InvalidStateError(f"Invalid role: {role}"))
        except ScriptGovernanceError as exc:
            logger.info("Role assignment for %s refused: %s", target_user_id, exc.message)
            return ActionResult.failed(exc)

        logger.info("Role of %s set to %s by %s", target_email, role.value, assigned_by)
        return ActionResult.ok(
            f"Role of {target_email} set to {role.value}",
            targetUserId=target_user_id,
            targetEmail=target_email,
            role=assignment.role.value,
        )

    @staticmethod
    def remove_user_role(
        db: Session,
        target_user_id: str,
        removed_by: str,
        removed_by_email: Optional[str] = None,
    ) -> ActionResult:
        """Deactivate the target's assignment. Callers may never remove themselves."""
        try:
            with store_errors(db):
                caller_role = AuthorizationService._caller_role_with(
                    db, removed_by, Permission.user_manage,
                )
                if target_user_id == removed_by:
                    raise AuthorizationError("Cannot remove your own role")

                existing = role_service.get_assignment(db, target_user_id)
                if existing is None or not existing.is_active:
                    raise ResourceNotFoundError(f"No active role for user {target_user_id}")
                previous_role = existing.role
                if not registry.can_manage_role(caller_role, previous_role):
                    raise AuthorizationError(
                        f"Insufficient permission: {caller_role.value} cannot manage {previous_role.value}"
                    )

                role_service.deactivate(db, target_user_id)
                audit_service.log(
                    db,
                    actor_id=removed_by,
                    actor_email=removed_by_email,
                    action="role.removed",
                    resource_type="user_role",
                    resource_id=target_user_id,
                    old_value={"role": previous_role.value},
                )
        except StoreUnavailableError:
            raise
        except ScriptGovernanceError as exc:
            return ActionResult.failed(exc)

        logger.info("Role of %s removed by %s", target_user_id, removed_by)
        return ActionResult.ok("Role removed", targetUserId=target_user_id)

    @staticmethod
    def _caller_role_with(db: Session, user_id: str, permission: Permission) -> UserRole:
        check = AuthorizationService.require_permission(db, user_id, permission)
        if check.reason == FailureReason.store_unavailable:
            raise StoreUnavailableError("Role store unavailable")
        if not check.authorized:
            raise AuthorizationError("Insufficient permission")
        return check.user_role


authorization_service = AuthorizationService()
