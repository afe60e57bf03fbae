"""Seed the bootstrap admin role assignment from env vars."""

from typing import Optional

from sqlalchemy.orm import Session

from scriptgov.core.config import settings
from scriptgov.core.permissions import UserRole
from scriptgov.models.role_assignment import RoleAssignment
from scriptgov.services.audit_service import audit_service
from scriptgov.services.role_service import SYSTEM_ACTOR, role_service


def seed_admin(
    db: Session,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[RoleAssignment]:
    """Grant ADMIN to the bootstrap user if they are not already an active admin."""
    user_id = user_id or settings.BOOTSTRAP_ADMIN_USER_ID
    email = email or settings.BOOTSTRAP_ADMIN_EMAIL
    if not user_id:
        print("BOOTSTRAP_ADMIN_USER_ID not set, skipping admin seed.")
        return None

    existing = role_service.get_assignment(db, user_id)
    if existing and existing.is_active and existing.role == UserRole.admin:
        print(f"Admin '{user_id}' already exists, skipping.")
        return existing

    assignment = role_service.upsert(db, user_id, email, UserRole.admin, SYSTEM_ACTOR)
    audit_service.log(
        db,
        actor_id=SYSTEM_ACTOR,
        actor_email=None,
        action="role.assigned",
        resource_type="user_role",
        resource_id=user_id,
        old_value={"role": existing.role.value} if existing else None,
        new_value={"role": UserRole.admin.value, "email": email},
    )
    print(f"Granted admin to {email} ({user_id})")
    return assignment
