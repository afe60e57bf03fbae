"""Role store adapter: CRUD over user -> role assignments."""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scriptgov.core.permissions import DEFAULT_ROLE, UserRole
from scriptgov.db.base import utcnow
from scriptgov.models.role_assignment import RoleAssignment

logger = logging.getLogger("script_governance")

SYSTEM_ACTOR = "system"


class RoleService:
    """Reads and writes RoleAssignment rows. No policy lives here."""

    @staticmethod
    def get_assignment(db: Session, user_id: str) -> Optional[RoleAssignment]:
        """Return the assignment for a user, active or not."""
        return db.query(RoleAssignment).filter(RoleAssignment.user_id == user_id).first()

    @staticmethod
    def get_user_role(db: Session, user_id: str) -> Optional[UserRole]:
        """Return the active role of a user, or None."""
        assignment = (
            db.query(RoleAssignment)
            .filter(RoleAssignment.user_id == user_id, RoleAssignment.is_active == True)
            .first()
        )
        return assignment.role if assignment else None

    @staticmethod
    def provision_default(db: Session, user_id: str, email: Optional[str] = None) -> RoleAssignment:
        """Create the default (viewer) assignment on first lookup.

        A concurrent first lookup for the same user loses on the unique
        user_id index; the loser re-reads the winner's row.
        """
        now = utcnow()
        assignment = RoleAssignment(
            user_id=user_id,
            email=email or "",
            role=DEFAULT_ROLE,
            assigned_by=SYSTEM_ACTOR,
            assigned_at=now,
            updated_at=now,
            is_active=True,
        )
        db.add(assignment)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return RoleService.get_assignment(db, user_id)
        db.refresh(assignment)
        logger.info("Provisioned default role %s for user %s", DEFAULT_ROLE.value, user_id)
        return assignment

    @staticmethod
    def upsert(
        db: Session,
        user_id: str,
        email: str,
        role: UserRole,
        assigned_by: str,
    ) -> RoleAssignment:
        """Insert or overwrite a user's role.

        The original ``assigned_at`` survives a re-grant; ``updated_at`` is
        always stamped and the assignment is reactivated.
        """
        now = utcnow()
        assignment = RoleService.get_assignment(db, user_id)
        if assignment is None:
            assignment = RoleAssignment(
                user_id=user_id,
                email=email,
                role=role,
                assigned_by=assigned_by,
                assigned_at=now,
                updated_at=now,
                is_active=True,
            )
            db.add(assignment)
            try:
                db.commit()
                db.refresh(assignment)
                return assignment
            except IntegrityError:
                db.rollback()
                assignment = RoleService.get_assignment(db, user_id)

        assignment.email = email
        assignment.role = role
        assignment.assigned_by = assigned_by
        assignment.updated_at = now
        assignment.is_active = True
        db.commit()
        db.refresh(assignment)
        return assignment

    @staticmethod
    def deactivate(db: Session, user_id: str) -> bool:
        """Mark an assignment inactive. Returns False if nothing changed."""
        updated = (
            db.query(RoleAssignment)
            .filter(RoleAssignment.user_id == user_id, RoleAssignment.is_active == True)
            .update({"is_active": False, "updated_at": utcnow()}, synchronize_session=False)
        )
        db.commit()
        return updated > 0

    @staticmethod
    def list_active(db: Session) -> List[RoleAssignment]:
        """All active assignments, most recently changed first."""
        return (
            db.query(RoleAssignment)
            .filter(RoleAssignment.is_active == True)
            .order_by(RoleAssignment.updated_at.desc(), RoleAssignment.id.desc())
            .all()
        )


role_service = RoleService()
