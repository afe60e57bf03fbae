"""User role API router."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from scriptgov.api.responses import action_response
from scriptgov.core.security import (
    CurrentUser, Caller, get_current_user,
    require_role_assign, require_role_viewer, require_user_manage,
)
from scriptgov.db.session import get_db
from scriptgov.schemas.schemas import MeOut, RoleAssignRequest, RoleAssignmentOut
from scriptgov.services.authorization_service import authorization_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=MeOut)
async def get_me(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Current user's role and permissions (provisions viewer on first call)."""
    role = authorization_service.resolve_role(db, user.user_id, user.email)
    permissions = authorization_service.get_user_permissions(db, user.user_id)
    return MeOut(
        user_id=user.user_id,
        email=user.email,
        role=role,
        permissions=[p.value for p in permissions],
    )


@router.get("/roles")
async def list_roles(
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_role_viewer),
):
    """All active role assignments, most recently changed first."""
    assignments = authorization_service.get_all_user_roles(db)
    return {"data": [RoleAssignmentOut.model_validate(a) for a in assignments]}


@router.post("/roles")
async def assign_role(
    body: RoleAssignRequest,
    db: Session = Depends(get_db),
    user: Caller = Depends(require_role_assign),
):
    """Assign a role to a user."""
    result = authorization_service.set_user_role(
        db,
        target_user_id=body.target_user_id,
        target_email=body.target_email,
        role=body.role,
        assigned_by=user.user_id,
        assigned_by_email=user.email,
    )
    return action_response(result)


@router.delete("/roles")
async def remove_role(
    target_user_id: str = Query(..., alias="targetUserId"),
    db: Session = Depends(get_db),
    user: Caller = Depends(require_user_manage),
):
    """Deactivate a user's role."""
    result = authorization_service.remove_user_role(
        db,
        target_user_id=target_user_id,
        removed_by=user.user_id,
        removed_by_email=user.email,
    )
    return action_response(result)
