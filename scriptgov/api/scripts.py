"""Scripts API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from scriptgov.api.responses import action_response
from scriptgov.core.security import (
    Caller, require_script_create, require_script_read, require_script_update,
)
from scriptgov.db.session import get_db
from scriptgov.models.approval import ApprovalStatus
from scriptgov.schemas.schemas import ScriptCreate, ScriptOut, ScriptUpdate
from scriptgov.services.script_service import script_service

router = APIRouter(prefix="/scripts", tags=["scripts"])


@router.post("")
async def create_script(
    body: ScriptCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_script_create),
):
    """Create a script and submit it for approval."""
    result = script_service.create_script(
        db,
        body.model_dump(exclude={"priority"}, exclude_none=True),
        user_id=caller.user_id,
        user_email=caller.email,
        user_role=caller.role,
        priority=body.priority,
    )
    return action_response(result)


@router.get("")
async def list_scripts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    status: Optional[ApprovalStatus] = Query(None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_script_read),
):
    """List scripts with optional search and approval-status filter."""
    return script_service.list_scripts(db, page, limit, search, status)


@router.get("/{script_id}", response_model=ScriptOut)
async def get_script(
    script_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_script_read),
):
    return script_service.get_script(db, script_id)


@router.put("/{script_id}")
async def update_script(
    script_id: str,
    body: ScriptUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_script_update),
):
    """Edit a script. The change is versioned and sent for approval."""
    result = script_service.update_script(
        db,
        script_id,
        body.model_dump(exclude={"priority", "change_description"}, exclude_none=True),
        user_id=caller.user_id,
        user_email=caller.email,
        user_role=caller.role,
        priority=body.priority,
        change_description=body.change_description,
    )
    return action_response(result)
