"""Script versions API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from scriptgov.api.responses import action_response
from scriptgov.core.security import Caller, require_history_read, require_script_update
from scriptgov.db.session import get_db
from scriptgov.schemas.schemas import RollbackRequest, ScriptVersionOut
from scriptgov.services.audit_service import audit_service
from scriptgov.services.version_service import version_service

router = APIRouter(prefix="/scripts/{script_id}/versions", tags=["versions"])


@router.get("")
async def list_versions(
    script_id: str,
    limit: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    """Versions of a script, newest first."""
    versions = version_service.get_script_versions(db, script_id, limit)
    return {"data": [ScriptVersionOut.model_validate(v) for v in versions]}


@router.get("/compare")
async def compare_versions(
    script_id: str,
    from_version: int = Query(..., alias="from", ge=1),
    to_version: int = Query(..., alias="to", ge=1),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    """Field-level and SQL line diff between two versions."""
    return version_service.compare_versions(db, script_id, from_version, to_version)


@router.get("/stats")
async def version_stats(
    script_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    return version_service.get_version_statistics(db, script_id)


@router.get("/{version}", response_model=ScriptVersionOut)
async def get_version(
    script_id: str,
    version: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    return version_service.get_script_version(db, script_id, version)


@router.post("/rollback")
async def rollback(
    script_id: str,
    body: RollbackRequest,
    request: Request,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_script_update),
):
    """Restore an earlier version by appending it as a new version."""
    result = version_service.rollback_to_version(
        db,
        script_id,
        body.target_version,
        user_id=caller.user_id,
        user_email=caller.email,
        reason=body.reason,
    )
    if result.success:
        audit_service.log_from_request(
            db, request, caller.user_id, caller.email,
            action="script.rolled_back",
            resource_type="script",
            resource_id=script_id,
            old_value={"version": result.data["newVersion"] - 1},
            new_value={
                "version": result.data["newVersion"],
                "rolledBackFrom": body.target_version,
                "reason": body.reason,
            },
        )
    return action_response(result)
