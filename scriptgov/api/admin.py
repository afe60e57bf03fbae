"""Admin / Audit API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from scriptgov.core.security import Caller, require_cache_manage, require_system_manage
from scriptgov.db.session import get_db
from scriptgov.schemas.schemas import AuditLogOut
from scriptgov.services.approval_service import approval_service
from scriptgov.services.audit_service import audit_service
from scriptgov.services.cache_service import cache_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit")
async def get_audit_logs(
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    actor_id: Optional[str] = Query(None, alias="actorId"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200, alias="pageSize"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_system_manage),
):
    """Query audit logs (admin only)."""
    result = audit_service.query_logs(
        db, actor_id, action, resource_type, resource_id, page, page_size,
    )
    return {
        "logs": [AuditLogOut.model_validate(log) for log in result["logs"]],
        "total": result["total"],
        "page": result["page"],
    }


@router.post("/scripts/{script_id}/sync")
async def sync_script_status(
    script_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_system_manage),
):
    """Re-derive a script's approval status from its requests."""
    status = approval_service.sync_script_status(db, script_id)
    cache_service.clear_scripts_cache()
    return {"scriptId": script_id, "approvalStatus": status.value}


@router.delete("/cache")
async def clear_cache(caller: Caller = Depends(require_cache_manage)):
    """Drop memoized script listings."""
    cache_service.clear_scripts_cache()
    return {"message": "Script cache cleared"}
