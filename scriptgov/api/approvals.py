"""Approvals API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from scriptgov.api.responses import action_response
from scriptgov.core.security import (
    Caller, CurrentUser, get_current_user,
    require_approver, require_history_read, require_rejecter, require_reviewer,
)
from scriptgov.db.session import get_db
from scriptgov.schemas.schemas import ApprovalHistoryOut, ApprovalRequestOut, DecisionRequest
from scriptgov.services.approval_service import approval_service

router = APIRouter(prefix="/approvals", tags=["approvals"])


def _page(result: dict) -> dict:
    return {
        "data": [ApprovalRequestOut.model_validate(r) for r in result["data"]],
        "pagination": result["pagination"],
    }


@router.get("")
async def pending_approvals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_reviewer),
):
    """Pending requests the caller is eligible to decide on."""
    return _page(approval_service.get_pending_approvals(db, caller.user_id, page, limit))


@router.get("/completed")
async def completed_approvals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    return _page(approval_service.get_completed_approvals(db, page, limit))


@router.get("/history")
async def approval_history(
    script_id: Optional[str] = Query(None, alias="scriptId"),
    request_id: Optional[str] = Query(None, alias="requestId"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    """Decision log, newest first."""
    entries = approval_service.get_approval_history(db, script_id, request_id)
    return {"data": [ApprovalHistoryOut.model_validate(e) for e in entries]}


@router.get("/{request_id}", response_model=ApprovalRequestOut)
async def get_request(
    request_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_history_read),
):
    return approval_service.get_request(db, request_id)


@router.post("/{request_id}/approve")
async def approve(
    request_id: str,
    body: Optional[DecisionRequest] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_approver),
):
    result = approval_service.approve_script(
        db, request_id, caller.user_id, caller.email, body.comment if body else None,
    )
    return action_response(result)


@router.post("/{request_id}/reject")
async def reject(
    request_id: str,
    body: DecisionRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_rejecter),
):
    """Reject a request. A comment is required."""
    result = approval_service.reject_script(
        db, request_id, caller.user_id, caller.email, body.comment,
    )
    return action_response(result)


@router.post("/{request_id}/withdraw")
async def withdraw(
    request_id: str,
    body: Optional[DecisionRequest] = None,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Withdraw a pending request (requester or admin)."""
    result = approval_service.withdraw_request(
        db, request_id, user.user_id, user.email, body.comment if body else None,
    )
    return action_response(result)
