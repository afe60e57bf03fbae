"""Approval workflow: request lifecycle and guarded state transitions.

    draft --submit--> pending --approve--> approved
                              --reject---> rejected
                              --withdraw-> withdrawn

Every transition out of ``pending`` is a conditional UPDATE on
``status = 'pending'``. Exactly one concurrent decision can match it; the
others see zero affected rows and get a Conflict. The Script row's
``approval_status`` is a mirror written after the request itself.

A request reviews one numbered script version. Submission claims the
PENDING slot before that version is written, and approval snapshots exactly
that version. Both run under the script's write lock (see lock_service), so
no other edit can slip between the review and what gets approved.
"""

import json
import logging
import math
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from scriptgov.core.config import settings
from scriptgov.core.exceptions import (
    ActionResult, AuthorizationError, InvalidStateError, ResourceConflictError,
    ResourceNotFoundError, ScriptGovernanceError, StoreUnavailableError,
)
from scriptgov.core.permissions import UserRole
from scriptgov.db.base import generate_id, utcnow
from scriptgov.db.session import store_errors
from scriptgov.models.approval import (
    ApprovalAction, ApprovalHistory, ApprovalRequest, ApprovalStatus,
    Priority, TERMINAL_STATUSES, can_transition,
)
from scriptgov.models.script import Script
from scriptgov.models.script_version import ChangeType
from scriptgov.services.authorization_service import authorization_service
from scriptgov.services.cache_service import cache_service
from scriptgov.services.sql_classifier import (
    analyze_script_type, required_approvers_for, script_types_reviewable_by,
)
from scriptgov.services.lock_service import lock_service
from scriptgov.services.version_service import version_fields, version_service

logger = logging.getLogger("script_governance")

_DECISION_ACTIONS = {
    ApprovalStatus.approved: ApprovalAction.approve,
    ApprovalStatus.rejected: ApprovalAction.reject,
    ApprovalStatus.withdrawn: ApprovalAction.withdraw,
}


def paginate(query: Query, page: int, limit: int) -> Dict[str, Any]:
    """Apply skip/limit to an ordered query and describe the page."""
    page = max(1, page or 1)
    limit = max(1, min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE))
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


class ApprovalService:
    """Creates approval requests and applies decisions to them."""

    # ---- Submission ----

    @staticmethod
    def create_approval_request(
        db: Session,
        script_id: str,
        requester_id: str,
        requester_email: str,
        requester_role: Optional[UserRole],
        sql_content: str,
        title: str,
        description: str = "",
        priority: Priority = Priority.medium,
    ) -> ActionResult:
        """Open a PENDING request reviewing the script's latest version.

        ``sql_content`` must be that version's SQL; it decides the script
        type and so which roles may review the request.
        """
        try:
            with store_errors(db), lock_service.hold(db, script_id, requester_id):
                script = db.query(Script).filter(Script.script_id == script_id).first()
                if script is None:
                    raise ResourceNotFoundError(f"Script '{script_id}' not found")
                current = version_service.latest_version(db, script_id)
                if current == 0:
                    raise InvalidStateError(f"Script '{script_id}' has no version to review")
                reviewed = version_service.get_script_version(db, script_id, current)
                if reviewed.sql_content != sql_content:
                    raise InvalidStateError(
                        f"sqlContent does not match version {current} of script '{script_id}'"
                    )

                request, _ = ApprovalService.submit_change(
                    db, script_id, requester_id, requester_email, sql_content,
                    title, description, priority,
                    write_version=lambda request_id: current,
                )
        except StoreUnavailableError:
            raise
        except ScriptGovernanceError as exc:
            logger.info("Approval request for %s refused: %s", script_id, exc.message)
            return ActionResult.failed(exc)

        logger.info(
            "Requester %s submitted %s as %s",
            requester_email, script_id,
            requester_role.value if requester_role else "unknown",
        )
        return ApprovalService.submitted_result(request)

    @staticmethod
    def submit_change(
        db: Session,
        script_id: str,
        requester_id: str,
        requester_email: str,
        sql_content: str,
        title: str,
        description: str,
        priority: Priority,
        write_version: Callable[[str], int],
    ) -> Tuple[ApprovalRequest, int]:
        """Claim the script's PENDING slot, write the version under review, submit it.

        Runs while the caller holds the script's write lock. ``write_version``
        receives the new request id and returns the version number the
        request reviews. If it fails, the claim is given back.

        Raises:
            ResourceConflictError: the script already has a PENDING request.
        """
        request_id = ApprovalService._claim(
            db, script_id, requester_id, requester_email, sql_content,
            title, description, priority,
        )
        try:
            version = write_version(request_id)
        except ScriptGovernanceError:
            ApprovalService._release_claim(db, request_id)
            raise

        now = utcnow()
        db.query(ApprovalRequest).filter(ApprovalRequest.request_id == request_id).update(
            {"script_version": version}, synchronize_session=False,
        )
        db.commit()
        ApprovalService._record_history(
            db, request_id, script_id, ApprovalAction.submit,
            requester_id, requester_email,
            ApprovalStatus.draft, ApprovalStatus.pending, None,
        )
        db.query(Script).filter(Script.script_id == script_id).update(
            {
                "approval_status": ApprovalStatus.pending,
                "approval_request_id": request_id,
                "updated_at": now,
            },
            synchronize_session=False,
        )
        db.commit()
        cache_service.clear_scripts_cache()

        request = ApprovalService.get_request(db, request_id)
        logger.info(
            "Approval request %s opened for %s v%d (%s)",
            request_id, script_id, version, request.script_type.value,
        )
        return request, version

    @staticmethod
    def submitted_result(request: ApprovalRequest) -> ActionResult:
        return ActionResult.ok(
            "Approval request submitted",
            requestId=request.request_id,
            scriptId=request.script_id,
            status=ApprovalStatus.pending.value,
            scriptType=request.script_type.value,
            requiredApprovers=request.required_approvers,
            scriptVersion=request.script_version,
        )

    @staticmethod
    def _claim(
        db: Session,
        script_id: str,
        requester_id: str,
        requester_email: str,
        sql_content: str,
        title: str,
        description: str,
        priority: Priority,
    ) -> str:
        """Insert the PENDING request; the unique ``pending_script_id`` admits one per script."""
        script_type = analyze_script_type(sql_content)
        now = utcnow()
        request = ApprovalRequest(
            request_id=generate_id("req"),
            script_id=script_id,
            pending_script_id=script_id,
            script_type=script_type,
            status=ApprovalStatus.pending,
            priority=Priority(priority),
            title=title,
            description=description or "",
            requester_id=requester_id,
            requester_email=requester_email,
            required_approvers_json=json.dumps(required_approvers_for(script_type)),
            current_approvers_json="[]",
            requested_at=now,
            updated_at=now,
        )
        db.add(request)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceConflictError(
                f"Script '{script_id}' already has a pending approval request"
            )
        return request.request_id

    @staticmethod
    def _release_claim(db: Session, request_id: str) -> None:
        """Drop a claimed request whose version was never written."""
        (
            db.query(ApprovalRequest)
            .filter(ApprovalRequest.request_id == request_id, ApprovalRequest.script_version.is_(None))
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.warning("Released claim %s after its version write failed", request_id)

    # ---- Decisions ----

    @staticmethod
    def approve_script(
        db: Session,
        request_id: str,
        user_id: str,
        user_email: str,
        comment: Optional[str] = None,
    ) -> ActionResult:
        """Approve a pending request and snapshot the approved script."""
        return ApprovalService._decide(
            db, request_id, user_id, user_email, ApprovalStatus.approved, comment,
        )

    @staticmethod
    def reject_script(
        db: Session,
        request_id: str,
        user_id: str,
        user_email: str,
        comment: Optional[str],
    ) -> ActionResult:
        """Reject a pending request. A comment is mandatory."""
        if not comment or not comment.strip():
            return ActionResult.failed(InvalidStateError("A comment is required to reject a script"))
        return ApprovalService._decide(
            db, request_id, user_id, user_email, ApprovalStatus.rejected, comment,
        )

    @staticmethod
    def withdraw_request(
        db: Session,
        request_id: str,
        user_id: str,
        user_email: str,
        comment: Optional[str] = None,
    ) -> ActionResult:
        """Withdraw a pending request. Only its requester or an admin may."""
        return ApprovalService._decide(
            db, request_id, user_id, user_email, ApprovalStatus.withdrawn, comment,
        )

    @staticmethod
    def _decide(
        db: Session,
        request_id: str,
        user_id: str,
        user_email: str,
        target: ApprovalStatus,
        comment: Optional[str],
    ) -> ActionResult:
        action = _DECISION_ACTIONS[target]
        version_number = None
        try:
            with store_errors(db):
                script_id = ApprovalService.get_request(db, request_id).script_id
                with lock_service.hold(db, script_id, user_id):
                    request = ApprovalService.get_request(db, request_id)
                    if not can_transition(request.status, target):
                        raise ResourceConflictError(
                            f"Request {request_id} is {request.status.value}; cannot {action.value}"
                        )

                    role = authorization_service.resolve_role(db, user_id, user_email)
                    ApprovalService._check_actor(request, user_id, role, target)
                    reviewed_version = request.script_version
                    if target == ApprovalStatus.approved and reviewed_version is None:
                        raise InvalidStateError(
                            f"Request {request_id} has no reviewed version; withdraw and resubmit it"
                        )

                    now = utcnow()
                    decisions = request.current_approvers
                    if target != ApprovalStatus.withdrawn:
                        decisions.append({
                            "userId": user_id,
                            "email": user_email,
                            "role": role.value,
                            "decision": target.value,
                            "comment": comment,
                            "timestamp": now.isoformat(),
                        })

                    updated = (
                        db.query(ApprovalRequest)
                        .filter(
                            ApprovalRequest.request_id == request_id,
                            ApprovalRequest.status == ApprovalStatus.pending,
                        )
                        .update(
                            {
                                "status": target,
                                "pending_script_id": None,
                                "reviewed_by": user_id,
                                "reviewer_email": user_email,
                                "review_comment": comment,
                                "reviewed_at": now,
                                "current_approvers_json": json.dumps(decisions),
                                "updated_at": now,
                            },
                            synchronize_session=False,
                        )
                    )
                    db.commit()
                    if updated == 0:
                        actual = ApprovalService.get_request(db, request_id).status
                        logger.warning(
                            "Lost race on %s: %s by %s found it %s",
                            request_id, action.value, user_email, actual.value,
                        )
                        raise ResourceConflictError(
                            f"Request {request_id} is already {actual.value}; "
                            f"expected {ApprovalStatus.pending.value}. Refresh and retry"
                        )

                    ApprovalService._record_history(
                        db, request_id, script_id, action, user_id, user_email,
                        ApprovalStatus.pending, target, comment,
                    )

                    if target == ApprovalStatus.withdrawn:
                        ApprovalService.sync_script_status(db, script_id)
                    else:
                        (
                            db.query(Script)
                            .filter(Script.script_id == script_id, Script.approval_request_id == request_id)
                            .update({"approval_status": target, "updated_at": now}, synchronize_session=False)
                        )
                        db.commit()

                    if target == ApprovalStatus.approved:
                        version_number = ApprovalService._snapshot_approval(
                            db, script_id, request_id, reviewed_version, user_id, user_email, comment,
                        )
        except StoreUnavailableError:
            raise
        except ScriptGovernanceError as exc:
            logger.info("%s on %s refused: %s", action.value, request_id, exc.message)
            return ActionResult.failed(exc)

        cache_service.clear_scripts_cache()
        logger.info("Request %s %s by %s", request_id, target.value, user_email)
        data = {"requestId": request_id, "scriptId": script_id, "status": target.value}
        if target == ApprovalStatus.approved:
            data["version"] = version_number
            data["reviewedVersion"] = reviewed_version
        return ActionResult.ok(f"Request {target.value}", **data)

    @staticmethod
    def _check_actor(
        request: ApprovalRequest,
        user_id: str,
        role: Optional[UserRole],
        target: ApprovalStatus,
    ) -> None:
        if role is None:
            raise AuthorizationError("Insufficient permission")
        is_requester = request.requester_id == user_id
        if target == ApprovalStatus.withdrawn:
            if not is_requester and role != UserRole.admin:
                raise AuthorizationError("Only the requester or an admin may withdraw a request")
            return
        if role.value not in request.required_approvers:
            raise AuthorizationError(
                f"Insufficient permission: role {role.value} cannot review "
                f"{request.script_type.value} scripts"
            )
        if is_requester and not settings.ALLOW_SELF_APPROVAL:
            raise AuthorizationError("Requesters cannot review their own request")

    @staticmethod
    def _snapshot_approval(
        db: Session,
        script_id: str,
        request_id: str,
        reviewed_version: int,
        user_id: str,
        user_email: str,
        comment: Optional[str],
    ) -> int:
        """Append the reviewed version's fields as an ``approve`` version.

        Runs under the script's write lock, so no other writer can take the
        version number.
        """
        script = db.query(Script).filter(Script.script_id == script_id).one()
        reviewed = version_service.get_script_version(db, script_id, reviewed_version)
        description = f"Approved version {reviewed_version} via {request_id}"
        if comment:
            description = f"{description}: {comment}"
        version = version_service.append_version(
            db,
            script,
            ChangeType.approve,
            created_by=user_id,
            created_by_email=user_email,
            change_description=description,
            fields=version_fields(reviewed),
            approval_status=ApprovalStatus.approved,
            approval_request_id=request_id,
        )
        return version.version

    @staticmethod
    def _record_history(
        db: Session,
        request_id: str,
        script_id: str,
        action: ApprovalAction,
        action_by: str,
        action_by_email: str,
        previous_status: ApprovalStatus,
        new_status: ApprovalStatus,
        comment: Optional[str],
    ) -> ApprovalHistory:
        entry = ApprovalHistory(
            history_id=generate_id("hist"),
            request_id=request_id,
            script_id=script_id,
            action=action,
            action_by=action_by,
            action_by_email=action_by_email,
            action_at=utcnow(),
            previous_status=previous_status,
            new_status=new_status,
            comment=comment,
        )
        db.add(entry)
        db.commit()
        return entry

    # ---- Mirror ----

    @staticmethod
    def sync_script_status(db: Session, script_id: str) -> ApprovalStatus:
        """Re-derive ``Script.approval_status`` from its latest non-withdrawn request."""
        latest = (
            db.query(ApprovalRequest)
            .filter(
                ApprovalRequest.script_id == script_id,
                ApprovalRequest.status != ApprovalStatus.withdrawn,
            )
            .order_by(ApprovalRequest.requested_at.desc(), ApprovalRequest.id.desc())
            .first()
        )
        status = latest.status if latest else ApprovalStatus.draft
        db.query(Script).filter(Script.script_id == script_id).update(
            {
                "approval_status": status,
                "approval_request_id": latest.request_id if latest else None,
            },
            synchronize_session=False,
        )
        db.commit()
        return status

    # ---- Queries ----

    @staticmethod
    def get_request(db: Session, request_id: str) -> ApprovalRequest:
        request = db.query(ApprovalRequest).filter(ApprovalRequest.request_id == request_id).first()
        if request is None:
            raise ResourceNotFoundError(f"Approval request {request_id} not found")
        return request

    @staticmethod
    def get_pending_approvals(
        db: Session,
        user_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Pending requests this user may decide on, newest first."""
        with store_errors(db):
            role = authorization_service.get_user_role(db, user_id)
            reviewable = script_types_reviewable_by(role) if role else []
            query = db.query(ApprovalRequest).filter(
                ApprovalRequest.status == ApprovalStatus.pending,
                ApprovalRequest.script_type.in_(reviewable),
            )
            if not settings.ALLOW_SELF_APPROVAL:
                query = query.filter(ApprovalRequest.requester_id != user_id)
            query = query.order_by(ApprovalRequest.requested_at.desc(), ApprovalRequest.id.desc())
            return paginate(query, page, limit)

    @staticmethod
    def get_completed_approvals(db: Session, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Requests in a terminal state, most recently decided first."""
        with store_errors(db):
            query = (
                db.query(ApprovalRequest)
                .filter(ApprovalRequest.status.in_(list(TERMINAL_STATUSES)))
                .order_by(ApprovalRequest.updated_at.desc(), ApprovalRequest.id.desc())
            )
            return paginate(query, page, limit)

    @staticmethod
    def get_approval_history(
        db: Session,
        script_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        with store_errors(db):
            query = db.query(ApprovalHistory)
            if script_id:
                query = query.filter(ApprovalHistory.script_id == script_id)
            if request_id:
                query = query.filter(ApprovalHistory.request_id == request_id)
            return query.order_by(ApprovalHistory.action_at.desc(), ApprovalHistory.id.desc()).all()


approval_service = ApprovalService()
