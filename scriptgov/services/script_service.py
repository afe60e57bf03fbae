"""Script catalogue: submit, edit, read and list governed scripts."""

import json
import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scriptgov.core.exceptions import (
    ActionResult, InvalidStateError, ResourceConflictError, ResourceNotFoundError,
    ScriptGovernanceError, StoreUnavailableError,
)
from scriptgov.core.permissions import UserRole
from scriptgov.db.base import utcnow
from scriptgov.db.session import store_errors
from scriptgov.models.approval import ApprovalRequest, ApprovalStatus, Priority
from scriptgov.models.script import Script
from scriptgov.models.script_version import ChangeType
from scriptgov.schemas.schemas import ScriptOut
from scriptgov.services.approval_service import approval_service, paginate
from scriptgov.services.cache_service import cache_service
from scriptgov.services.lock_service import lock_service
from scriptgov.services.version_service import version_service

logger = logging.getLogger("script_governance")

SCRIPT_ID_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

# Editable columns; hashtags arrive as a list and are stored as JSON
EDITABLE_FIELDS = (
    "name", "cn_name", "description", "cn_description", "scope", "cn_scope",
    "author", "hashtags", "sql_content", "is_scheduled", "cron_schedule",
)


def _to_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    columns = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and k != "hashtags"}
    if "hashtags" in data:
        columns["hashtags_json"] = json.dumps(list(data["hashtags"] or []))
    return columns


def _validate(fields: Dict[str, Any]) -> None:
    if not (fields.get("name") or "").strip():
        raise InvalidStateError("name is required")
    if not (fields.get("sql_content") or "").strip():
        raise InvalidStateError("sqlContent is required")


class ScriptService:
    """Script CRUD. Every content change is versioned and sent for approval."""

    @staticmethod
    def create_script(
        db: Session,
        data: Dict[str, Any],
        user_id: str,
        user_email: str,
        user_role: Optional[UserRole] = None,
        priority: Priority = Priority.medium,
    ) -> ActionResult:
        """Insert a DRAFT script, record version 1 and open its first approval request."""
        script_id = data.get("script_id") or ""
        try:
            if not SCRIPT_ID_PATTERN.match(script_id):
                raise InvalidStateError(
                    f"Invalid scriptId '{script_id}': use lowercase letters, digits and hyphens"
                )
            fields = _to_columns(data)
            fields.setdefault("author", user_email.split("@")[0])
            _validate(fields)

            with store_errors(db), lock_service.hold(db, script_id, user_id):
                if db.query(Script).filter(Script.script_id == script_id).first():
                    raise ResourceConflictError(f"Script '{script_id}' already exists")

                now = utcnow()
                script = Script(
                    script_id=script_id,
                    approval_status=ApprovalStatus.draft,
                    current_version=0,
                    created_by=user_id,
                    created_at=now,
                    updated_at=now,
                    **fields,
                )
                db.add(script)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise ResourceConflictError(f"Script '{script_id}' already exists")

                def write_version(request_id: str) -> int:
                    return version_service.append_version(
                        db, script, ChangeType.create,
                        created_by=user_id,
                        created_by_email=user_email,
                        change_description="Script created",
                        approval_status=ApprovalStatus.pending,
                        approval_request_id=request_id,
                    ).version

                request, version = approval_service.submit_change(
                    db, script_id, user_id, user_email, fields["sql_content"],
                    title=f"New script: {fields['name']}",
                    description=fields.get("description", ""),
                    priority=priority,
                    write_version=write_version,
                )
        except StoreUnavailableError:
            raise
        except ScriptGovernanceError as exc:
            logger.info("Script creation %s refused: %s", script_id, exc.message)
            return ActionResult.failed(exc)

        logger.info(
            "Script %s created by %s as %s", script_id, user_email,
            user_role.value if user_role else "unknown",
        )
        return ActionResult.ok(
            "Script submitted for approval",
            scriptId=script_id,
            version=version,
            approvalStatus=ApprovalStatus.pending.value,
            approvalRequestId=request.request_id,
            scriptType=request.script_type.value,
        )

    @staticmethod
    def update_script(
        db: Session,
        script_id: str,
        changes: Dict[str, Any],
        user_id: str,
        user_email: str,
        user_role: Optional[UserRole] = None,
        priority: Priority = Priority.medium,
        change_description: Optional[str] = None,
    ) -> ActionResult:
        """Version an edit and submit it for approval.

        Refused while a request for the script is still pending. The new
        request is claimed before the version is written, so the content
        under review is always the content the request was classified on.
        """
        try:
            with store_errors(db), lock_service.hold(db, script_id, user_id):
                script = ScriptService.get_script(db, script_id)
                pending = (
                    db.query(ApprovalRequest)
                    .filter(ApprovalRequest.pending_script_id == script_id)
                    .first()
                )
                if pending is not None:
                    raise ResourceConflictError(
                        f"Script '{script_id}' has pending approval request {pending.request_id}"
                    )

                current = script.snapshot()
                updates = {
                    k: v for k, v in _to_columns(changes).items()
                    if v is not None and v != current[k]
                }
                if not updates:
                    return ActionResult.ok(
                        "No changes", scriptId=script_id, version=script.current_version,
                    )
                merged = dict(current, **updates)
                _validate(merged)
                changed = sorted(updates)

                def write_version(request_id: str) -> int:
                    return version_service.append_version(
                        db, script, ChangeType.update,
                        created_by=user_id,
                        created_by_email=user_email,
                        change_description=change_description or f"Updated {', '.join(changed)}",
                        fields=merged,
                        approval_status=ApprovalStatus.pending,
                        approval_request_id=request_id,
                    ).version

                request, version = approval_service.submit_change(
                    db, script_id, user_id, user_email, merged["sql_content"],
                    title=f"Update script: {merged['name']}",
                    description=change_description or f"Changed fields: {', '.join(changed)}",
                    priority=priority,
                    write_version=write_version,
                )
        except StoreUnavailableError:
            raise
        except ScriptGovernanceError as exc:
            logger.info("Update of %s refused: %s", script_id, exc.message)
            return ActionResult.failed(exc)

        logger.info("Script %s updated to v%d by %s", script_id, version, user_email)
        return ActionResult.ok(
            "Script update submitted for approval",
            scriptId=script_id,
            version=version,
            changedFields=changed,
            approvalStatus=ApprovalStatus.pending.value,
            approvalRequestId=request.request_id,
            scriptType=request.script_type.value,
        )

    @staticmethod
    def get_script(db: Session, script_id: str) -> Script:
        with store_errors(db):
            script = db.query(Script).filter(Script.script_id == script_id).first()
        if script is None:
            raise ResourceNotFoundError(f"Script '{script_id}' not found")
        return script

    @staticmethod
    def list_scripts(
        db: Session,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        approval_status: Optional[ApprovalStatus] = None,
    ) -> Dict[str, Any]:
        """Paginated script listing, most recently changed first. Cached in Redis."""
        status_value = ApprovalStatus(approval_status).value if approval_status else ""
        cache_key = f"scripts:list:{page}:{limit}:{search or ''}:{status_value}"
        cached = cache_service.get_json(cache_key)
        if cached is not None:
            return cached

        with store_errors(db):
            query = db.query(Script)
            if search:
                term = f"%{search}%"
                query = query.filter(or_(
                    Script.script_id.ilike(term),
                    Script.name.ilike(term),
                    Script.cn_name.ilike(term),
                    Script.description.ilike(term),
                ))
            if status_value:
                query = query.filter(Script.approval_status == ApprovalStatus(status_value))
            query = query.order_by(Script.updated_at.desc(), Script.id.desc())
            result = paginate(query, page, limit)

        result["data"] = [
            ScriptOut.model_validate(s).model_dump(by_alias=True, mode="json")
            for s in result["data"]
        ]
        cache_service.set_json(cache_key, result)
        return result


script_service = ScriptService()
