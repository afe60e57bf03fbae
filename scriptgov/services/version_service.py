"""Version control: append-only script snapshots, diff, compare, rollback.

Version numbers per script are gap-free and start at 1. A new version is
written by inserting ``max + 1``; the unique (script_id, version) constraint
turns a lost race into a Conflict instead of a duplicate. The Script row is
then updated only if its mirrored ``current_version`` is still older, so a
slow writer never overwrites a newer mirror.
"""

import difflib
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scriptgov.core.config import settings
from scriptgov.core.exceptions import (
    ActionResult, ResourceConflictError, ResourceNotFoundError,
    ScriptGovernanceError, StoreUnavailableError,
)
from scriptgov.db.base import generate_id, utcnow
from scriptgov.db.session import store_errors
from scriptgov.models.approval import ApprovalRequest, ApprovalStatus
from scriptgov.models.script import SNAPSHOT_FIELDS, Script
from scriptgov.models.script_version import ChangeType, ScriptVersion
from scriptgov.services.cache_service import cache_service
from scriptgov.services.lock_service import lock_service

logger = logging.getLogger("script_governance")

# (wire name, column, label) of the fields compared between versions
TRACKED_FIELDS = (
    ("name", "name", "Script name"),
    ("cnName", "cn_name", "Chinese name"),
    ("description", "description", "Description"),
    ("cnDescription", "cn_description", "Chinese description"),
    ("scope", "scope", "Scope"),
    ("cnScope", "cn_scope", "Chinese scope"),
    ("author", "author", "Author"),
    ("isScheduled", "is_scheduled", "Scheduled"),
    ("cronSchedule", "cron_schedule", "Cron schedule"),
    ("sqlContent", "sql_content", "SQL content"),
)


def version_fields(version: ScriptVersion) -> Dict[str, Any]:
    """The tracked snapshot carried by a version row."""
    return {name: getattr(version, name) for name in SNAPSHOT_FIELDS}


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _change_type(old: Any, new: Any) -> str:
    if _normalize(old) == _normalize(new):
        return "unchanged"
    if isinstance(old, bool) or isinstance(new, bool):
        return "modified"
    if not _normalize(old):
        return "added"
    if not _normalize(new):
        return "removed"
    return "modified"


def sql_diff(old_sql: str, new_sql: str) -> Dict[str, Any]:
    """Line-level diff of two SQL bodies."""
    old_lines = [line.rstrip() for line in (old_sql or "").splitlines()]
    new_lines = [line.rstrip() for line in (new_sql or "").splitlines()]
    additions: List[str] = []
    deletions: List[str] = []
    for line in difflib.ndiff(old_lines, new_lines):
        if line.startswith("+ ") and line[2:].strip():
            additions.append(line[2:])
        elif line.startswith("- ") and line[2:].strip():
            deletions.append(line[2:])
    unified = "\n".join(
        difflib.unified_diff(old_lines, new_lines, fromfile="from", tofile="to", lineterm="")
    )
    return {"additions": additions, "deletions": deletions, "unified": unified}


class VersionService:
    """Append-only version store plus read-side version control."""

    # ---- Store ----

    @staticmethod
    def latest_version(db: Session, script_id: str) -> int:
        latest = (
            db.query(func.max(ScriptVersion.version))
            .filter(ScriptVersion.script_id == script_id)
            .scalar()
        )
        return latest or 0

    @staticmethod
    def append_version(
        db: Session,
        script: Script,
        change_type: ChangeType,
        created_by: str,
        created_by_email: str,
        change_description: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
        rolled_back_from: Optional[int] = None,
        approval_status: Optional[ApprovalStatus] = None,
        approval_request_id: Optional[str] = None,
    ) -> ScriptVersion:
        """Append the next version of ``script`` and mirror it onto the script.

        ``fields`` defaults to the script's current tracked fields. Callers
        hold the script's write lock.

        Raises:
            ResourceConflictError: another writer took the version number.
        """
        script_id = script.script_id
        snapshot = dict(fields) if fields is not None else script.snapshot()
        if approval_status is None:
            approval_status = script.approval_status
        if approval_request_id is None:
            approval_request_id = script.approval_request_id

        next_version = VersionService.latest_version(db, script_id) + 1
        now = utcnow()
        version = ScriptVersion(
            version_id=generate_id("ver"),
            script_id=script_id,
            version=next_version,
            approval_status=approval_status,
            approval_request_id=approval_request_id,
            change_type=change_type,
            change_description=change_description,
            rolled_back_from=rolled_back_from,
            created_by=created_by,
            created_by_email=created_by_email,
            created_at=now,
            **snapshot,
        )
        db.add(version)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("Version %d of %s already taken", next_version, script_id)
            raise ResourceConflictError(
                f"Version {next_version} of script '{script_id}' was written concurrently; "
                "refresh and retry"
            )
        db.refresh(version)

        mirror = dict(snapshot, current_version=next_version, updated_at=now)
        (
            db.query(Script)
            .filter(Script.script_id == script_id, Script.current_version < next_version)
            .update(mirror, synchronize_session=False)
        )
        db.commit()

        logger.info("Script %s v%d created (%s)", script_id, next_version, change_type.value)
        return version

    # ---- Queries ----

    @staticmethod
    def get_script_versions(db: Session, script_id: str, limit: Optional[int] = None) -> List[ScriptVersion]:
        """Versions of a script, newest first."""
        if limit is None:
            limit = settings.DEFAULT_VERSION_LIMIT
        limit = max(1, min(limit, settings.MAX_PAGE_SIZE))
        with store_errors(db):
            return (
                db.query(ScriptVersion)
                .filter(ScriptVersion.script_id == script_id)
                .order_by(ScriptVersion.version.desc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def get_current_version(db: Session, script_id: str) -> ScriptVersion:
        """The newest version of a script."""
        with store_errors(db):
            row = (
                db.query(ScriptVersion)
                .filter(ScriptVersion.script_id == script_id)
                .order_by(ScriptVersion.version.desc())
                .first()
            )
        if row is None:
            raise ResourceNotFoundError(f"Script '{script_id}' has no versions")
        return row

    @staticmethod
    def get_script_version(db: Session, script_id: str, version: int) -> ScriptVersion:
        with store_errors(db):
            row = (
                db.query(ScriptVersion)
                .filter(ScriptVersion.script_id == script_id, ScriptVersion.version == version)
                .first()
            )
        if row is None:
            raise ResourceNotFoundError(f"Version {version} of script '{script_id}' not found")
        return row

    @staticmethod
    def compare_versions(db: Session, script_id: str, from_version: int, to_version: int) -> Dict[str, Any]:
        """Field-level diff between two versions (in either order)."""
        old = VersionService.get_script_version(db, script_id, from_version)
        new = VersionService.get_script_version(db, script_id, to_version)

        differences = []
        for wire_name, column, label in TRACKED_FIELDS:
            old_value = getattr(old, column)
            new_value = getattr(new, column)
            differences.append({
                "field": wire_name,
                "label": label,
                "oldValue": old_value,
                "newValue": new_value,
                "changeType": _change_type(old_value, new_value),
            })

        return {
            "scriptId": script_id,
            "fromVersion": from_version,
            "toVersion": to_version,
            "differences": differences,
            "changedFields": [d["field"] for d in differences if d["changeType"] != "unchanged"],
            "sqlDiff": sql_diff(old.sql_content, new.sql_content),
        }

    @staticmethod
    def get_version_statistics(db: Session, script_id: str) -> Dict[str, Any]:
        """Aggregate report over the version list of a script."""
        with store_errors(db):
            versions = (
                db.query(ScriptVersion)
                .filter(ScriptVersion.script_id == script_id)
                .order_by(ScriptVersion.version.asc())
                .all()
            )
        if not versions:
            raise ResourceNotFoundError(f"Script '{script_id}' has no versions")

        operations = Counter(v.change_type.value for v in versions)
        rollback_targets = Counter(v.rolled_back_from for v in versions if v.rolled_back_from)
        return {
            "scriptId": script_id,
            "totalVersions": len(versions),
            "currentVersion": versions[-1].version,
            "authors": sorted({v.created_by_email or v.created_by for v in versions}),
            "operationCounts": {ct.value: operations.get(ct.value, 0) for ct in ChangeType},
            "totalRollbacks": operations.get(ChangeType.rollback.value, 0),
            "rollbackTargets": {str(k): n for k, n in sorted(rollback_targets.items())},
            "firstCreatedAt": versions[0].created_at,
            "latestChange": versions[-1].created_at,
        }

    # ---- Rollback ----

    @staticmethod
    def rollback_to_version(
        db: Session,
        script_id: str,
        target_version: int,
        user_id: str,
        user_email: str,
        reason: Optional[str] = None,
    ) -> ActionResult:
        """Restore a past version's fields by appending a new version.

        The target row and every other existing version stay untouched. Runs
        under the script's write lock, so the pending check cannot go stale
        before the append.
        """
        try:
            with store_errors(db), lock_service.hold(db, script_id, user_id):
                script = db.query(Script).filter(Script.script_id == script_id).first()
                if script is None:
                    raise ResourceNotFoundError(f"Script '{script_id}' not found")
                target = VersionService.get_script_version(db, script_id, target_version)

                pending = (
                    db.query(ApprovalRequest)
                    .filter(ApprovalRequest.pending_script_id == script_id)
                    .first()
                )
                if pending is not None:
                    raise ResourceConflictError(
                        f"Script '{script_id}' has pending approval request {pending.request_id}; "
                        "resolve it before rolling back"
                    )

                description = f"Rollback to version {target_version}"
                if reason:
                    description = f"{description}: {reason}"
                new_version = VersionService.append_version(
                    db,
                    script,
                    ChangeType.rollback,
                    created_by=user_id,
                    created_by_email=user_email,
                    change_description=description,
                    fields=version_fields(target),
                    rolled_back_from=target_version,
                )
        except StoreUnavailableError:
            raise
        except ScriptGovernanceError as exc:
            logger.info("Rollback of %s to v%s refused: %s", script_id, target_version, exc.message)
            return ActionResult.failed(exc)

        cache_service.clear_scripts_cache()
        logger.info(
            "Script %s rolled back to v%d as v%d by %s",
            script_id, target_version, new_version.version, user_email,
        )
        return ActionResult.ok(
            f"Rolled back to version {target_version}",
            scriptId=script_id,
            targetVersion=target_version,
            newVersion=new_version.version,
            newVersionId=new_version.version_id,
        )


version_service = VersionService()
