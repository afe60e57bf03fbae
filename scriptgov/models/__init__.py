"""Models package: import all models so metadata.create_all can discover them."""

from scriptgov.models.role_assignment import RoleAssignment
from scriptgov.models.approval import (
    ApprovalRequest, ApprovalHistory, ApprovalStatus, ApprovalAction, ScriptType, Priority,
)
from scriptgov.models.script import Script
from scriptgov.models.script_version import ScriptVersion, ChangeType
from scriptgov.models.script_lock import ScriptLock
from scriptgov.models.audit_log import AuditLog

__all__ = [
    "RoleAssignment", "Script", "ScriptVersion", "ChangeType", "ScriptLock",
    "ApprovalRequest", "ApprovalHistory", "ApprovalStatus", "ApprovalAction",
    "ScriptType", "Priority", "AuditLog",
]
