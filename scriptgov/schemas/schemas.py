"""Pydantic schemas for API request/response serialization.

Fields are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime

from scriptgov.core.permissions import UserRole
from scriptgov.models.approval import ApprovalAction, ApprovalStatus, Priority, ScriptType
from scriptgov.models.script_version import ChangeType


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ---- Roles ----
class RoleAssignRequest(CamelModel):
    target_user_id: str = Field(..., min_length=1)
    target_email: str = Field(..., min_length=3)
    role: UserRole

class RoleAssignmentOut(CamelModel):
    user_id: str
    email: str
    role: UserRole
    assigned_by: str
    assigned_at: datetime
    updated_at: datetime
    is_active: bool

class MeOut(CamelModel):
    user_id: str
    email: str
    role: Optional[UserRole] = None
    permissions: List[str] = []


# ---- Scripts ----
class ScriptCreate(CamelModel):
    script_id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    cn_name: str = ""
    description: str = ""
    cn_description: str = ""
    scope: str = ""
    cn_scope: str = ""
    author: Optional[str] = None
    hashtags: List[str] = []
    sql_content: str = Field(..., min_length=1)
    is_scheduled: bool = False
    cron_schedule: str = ""
    priority: Priority = Priority.medium

class ScriptUpdate(CamelModel):
    name: Optional[str] = None
    cn_name: Optional[str] = None
    description: Optional[str] = None
    cn_description: Optional[str] = None
    scope: Optional[str] = None
    cn_scope: Optional[str] = None
    author: Optional[str] = None
    hashtags: Optional[List[str]] = None
    sql_content: Optional[str] = None
    is_scheduled: Optional[bool] = None
    cron_schedule: Optional[str] = None
    priority: Priority = Priority.medium
    change_description: Optional[str] = None

class ScriptOut(CamelModel):
    script_id: str
    name: str
    cn_name: str = ""
    description: str = ""
    cn_description: str = ""
    scope: str = ""
    cn_scope: str = ""
    author: str = ""
    hashtags: List[str] = []
    sql_content: str
    is_scheduled: bool = False
    cron_schedule: str = ""
    approval_status: ApprovalStatus
    approval_request_id: Optional[str] = None
    current_version: int
    created_by: str
    created_at: datetime
    updated_at: datetime


# ---- Versions ----
class ScriptVersionOut(CamelModel):
    version_id: str
    script_id: str
    version: int
    name: str
    cn_name: str = ""
    description: str = ""
    cn_description: str = ""
    scope: str = ""
    cn_scope: str = ""
    author: str = ""
    hashtags: List[str] = []
    sql_content: str
    is_scheduled: bool = False
    cron_schedule: str = ""
    approval_status: Optional[ApprovalStatus] = None
    approval_request_id: Optional[str] = None
    change_type: ChangeType
    change_description: Optional[str] = None
    rolled_back_from: Optional[int] = None
    created_by: str
    created_by_email: str
    created_at: datetime

class RollbackRequest(CamelModel):
    target_version: int = Field(..., ge=1)
    reason: Optional[str] = None


# ---- Approvals ----
class ApprovalRequestOut(CamelModel):
    request_id: str
    script_id: str
    script_type: ScriptType
    status: ApprovalStatus
    priority: Priority
    title: str
    description: str = ""
    requester_id: str
    requester_email: str
    script_version: Optional[int] = None
    required_approvers: List[str] = []
    current_approvers: List[Dict[str, Any]] = []
    reviewed_by: Optional[str] = None
    reviewer_email: Optional[str] = None
    review_comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    requested_at: datetime
    updated_at: datetime
    is_complete: bool = False

class ApprovalHistoryOut(CamelModel):
    history_id: str
    request_id: str
    script_id: str
    action: ApprovalAction
    action_by: str
    action_by_email: str
    action_at: datetime
    previous_status: ApprovalStatus
    new_status: ApprovalStatus
    comment: Optional[str] = None

class DecisionRequest(CamelModel):
    comment: Optional[str] = None


# ---- Audit ----
class AuditLogOut(CamelModel):
    id: int
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    old_value_json: Optional[str] = None
    new_value_json: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
