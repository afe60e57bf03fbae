"""Approval request and approval history models."""

import enum
import json

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum

from scriptgov.db.base import Base


class ApprovalStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    withdrawn = "withdrawn"


class ScriptType(str, enum.Enum):
    read_only = "read_only"
    data_modification = "data_modification"
    structure_change = "structure_change"
    system_admin = "system_admin"


class Priority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class ApprovalAction(str, enum.Enum):
    submit = "submit"
    approve = "approve"
    reject = "reject"
    withdraw = "withdraw"


ALLOWED_TRANSITIONS = {
    ApprovalStatus.draft: frozenset({ApprovalStatus.pending}),
    ApprovalStatus.pending: frozenset({
        ApprovalStatus.approved,
        ApprovalStatus.rejected,
        ApprovalStatus.withdrawn,
    }),
    ApprovalStatus.approved: frozenset(),
    ApprovalStatus.rejected: frozenset(),
    ApprovalStatus.withdrawn: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return ApprovalStatus(target) in ALLOWED_TRANSITIONS[ApprovalStatus(current)]


class ApprovalRequest(Base):
    """Tracks one submission of a script from PENDING to a terminal decision."""
    __tablename__ = "approval_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(64), unique=True, nullable=False, index=True)
    script_id = Column(String(128), nullable=False, index=True)
    # Equals script_id while PENDING, NULL otherwise; the unique index
    # allows at most one pending request per script.
    pending_script_id = Column(String(128), unique=True, nullable=True)
    # Version the reviewers decide on; set once that version is written
    script_version = Column(Integer, nullable=True)
    script_type = Column(Enum(ScriptType), nullable=False)
    status = Column(Enum(ApprovalStatus), default=ApprovalStatus.pending, nullable=False, index=True)
    priority = Column(Enum(Priority), default=Priority.medium, nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    requester_id = Column(String(255), nullable=False)
    requester_email = Column(String(255), nullable=False)
    required_approvers_json = Column(Text, nullable=False)  # JSON list of role names
    current_approvers_json = Column(Text, nullable=False, default="[]")  # JSON list of decisions
    reviewed_by = Column(String(255), nullable=True)
    reviewer_email = Column(String(255), nullable=True)
    review_comment = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    requested_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False, index=True)

    @property
    def required_approvers(self) -> list:
        return json.loads(self.required_approvers_json or "[]")

    @property
    def current_approvers(self) -> list:
        return json.loads(self.current_approvers_json or "[]")

    @property
    def is_complete(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ApprovalHistory(Base):
    """Append-only log of accepted approval decisions."""
    __tablename__ = "approval_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    history_id = Column(String(64), unique=True, nullable=False)
    request_id = Column(String(64), nullable=False, index=True)
    script_id = Column(String(128), nullable=False, index=True)
    action = Column(Enum(ApprovalAction), nullable=False)
    action_by = Column(String(255), nullable=False)
    action_by_email = Column(String(255), nullable=False)
    action_at = Column(DateTime, nullable=False, index=True)
    previous_status = Column(Enum(ApprovalStatus), nullable=False)
    new_status = Column(Enum(ApprovalStatus), nullable=False)
    comment = Column(Text, nullable=True)
