"""Script version model: append-only."""

import enum
import json

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Enum, UniqueConstraint
)

from scriptgov.db.base import Base
from scriptgov.models.approval import ApprovalStatus


class ChangeType(str, enum.Enum):
    create = "create"
    update = "update"
    approve = "approve"
    rollback = "rollback"


class ScriptVersion(Base):
    """Immutable, numbered snapshot of a script.

    Rows are only ever inserted. The (script_id, version) constraint is what
    rejects a second writer racing for the same version number.
    """
    __tablename__ = "script_versions"
    __table_args__ = (
        UniqueConstraint("script_id", "version", name="uq_script_versions_script_version"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_id = Column(String(64), unique=True, nullable=False)
    script_id = Column(String(128), nullable=False, index=True)
    version = Column(Integer, nullable=False)

    # Snapshot
    name = Column(String(255), nullable=False)
    cn_name = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    cn_description = Column(Text, nullable=False, default="")
    scope = Column(Text, nullable=False, default="")
    cn_scope = Column(Text, nullable=False, default="")
    author = Column(String(255), nullable=False, default="")
    hashtags_json = Column(Text, nullable=True)
    sql_content = Column(Text, nullable=False)
    is_scheduled = Column(Boolean, default=False, nullable=False)
    cron_schedule = Column(String(100), nullable=False, default="")
    approval_status = Column(Enum(ApprovalStatus), nullable=True)
    approval_request_id = Column(String(64), nullable=True)

    # Change metadata
    change_type = Column(Enum(ChangeType), nullable=False)
    change_description = Column(Text, nullable=True)
    rolled_back_from = Column(Integer, nullable=True)
    created_by = Column(String(255), nullable=False)
    created_by_email = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False)

    @property
    def hashtags(self) -> list:
        return json.loads(self.hashtags_json) if self.hashtags_json else []
