"""SQL script model."""

import json

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Enum

from scriptgov.db.base import Base
from scriptgov.models.approval import ApprovalStatus

# Fields copied into every ScriptVersion snapshot and restored by rollback.
SNAPSHOT_FIELDS = (
    "name",
    "cn_name",
    "description",
    "cn_description",
    "scope",
    "cn_scope",
    "author",
    "hashtags_json",
    "sql_content",
    "is_scheduled",
    "cron_schedule",
)


class Script(Base):
    """A governed SQL script, keyed by its human-chosen slug."""
    __tablename__ = "scripts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    script_id = Column(String(128), unique=True, nullable=False, index=True)
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

    # Mirrors of the approval request and version log
    approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.draft, nullable=False)
    approval_request_id = Column(String(64), nullable=True)
    current_version = Column(Integer, default=0, nullable=False)

    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, index=True)

    @property
    def hashtags(self) -> list:
        return json.loads(self.hashtags_json) if self.hashtags_json else []

    def snapshot(self) -> dict:
        """Return the tracked fields as a plain dict."""
        return {name: getattr(self, name) for name in SNAPSHOT_FIELDS}
