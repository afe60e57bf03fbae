"""Per-script write lock model."""

from sqlalchemy import Column, String, DateTime

from scriptgov.db.base import Base


class ScriptLock(Base):
    """Held by the one writer currently changing a script.

    The primary key admits a single row per script; a second writer's insert
    fails and is reported as a Conflict.
    """
    __tablename__ = "script_locks"

    script_id = Column(String(128), primary_key=True)
    token = Column(String(64), nullable=False)
    holder = Column(String(255), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
