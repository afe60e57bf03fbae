"""User -> role assignment model for RBAC."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum

from scriptgov.core.permissions import UserRole
from scriptgov.db.base import Base


class RoleAssignment(Base):
    """One authorization role per external user identity."""
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.viewer, nullable=False)
    assigned_by = Column(String(255), nullable=False)
    assigned_at = Column(DateTime, nullable=False)  # first grant, preserved on re-grant
    updated_at = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
