"""Bearer-token identity and permission-gating dependencies."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from scriptgov.core.config import settings
from scriptgov.core.permissions import Permission, UserRole
from scriptgov.db.session import get_db

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Identity supplied by the external identity provider."""
    user_id: str
    email: str


@dataclass(frozen=True)
class Caller:
    """An authenticated user whose permission check has passed."""
    user_id: str
    email: str
    role: UserRole


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token (development and tests)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> CurrentUser:
    """Extract (user id, email) from the JWT Bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return CurrentUser(user_id=str(user_id), email=email)


class RequirePermission:
    """Dependency that checks the caller holds at least one of the permissions."""

    def __init__(self, *permissions: Permission):
        self.permissions = permissions

    async def __call__(
        self,
        user: CurrentUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> Caller:
        from scriptgov.services.authorization_service import authorization_service

        check = None
        for permission in self.permissions:
            check = authorization_service.require_permission(
                db, user.user_id, permission, email=user.email,
            )
            if check.authorized:
                return Caller(user_id=user.user_id, email=user.email, role=check.user_role)

        role = check.user_role.value if check and check.user_role else "none"
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permission for role '{role}'",
        )


# Convenience dependency factories
require_script_read = RequirePermission(Permission.script_read)
require_script_create = RequirePermission(Permission.script_create)
require_script_update = RequirePermission(Permission.script_update)
require_reviewer = RequirePermission(Permission.script_approve, Permission.script_reject)
require_approver = RequirePermission(Permission.script_approve)
require_rejecter = RequirePermission(Permission.script_reject)
require_history_read = RequirePermission(Permission.history_read)
require_role_assign = RequirePermission(Permission.user_role_assign)
require_role_viewer = RequirePermission(Permission.user_manage, Permission.user_role_assign)
require_user_manage = RequirePermission(Permission.user_manage)
require_system_manage = RequirePermission(Permission.system_manage)
require_cache_manage = RequirePermission(Permission.cache_manage)
