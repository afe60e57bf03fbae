"""Custom exception classes and typed operation outcomes."""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import status


class FailureReason(str, enum.Enum):
    unauthorized = "unauthorized"
    not_found = "not_found"
    conflict = "conflict"
    invalid_state = "invalid_state"
    store_unavailable = "store_unavailable"


class ScriptGovernanceError(Exception):
    """Base exception for the script governance core."""

    reason: FailureReason = FailureReason.invalid_state
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthorizationError(ScriptGovernanceError):
    """Raised when the caller lacks permission."""
    reason = FailureReason.unauthorized
    status_code = status.HTTP_403_FORBIDDEN


class ResourceNotFoundError(ScriptGovernanceError):
    """Raised when a script, request or version does not exist."""
    reason = FailureReason.not_found
    status_code = status.HTTP_404_NOT_FOUND


class ResourceConflictError(ScriptGovernanceError):
    """Raised when a guarded write loses: the precondition no longer holds."""
    reason = FailureReason.conflict
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(ScriptGovernanceError):
    """Raised on caller errors such as a reject without a comment."""
    reason = FailureReason.invalid_state
    status_code = status.HTTP_400_BAD_REQUEST


class StoreUnavailableError(ScriptGovernanceError):
    """Raised when the backing store cannot be reached."""
    reason = FailureReason.store_unavailable
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass
class ActionResult:
    """Outcome of a mutating operation.

    Mutations never raise for authorization, missing records or lost races;
    they report those here so the route layer can pick a status code.
    """

    success: bool
    message: str
    reason: Optional[FailureReason] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, error: ScriptGovernanceError) -> "ActionResult":
        return cls(success=False, message=error.message, reason=error.reason)

    @property
    def status_code(self) -> int:
        if self.success:
            return status.HTTP_200_OK
        return _STATUS_BY_REASON.get(self.reason, status.HTTP_400_BAD_REQUEST)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.reason is not None:
            body["reason"] = self.reason.value
        if self.data:
            body["data"] = self.data
        return body


_STATUS_BY_REASON = {
    cls.reason: cls.status_code
    for cls in (
        AuthorizationError,
        ResourceNotFoundError,
        ResourceConflictError,
        InvalidStateError,
        StoreUnavailableError,
    )
}
