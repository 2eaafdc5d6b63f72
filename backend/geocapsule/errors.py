"""Error taxonomy raised by the capsule services.

Every service-level failure is a ``CapsuleError`` subclass so the HTTP layer
can translate it with a single exception handler. Each class carries the
HTTP status it maps to and a stable ``code`` string for clients.

    ValidationError        bad input shape or range            422
    NotFoundError          id has no backing record            404
    PermissionDeniedError  caller is not the owner             403
    CapsuleLockedError     unlock condition not yet satisfied  403
    ConflictError          capsule already opened              409
    TransientError         store unreachable or timed out      503 (retryable)
    StorageError           store failed or returned bad data   500
"""
from typing import Any, Optional


class CapsuleError(Exception):
    """Base class for all capsule service errors."""

    status_code: int = 500
    code: str = "capsule_error"
    retryable: bool = False

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe body for API responses."""
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        if self.context:
            body["context"] = self.context
        return body


class ValidationError(CapsuleError):
    status_code = 422
    code = "validation_error"


class NotFoundError(CapsuleError):
    status_code = 404
    code = "not_found"

    def __init__(self, capsule_id: str):
        super().__init__(f"Capsule {capsule_id} not found", {"capsule_id": capsule_id})
        self.capsule_id = capsule_id


class PermissionDeniedError(CapsuleError):
    status_code = 403
    code = "permission_denied"


class CapsuleLockedError(CapsuleError):
    """Open was requested while the unlock condition is still unmet."""

    status_code = 403
    code = "capsule_locked"


class ConflictError(CapsuleError):
    status_code = 409
    code = "already_opened"


class TransientError(CapsuleError):
    """The backing store could not be reached in time. Safe to retry."""

    status_code = 503
    code = "store_unavailable"
    retryable = True


class StorageError(CapsuleError):
    """The store failed in a way retrying will not fix, or returned a corrupt record."""

    status_code = 500
    code = "storage_error"
