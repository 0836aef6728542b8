# app/core/exceptions.py
"""
Service error taxonomy.

Every failure a caller can observe is one of these. The HTTP layer turns
them into ``{"error": ..., "message": ...}`` bodies with ``status_code``.
"""
from typing import Optional


class ServiceError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code: int = 500
    error: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, error: Optional[str] = None):
        if message is not None:
            self.message = message
        if error is not None:
            self.error = error
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class InputError(ServiceError):
    status_code = 400
    error = "INVALID_REQUEST"
    message = "Invalid request"


class AuthError(ServiceError):
    status_code = 401
    error = "UNAUTHORIZED"
    message = "Unauthorized"


class AccessError(ServiceError):
    status_code = 403
    error = "FORBIDDEN"
    message = "Access denied"


class NotFoundError(ServiceError):
    status_code = 404
    error = "NOT_FOUND"
    message = "Not found"


class QuotaExceededError(ServiceError):
    status_code = 429
    error = "QUOTA_EXCEEDED"
    message = "Quota exceeded"


class UpstreamError(ServiceError):
    """External identity provider failed; details stay in the logs."""

    status_code = 500
    error = "UPSTREAM_ERROR"
    message = "Authentication failed"
