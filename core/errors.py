"""
Error taxonomy for the account lifecycle operations.

Every error carries the HTTP status the API renders it with, a short
machine-readable kind, and whether the caller may retry the request.
Only TransientBackendError is retryable; the rest are terminal for the
request that raised them.
"""

from __future__ import annotations


class LifecycleError(Exception):
    status_code = 500
    kind = "internal_error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class Unauthorized(LifecycleError):
    """Missing, malformed, revoked or unknown bearer token."""

    status_code = 401
    kind = "unauthorized"


class Forbidden(LifecycleError):
    """Valid identity without the role or ownership the operation needs."""

    status_code = 403
    kind = "forbidden"


class ValidationError(LifecycleError):
    status_code = 400
    kind = "validation_error"


class NotFoundOrExpired(LifecycleError):
    """Nothing to restore, or the restoration window has closed."""

    status_code = 404
    kind = "not_found_or_expired"


class TransientBackendError(LifecycleError):
    status_code = 503
    kind = "backend_unavailable"
    retryable = True
