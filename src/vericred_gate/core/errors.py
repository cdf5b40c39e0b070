"""Error taxonomy shared by the services and the API layer.

Services raise these exceptions; endpoints translate them into HTTP responses
with :func:`to_http_exception`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import HTTPException, status


class GateError(Exception):
    """Base exception for authorization and issuance failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, Any]:
        """Return the JSON-serializable error body."""
        return {"code": self.code, "message": self.message}


class Unauthenticated(GateError):
    """Bad, missing or stale request signature."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class RateLimited(GateError):
    """Request volume exceeded for the caller's key."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, reset_at: datetime) -> None:
        super().__init__(message)
        self.reset_at = reset_at

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["resetAt"] = self.reset_at.isoformat()
        return detail


class NotFound(GateError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Forbidden(GateError):
    """Ownership mismatch, revoked, expired, exhausted or high fraud risk."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"

    def __init__(self, message: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.extra = extra or {}

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail.update(self.extra)
        return detail


class ValidationFailed(GateError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class UpstreamFailure(GateError):
    """A collaborator (metadata store, chain) failed after admission."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "UPSTREAM_FAILURE"

    def __init__(self, stage: str, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.stage = stage
        self.retryable = retryable

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["stage"] = self.stage
        detail["retryable"] = self.retryable
        return detail


def to_http_exception(err: GateError) -> HTTPException:
    """Map a service-level error onto an HTTPException."""
    headers: dict[str, str] | None = None
    if isinstance(err, RateLimited):
        headers = {"X-RateLimit-Reset": err.reset_at.isoformat()}
    return HTTPException(status_code=err.status_code, detail=err.to_detail(), headers=headers)
