"""
Shared error handling for the Museum Access Layer.

Every failure that leaves the mediation layer is a ``MediationError``. Each
subclass carries the HTTP status code the route layer should answer with.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class MediationError(Exception):
    """Base exception for the mediation layer."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(MediationError):
    """Invalid caller input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UpstreamHttpError(MediationError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, status: int, path: str, body: Optional[str] = None):
        self.status = status
        self.path = path
        details: Dict[str, Any] = {"status": status, "path": path}
        if body:
            details["body"] = body[:500]
        super().__init__(
            "UPSTREAM_HTTP_ERROR",
            f"Upstream returned HTTP {status} for {path}",
            details,
            status_code=status if status >= 400 else 502,
        )


class AccessForbiddenError(MediationError):
    """Upstream kept answering 403 after the retry budget was spent."""

    status_code = 403

    def __init__(self, path: str, attempts: int):
        self.path = path
        self.attempts = attempts
        super().__init__(
            "ACCESS_FORBIDDEN",
            f"Upstream denied access to {path} after {attempts} attempts",
            {"path": path, "attempts": attempts},
        )


class NetworkErrorKind(str, Enum):
    """Classes of transport failure."""

    DNS = "dns"
    CONNECTION_RESET = "connection_reset"
    TIMEOUT = "timeout"


class NetworkError(MediationError):
    """Transport-level failure talking to the upstream."""

    def __init__(self, kind: NetworkErrorKind, path: str, message: str = ""):
        self.kind = kind
        self.path = path
        super().__init__(
            "NETWORK_ERROR",
            f"Network error ({kind.value}) for {path}" + (f": {message}" if message else ""),
            {"kind": kind.value, "path": path},
            status_code=504 if kind is NetworkErrorKind.TIMEOUT else 502,
        )


class UpstreamError(MediationError):
    """Any other upstream failure, e.g. an undecodable body."""

    status_code = 502

    def __init__(self, message: str = "Upstream error", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_ERROR", message, details)


class SchedulerTimeoutError(MediationError):
    """A dispatched task did not finish within the scheduler timeout."""

    status_code = 504

    def __init__(self, timeout: float, task_id: Optional[int] = None):
        self.timeout = timeout
        super().__init__(
            "SCHEDULER_TIMEOUT",
            f"Task exceeded scheduler timeout of {timeout}s",
            {"timeout_seconds": timeout, "task_id": task_id},
        )


class SchedulerClosedError(MediationError):
    """The scheduler was shut down before the task could run."""

    status_code = 503

    def __init__(self, message: str = "Scheduler is closed"):
        super().__init__("SCHEDULER_CLOSED", message)
