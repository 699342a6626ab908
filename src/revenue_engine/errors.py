"""Exception types raised by the revenue engine."""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for revenue engine errors."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SplitValidationError(EngineError):
    """Malformed input, rejected before any side effect."""

    code = "VALIDATION_ERROR"


class ConfigurationError(EngineError):
    """Required configuration or payee profile data is missing."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(EngineError):
    """A referenced record does not exist."""

    code = "NOT_FOUND"


class DuplicateSplitError(EngineError):
    """Revenue has already been split for this enrollment."""

    code = "DUPLICATE_SPLIT"

    def __init__(self, enrollment_id: Any, split_id: Any):
        self.enrollment_id = enrollment_id
        self.split_id = split_id
        super().__init__(
            f"Revenue already calculated for enrollment {enrollment_id}",
            {"enrollment_id": str(enrollment_id), "revenue_split_id": str(split_id)},
        )


class DuplicateScheduleError(EngineError):
    """Installments already exist for this revenue split."""

    code = "DUPLICATE_SCHEDULE"


class DuplicateEarningsUpdateError(EngineError):
    """The earnings counter was already advanced for this enrollment."""

    code = "DUPLICATE_EARNINGS_UPDATE"


class ConcurrentUpdateError(EngineError):
    """A versioned row changed between read and guarded update."""

    code = "CONCURRENT_UPDATE"


class InvalidTransitionError(EngineError):
    """Raised when an invalid installment state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RailError(EngineError):
    """The payment rail rejected a request or returned an unusable response."""

    code = "RAIL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message, details)


class CaptureFeedError(EngineError):
    """The gateway capture feed could not be read."""

    code = "CAPTURE_FEED_ERROR"
