"""Error taxonomy for the scheduling engine.

Validation and conflict errors are raised before anything is written and
reach the caller untouched. Dispatch errors are absorbed into schedule state
by the notification step. Store-level errors (duplicate key, stale write) are
handled inside the service and only escape when retries run out.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class SchedulingError(Exception):
    """Base class for errors surfaced to callers of the engine."""

    code = "SCHEDULING_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error envelope returned by the HTTP layer."""
        body: dict[str, Any] = {
            "success": False,
            "message": self.message,
            "code": self.code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(SchedulingError):
    """Invalid schedule type, unknown task or unknown staff id."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(SchedulingError):
    """Operation addressed a schedule (or staff member) that does not exist."""

    code = "RESOURCE_NOT_FOUND"
    status_code = 404


class ConflictError(SchedulingError):
    """Weekly exclusivity or consecutive-week rule rejected an assignment."""

    code = "SCHEDULE_CONFLICT"
    status_code = 409


class DispatchError(SchedulingError):
    """Notification batch could not be handed to the mail transport."""

    code = "DISPATCH_FAILED"
    status_code = 502


class DuplicateKeyError(SchedulingError):
    """Store rejected an insert because an identity or unique field exists."""

    code = "DUPLICATE_KEY"
    status_code = 409


class ConcurrencyError(SchedulingError):
    """Store rejected a save because the document version moved on."""

    code = "STALE_WRITE"
    status_code = 409
