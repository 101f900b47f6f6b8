"""request_tracker_shared.errors — Error taxonomy for the request pipeline.

Every error carries the HTTP status and envelope code the API layer answers
with. ``MessageFormatError`` never reaches HTTP; the worker discards the
offending message instead.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "AuthError",
    "EventPublishError",
    "ForbiddenError",
    "MessageFormatError",
    "NotFoundError",
    "PersistenceError",
    "QueueError",
    "RequestTrackerError",
    "UnauthorizedError",
    "ValidationError",
]


class RequestTrackerError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class ValidationError(RequestTrackerError):
    """Malformed or missing input; never reaches the store or the queue."""

    status_code = 400
    code = "INVALID_INPUT"


class AuthError(RequestTrackerError):
    status_code = 401
    code = "PERMISSION_DENIED"


class UnauthorizedError(AuthError):
    """Admin credential missing or wrong."""


class ForbiddenError(AuthError):
    """Requester token does not match the stored token."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(RequestTrackerError):
    status_code = 404
    code = "NOT_FOUND"


class PersistenceError(RequestTrackerError):
    """Store unreachable or failed unexpectedly."""


class QueueError(PersistenceError):
    code = "UPSTREAM_ERROR"


class EventPublishError(QueueError):
    """The status row was updated but the change event could not be enqueued."""


class MessageFormatError(RequestTrackerError):
    status_code = 400
    code = "MESSAGE_FORMAT"
