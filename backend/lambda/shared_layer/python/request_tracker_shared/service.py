"""request_tracker_shared.service — API-side request operations.

Collaborators are passed in explicitly. Nothing here retries; retry lives in
the worker through queue redelivery.

transition_status writes the store and then enqueues. The two steps are
independent: if the enqueue fails the caller gets an error although the
status has already changed, and that transition never reaches the
request's history. The store write is not rolled back.
"""

from __future__ import annotations

import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from request_tracker_shared.errors import (
    EventPublishError,
    ForbiddenError,
    NotFoundError,
    PersistenceError,
    QueueError,
    UnauthorizedError,
    ValidationError,
)
from request_tracker_shared.event_queue import EventQueue
from request_tracker_shared.models import (
    RequestRecord,
    RequestStatus,
    StatusChangedEvent,
    new_identifier,
)
from request_tracker_shared.serialization import emit_structured_observability, now_z
from request_tracker_shared.store import RequestStore

__all__ = [
    "CreatedRequest",
    "check_admin_credential",
    "create_request",
    "read_request",
    "tracking_url",
    "transition_status",
]

logger = logging.getLogger(__name__)

_COMPONENT = "request_api"


@dataclass(frozen=True)
class CreatedRequest:
    record: RequestRecord
    tracking_url: str


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def tracking_url(public_base_url: str, request_id: str, requester_token: str) -> str:
    """Capability URL for reading a request back; the token is its only credential."""
    base = (public_base_url or "").rstrip("/")
    return f"{base}/requests/{request_id}?t={requester_token}"


def create_request(store: RequestStore, title: Any, *, public_base_url: str) -> CreatedRequest:
    started = time.monotonic()
    if not isinstance(title, str) or not title:
        raise ValidationError("title required")

    record = RequestRecord(
        request_id=new_identifier(),
        title=title,
        status=RequestStatus.PENDING.value,
        created_at=now_z(),
        requester_token=new_identifier(),
    )
    store.create(record)

    emit_structured_observability(
        component=_COMPONENT,
        event="request_created",
        request_id=record.request_id,
        latency_ms=_elapsed_ms(started),
    )
    return CreatedRequest(
        record=record,
        tracking_url=tracking_url(public_base_url, record.request_id, record.requester_token),
    )


def read_request(store: RequestStore, request_id: str, token: Optional[str]) -> RequestRecord:
    """Return the request if ``token`` matches its requester token."""
    if not token:
        raise ValidationError("token required")

    record = store.read_consistent(request_id)
    if record is None:
        raise NotFoundError("not found")
    if not record.requester_token:
        logger.error("[ERROR] Request %s has no requester token", request_id)
        raise PersistenceError("corrupt item")
    if not hmac.compare_digest(record.requester_token.encode("utf-8"), str(token).encode("utf-8")):
        raise ForbiddenError("forbidden")
    return record


def check_admin_credential(admin_credential: Optional[str], admin_token: str) -> None:
    """Raise ``UnauthorizedError`` unless the credential equals the admin secret."""
    if not admin_credential or not admin_token or not hmac.compare_digest(
        str(admin_credential).encode("utf-8"), admin_token.encode("utf-8")
    ):
        raise UnauthorizedError("unauthorized")


def transition_status(
    store: RequestStore,
    queue: EventQueue,
    request_id: str,
    new_status: Any,
    admin_credential: Optional[str],
    *,
    admin_token: str,
) -> StatusChangedEvent:
    """Set a request's status and publish the matching StatusChangedEvent.

    Any status may follow any other (``DONE -> PENDING`` included); only
    membership in ``RequestStatus`` is checked.
    """
    started = time.monotonic()
    check_admin_credential(admin_credential, admin_token)

    status = RequestStatus.parse(new_status)
    changed_at = now_z()

    store.update_status(request_id, status, changed_at)

    event = StatusChangedEvent.new(request_id, status, changed_at)
    try:
        queue.send(event.to_json())
    except QueueError as exc:
        logger.error(
            "[ERROR] Status of %s set to %s but event %s was not enqueued: %s",
            request_id,
            status.value,
            event.event_id,
            exc,
        )
        emit_structured_observability(
            component=_COMPONENT,
            event="event_publish_failed",
            request_id=request_id,
            event_id=event.event_id,
            latency_ms=_elapsed_ms(started),
            error_code="enqueue_failed",
            extra={"new_status": status.value, "status_updated": True},
        )
        raise EventPublishError(
            "failed to enqueue",
            details={"requestId": request_id, "newStatus": status.value, "statusUpdated": True},
        ) from exc

    emit_structured_observability(
        component=_COMPONENT,
        event="status_transitioned",
        request_id=request_id,
        event_id=event.event_id,
        latency_ms=_elapsed_ms(started),
        extra={"new_status": status.value},
    )
    return event
