"""request_tracker_shared.models — Request record, status enum and the status-changed event.

``RequestRecord.to_item`` / ``from_item`` map to the persisted record shape:

    PK              "REQ#<requestId>"
    title, status, createdAt, requesterToken
    statusUpdatedAt set by the admin transition
    notifiedAt      set by the worker
    lastEventId     set by the worker, used for dedup
    statusHistory   [{eventId, newStatus, changedAt, handledAt}, ...]

``StatusChangedEvent.to_json`` / ``from_json`` are the queue wire format.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from request_tracker_shared.errors import MessageFormatError, ValidationError

__all__ = [
    "KEY_PREFIX",
    "RequestRecord",
    "RequestStatus",
    "StatusChangedEvent",
    "StatusHistoryEntry",
    "new_identifier",
    "partition_key",
]

KEY_PREFIX = "REQ#"


def new_identifier() -> str:
    return str(uuid.uuid4())


def partition_key(request_id: str) -> str:
    return f"{KEY_PREFIX}{request_id}"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    REJECTED = "REJECTED"

    @classmethod
    def parse(cls, value: Any) -> "RequestStatus":
        """Return the member named by ``value`` or raise ``ValidationError``.

        Matching is exact: ``"done"`` and ``" DONE"`` are rejected.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(f"invalid status: {value!r} (expected one of {allowed})")


@dataclass(frozen=True)
class StatusHistoryEntry:
    event_id: str
    new_status: str
    changed_at: str
    handled_at: str

    def to_item(self) -> Dict[str, str]:
        return {
            "eventId": self.event_id,
            "newStatus": self.new_status,
            "changedAt": self.changed_at,
            "handledAt": self.handled_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "StatusHistoryEntry":
        return cls(
            event_id=str(item.get("eventId") or ""),
            new_status=str(item.get("newStatus") or ""),
            changed_at=str(item.get("changedAt") or ""),
            handled_at=str(item.get("handledAt") or ""),
        )


@dataclass
class RequestRecord:
    request_id: str
    title: str
    status: str
    created_at: str
    requester_token: str
    status_updated_at: Optional[str] = None
    notified_at: Optional[str] = None
    last_event_id: Optional[str] = None
    status_history: List[StatusHistoryEntry] = field(default_factory=list)

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "PK": partition_key(self.request_id),
            "title": self.title,
            "status": self.status,
            "createdAt": self.created_at,
            "requesterToken": self.requester_token,
        }
        if self.status_updated_at:
            item["statusUpdatedAt"] = self.status_updated_at
        if self.notified_at:
            item["notifiedAt"] = self.notified_at
        if self.last_event_id:
            item["lastEventId"] = self.last_event_id
        if self.status_history:
            item["statusHistory"] = [entry.to_item() for entry in self.status_history]
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "RequestRecord":
        pk = str(item.get("PK") or "")
        request_id = pk[len(KEY_PREFIX):] if pk.startswith(KEY_PREFIX) else pk
        history = item.get("statusHistory") or []
        return cls(
            request_id=request_id,
            title=str(item.get("title") or ""),
            status=str(item.get("status") or ""),
            created_at=str(item.get("createdAt") or ""),
            requester_token=str(item.get("requesterToken") or ""),
            status_updated_at=item.get("statusUpdatedAt"),
            notified_at=item.get("notifiedAt"),
            last_event_id=item.get("lastEventId"),
            status_history=[StatusHistoryEntry.from_item(h) for h in history if isinstance(h, dict)],
        )


_EVENT_FIELDS = (
    ("eventId", "event_id"),
    ("requestId", "request_id"),
    ("newStatus", "new_status"),
    ("changedAt", "changed_at"),
)


@dataclass(frozen=True)
class StatusChangedEvent:
    """Immutable fact: request ``request_id`` moved to ``new_status`` at ``changed_at``.

    ``event_id`` is unique per emission, so two transitions to the same status
    still produce two distinct events.
    """

    event_id: str
    request_id: str
    new_status: str
    changed_at: str

    @classmethod
    def new(cls, request_id: str, new_status: RequestStatus, changed_at: str) -> "StatusChangedEvent":
        return cls(
            event_id=new_identifier(),
            request_id=request_id,
            new_status=new_status.value,
            changed_at=changed_at,
        )

    def to_payload(self) -> Dict[str, str]:
        return {wire: getattr(self, attr) for wire, attr in _EVENT_FIELDS}

    def to_json(self) -> str:
        return json.dumps(self.to_payload())

    def history_entry(self, handled_at: str) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            event_id=self.event_id,
            new_status=self.new_status,
            changed_at=self.changed_at,
            handled_at=handled_at,
        )

    @classmethod
    def from_json(cls, body: Any) -> "StatusChangedEvent":
        """Parse a queue message body; unknown extra fields are ignored."""
        if not isinstance(body, (str, bytes, bytearray)):
            raise MessageFormatError("message body must be a JSON string")
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MessageFormatError(f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MessageFormatError("message body must be a JSON object")

        values: Dict[str, str] = {}
        for wire, attr in _EVENT_FIELDS:
            value = payload.get(wire)
            if not isinstance(value, str) or not value:
                raise MessageFormatError(f"field '{wire}' must be a non-empty string")
            values[attr] = value
        try:
            RequestStatus.parse(values["new_status"])
        except ValidationError as exc:
            raise MessageFormatError(f"field 'newStatus': {exc}") from exc
        return cls(**values)
