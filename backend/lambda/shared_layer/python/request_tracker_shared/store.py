"""request_tracker_shared.store — DynamoDB persistence for requests.

All coordination between concurrent API handlers and workers happens through
the conditional expressions in this module; there are no client-side locks.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from request_tracker_shared.errors import NotFoundError, PersistenceError
from request_tracker_shared.models import RequestRecord, RequestStatus, StatusChangedEvent, partition_key
from request_tracker_shared.serialization import deserialize_item, serialize_item, serialize_value

__all__ = [
    "ApplyResult",
    "RequestStore",
    "SkipCause",
    "is_conditional_check_failed",
]

logger = logging.getLogger(__name__)

_APPLY_EVENT_UPDATE = (
    "SET notifiedAt = :n, lastEventId = :eid, "
    "statusHistory = list_append(if_not_exists(statusHistory, :empty), :h)"
)
_APPLY_EVENT_CONDITION = (
    "attribute_exists(PK) AND (attribute_not_exists(lastEventId) OR lastEventId <> :eid)"
)


class ApplyResult(str, Enum):
    APPLIED = "applied"
    # The conditional update failed: either the request does not exist or
    # this event is already its lastEventId. The two are not told apart here.
    ALREADY_APPLIED_OR_MISSING = "already_applied_or_missing"


class SkipCause(str, Enum):
    MISSING = "missing"
    DUPLICATE = "duplicate"
    SUPERSEDED = "superseded"


def is_conditional_check_failed(exc: Exception) -> bool:
    if not isinstance(exc, ClientError):
        return False
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class RequestStore:
    """Request table adapter over an injected DynamoDB client."""

    def __init__(self, ddb_client, table_name: str) -> None:
        self._ddb = ddb_client
        self.table_name = table_name

    def _key(self, request_id: str) -> Dict[str, Any]:
        return {"PK": serialize_value(partition_key(request_id))}

    def create(self, record: RequestRecord) -> None:
        """Unconditional insert. The caller guarantees a fresh identifier."""
        try:
            self._ddb.put_item(TableName=self.table_name, Item=serialize_item(record.to_item()))
        except (BotoCoreError, ClientError) as exc:
            logger.error("[ERROR] put_item failed for %s: %s", record.request_id, exc)
            raise PersistenceError("failed to persist request") from exc

    def read_consistent(self, request_id: str) -> Optional[RequestRecord]:
        try:
            resp = self._ddb.get_item(
                TableName=self.table_name,
                Key=self._key(request_id),
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("[ERROR] get_item failed for %s: %s", request_id, exc)
            raise PersistenceError("failed to read request") from exc
        raw = resp.get("Item")
        if not raw:
            return None
        return RequestRecord.from_item(deserialize_item(raw))

    def update_status(self, request_id: str, new_status: RequestStatus, timestamp: str) -> None:
        """Overwrite ``status`` and ``statusUpdatedAt`` on an existing record.

        Raises ``NotFoundError`` when the record does not exist. History is
        left untouched; the worker appends to it when the event arrives.
        """
        try:
            self._ddb.update_item(
                TableName=self.table_name,
                Key=self._key(request_id),
                UpdateExpression="SET #st = :s, statusUpdatedAt = :t",
                ExpressionAttributeNames={"#st": "status"},
                ExpressionAttributeValues={
                    ":s": serialize_value(new_status.value),
                    ":t": serialize_value(timestamp),
                },
                ConditionExpression="attribute_exists(PK)",
            )
        except ClientError as exc:
            if is_conditional_check_failed(exc):
                raise NotFoundError(f"request not found: {request_id}") from exc
            logger.error("[ERROR] update_item(status) failed for %s: %s", request_id, exc)
            raise PersistenceError("failed to update request status") from exc
        except BotoCoreError as exc:
            logger.error("[ERROR] update_item(status) failed for %s: %s", request_id, exc)
            raise PersistenceError("failed to update request status") from exc

    def apply_event_idempotent(
        self,
        request_id: str,
        event: StatusChangedEvent,
        applied_at: str,
    ) -> ApplyResult:
        """Record ``event`` on the request at most once in a row.

        Sets ``notifiedAt`` and ``lastEventId`` and appends one history entry,
        unless the request is missing or ``event`` is already its last applied
        event. Dedup only compares against the most recent event: an older
        event redelivered after a newer one was applied is appended again.
        """
        entry = event.history_entry(applied_at).to_item()
        try:
            self._ddb.update_item(
                TableName=self.table_name,
                Key=self._key(request_id),
                UpdateExpression=_APPLY_EVENT_UPDATE,
                ExpressionAttributeValues={
                    ":n": serialize_value(applied_at),
                    ":eid": serialize_value(event.event_id),
                    ":empty": {"L": []},
                    ":h": {"L": [serialize_value(entry)]},
                },
                ConditionExpression=_APPLY_EVENT_CONDITION,
            )
        except ClientError as exc:
            if is_conditional_check_failed(exc):
                return ApplyResult.ALREADY_APPLIED_OR_MISSING
            raise PersistenceError(f"failed to apply event {event.event_id}: {exc}") from exc
        except BotoCoreError as exc:
            raise PersistenceError(f"failed to apply event {event.event_id}: {exc}") from exc
        return ApplyResult.APPLIED

    def explain_skip(self, request_id: str, event_id: str) -> SkipCause:
        """Tell apart the causes folded into ``ALREADY_APPLIED_OR_MISSING``.

        Diagnostic only; the answer reflects the record at read time, which
        may already differ from the moment the conditional update failed.
        """
        record = self.read_consistent(request_id)
        if record is None:
            return SkipCause.MISSING
        if record.last_event_id == event_id:
            return SkipCause.DUPLICATE
        return SkipCause.SUPERSEDED
