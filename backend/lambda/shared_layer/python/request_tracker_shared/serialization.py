"""request_tracker_shared.serialization — DynamoDB (de)serialization, timestamps, observability.

Provides TypeSerializer/TypeDeserializer wrappers, the UTC timestamp format
stored on every record, and the structured ``[OBSERVABILITY]`` log line.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

__all__ = [
    "deserialize_item",
    "emit_structured_observability",
    "now_z",
    "serialize_item",
    "serialize_value",
]

logger = logging.getLogger(__name__)

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def serialize_value(value: Any) -> Dict[str, Any]:
    """Serialize a Python value for DynamoDB."""
    if isinstance(value, float):
        value = Decimal(str(value))
    return _SER.serialize(value)


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a plain dict, dropping ``None`` attributes."""
    return {k: serialize_value(v) for k, v in item.items() if v is not None}


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def deserialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict."""
    return {k: _plain(_DESER.deserialize(v)) for k, v in item.items()}


def now_z() -> str:
    """Current UTC timestamp in ISO 8601 format with Z suffix."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def emit_structured_observability(
    *,
    component: str,
    event: str,
    request_id: Optional[str] = None,
    event_id: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": now_z(),
        "component": component,
        "event": event,
        "request_id": str(request_id or ""),
        "event_id": str(event_id or ""),
        "latency_ms": int(max(0, latency_ms or 0)),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
