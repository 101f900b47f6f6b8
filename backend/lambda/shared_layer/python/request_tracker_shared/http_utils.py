"""request_tracker_shared.http_utils — API Gateway response building and request parsing.

Handles both HTTP API (payload v2) and REST API (v1 proxy) event shapes.
"""

from __future__ import annotations

import base64
import json
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from request_tracker_shared.config import CORS_ORIGIN
from request_tracker_shared.errors import RequestTrackerError

__all__ = [
    "bearer_token",
    "cors_headers",
    "error",
    "error_from_exception",
    "header",
    "json_body",
    "path_method",
    "query_param",
    "response",
    "text_response",
]


def cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "GET, POST, PATCH, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def response(status_code: int, payload: Any) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {**cors_headers(), "Content-Type": "application/json; charset=utf-8"},
        "body": json.dumps(payload, default=_json_default),
    }


def text_response(status_code: int, text: str) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {**cors_headers(), "Content-Type": "text/plain; charset=utf-8"},
        "body": text,
    }


def error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    code = str(extra.pop("code", "") or "").strip().upper()
    if not code:
        if status_code == 400:
            code = "INVALID_INPUT"
        elif status_code == 401:
            code = "PERMISSION_DENIED"
        elif status_code == 403:
            code = "FORBIDDEN"
        elif status_code == 404:
            code = "NOT_FOUND"
        elif status_code == 405:
            code = "METHOD_NOT_ALLOWED"
        else:
            code = "INTERNAL_ERROR"
    retryable = bool(extra.pop("retryable", status_code >= 500))
    details = dict(extra)
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "error_envelope": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "details": details,
        },
    }
    return response(status_code, body)


def error_from_exception(exc: RequestTrackerError) -> Dict[str, Any]:
    return error(exc.status_code, exc.message, code=exc.code, **exc.details)


def json_body(event: Dict[str, Any]) -> Any:
    """Decode the JSON body; raises ValueError on malformed input."""
    raw = event.get("body")
    if raw in (None, ""):
        raise ValueError("empty body")
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc


def path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = event.get("rawPath") or http.get("path") or event.get("path") or "/"
    return method, path


def header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value
    return None


def bearer_token(event: Dict[str, Any]) -> Optional[str]:
    value = header(event, "Authorization") or ""
    scheme, _, token = value.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def query_param(event: Dict[str, Any], name: str) -> Optional[str]:
    params = event.get("queryStringParameters") or {}
    value = params.get(name)
    return value if isinstance(value, str) else None
