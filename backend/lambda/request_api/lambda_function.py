"""request_api/lambda_function.py — Request tracker HTTP API.

Routes (via API Gateway proxy):
  GET    /health                     — liveness, plain-text "ok"
  POST   /requests                   — create request, returns tracking URL
  GET    /requests/{id}?t=TOKEN      — token-gated read
  PATCH  /requests/{id}/status       — admin status transition (Bearer token)
  OPTIONS *                          — CORS preflight

A successful PATCH publishes a StatusChangedEvent to SQS; the status_worker
turns it into a history entry on the request.

Environment variables:
  REQUESTS_TABLE        default: Requests
  DYNAMODB_ENDPOINT     optional endpoint override
  SQS_QUEUE_URL         optional; resolved from SQS_QUEUE_NAME when unset
  SQS_QUEUE_NAME        default: request-events
  SQS_ENDPOINT          optional endpoint override
  ADMIN_TOKEN           default: dev-admin-token
  APP_PUBLIC_BASE_URL   default: http://localhost:8080
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from request_tracker_shared import config
from request_tracker_shared.aws_clients import build_ddb_client, build_sqs_client, resolve_queue_url
from request_tracker_shared.errors import RequestTrackerError
from request_tracker_shared.event_queue import EventQueue
from request_tracker_shared.http_utils import (
    bearer_token,
    cors_headers,
    error,
    error_from_exception,
    json_body,
    path_method,
    query_param,
    response,
    text_response,
)
from request_tracker_shared.service import (
    check_admin_credential,
    create_request,
    read_request,
    transition_status,
)
from request_tracker_shared.store import RequestStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------------
# Runtime wiring
# ---------------------------------------------------------------------------


@dataclass
class ApiRuntime:
    store: RequestStore
    queue: EventQueue
    admin_token: str
    public_base_url: str


_runtime: Optional[ApiRuntime] = None


def build_runtime() -> ApiRuntime:
    """Build clients once per container from environment configuration."""
    ddb = build_ddb_client(config.AWS_REGION, config.DYNAMODB_ENDPOINT)
    sqs = build_sqs_client(config.AWS_REGION, config.SQS_ENDPOINT)
    queue_url = resolve_queue_url(sqs, config.SQS_QUEUE_NAME, config.SQS_QUEUE_URL)
    return ApiRuntime(
        store=RequestStore(ddb, config.REQUESTS_TABLE),
        queue=EventQueue(sqs, queue_url),
        admin_token=config.ADMIN_TOKEN,
        public_base_url=config.APP_PUBLIC_BASE_URL,
    )


def _get_runtime() -> ApiRuntime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

_RE_REQUEST = re.compile(r"^/requests/(?P<id>[^/]+)/?$")
_RE_REQUEST_STATUS = re.compile(r"^/requests/(?P<id>[^/]+)/status/?$")


def _handle_create(event: Dict[str, Any], runtime: ApiRuntime) -> Dict[str, Any]:
    try:
        body = json_body(event)
    except ValueError:
        return error(400, "bad json")
    if not isinstance(body, dict):
        return error(400, "bad json")

    created = create_request(runtime.store, body.get("title"), public_base_url=runtime.public_base_url)
    record = created.record
    return response(200, {
        "requestId": record.request_id,
        "title": record.title,
        "createdAt": record.created_at,
        "trackingUrl": created.tracking_url,
    })


def _handle_read(event: Dict[str, Any], runtime: ApiRuntime, request_id: str) -> Dict[str, Any]:
    record = read_request(runtime.store, request_id, query_param(event, "t"))
    return response(200, {
        "requestId": record.request_id,
        "title": record.title,
        "status": record.status,
        "createdAt": record.created_at,
    })


def _handle_transition(event: Dict[str, Any], runtime: ApiRuntime, request_id: str) -> Dict[str, Any]:
    credential = bearer_token(event)
    # Bearer check precedes body parsing: a bad token with a bad body is 401.
    check_admin_credential(credential, runtime.admin_token)

    try:
        body = json_body(event)
    except ValueError:
        return error(400, "bad json")
    if not isinstance(body, dict):
        return error(400, "bad json")

    status_event = transition_status(
        runtime.store,
        runtime.queue,
        request_id,
        body.get("status"),
        credential,
        admin_token=runtime.admin_token,
    )
    return response(200, {
        "requestId": request_id,
        "newStatus": status_event.new_status,
        "changedAt": status_event.changed_at,
        "eventId": status_event.event_id,
    })


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def handle_event(event: Dict[str, Any], runtime: ApiRuntime) -> Dict[str, Any]:
    method, path = path_method(event)

    if method == "OPTIONS":
        return {"statusCode": 204, "headers": cors_headers(), "body": ""}

    try:
        if path == "/health":
            if method != "GET":
                return error(405, "method not allowed")
            return text_response(200, "ok\n")

        if path.rstrip("/") == "/requests":
            if method != "POST":
                return error(405, "method not allowed")
            return _handle_create(event, runtime)

        m_status = _RE_REQUEST_STATUS.match(path)
        if m_status and method == "PATCH":
            return _handle_transition(event, runtime, m_status.group("id"))

        m_request = _RE_REQUEST.match(path)
        if m_request and method == "GET":
            return _handle_read(event, runtime, m_request.group("id"))
    except RequestTrackerError as exc:
        if exc.status_code >= 500:
            logger.error("[ERROR] %s %s failed: %s", method, path, exc)
        return error_from_exception(exc)

    return error(404, f"No route matched: {method} {path}")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        runtime = _get_runtime()
    except RequestTrackerError as exc:
        logger.error("[ERROR] Runtime initialisation failed: %s", exc)
        return error_from_exception(exc)
    return handle_event(event, runtime)
