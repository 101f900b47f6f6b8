"""Route-level tests for request_api against emulated DynamoDB and SQS."""

from __future__ import annotations

import importlib.util
import json
import os
import sys
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

import boto3
import pytest
from moto import mock_aws

from request_tracker_shared.errors import QueueError
from request_tracker_shared.event_queue import EventQueue
from request_tracker_shared.store import RequestStore

_SPEC = importlib.util.spec_from_file_location(
    "request_api_lambda",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
request_api = importlib.util.module_from_spec(_SPEC)
assert _SPEC.loader is not None
sys.modules[_SPEC.name] = request_api
_SPEC.loader.exec_module(request_api)

ADMIN = "admin-secret"


def _event(method: str, path: str, *, body=None, headers=None, query=None) -> dict:
    event = {
        "requestContext": {"http": {"method": method}},
        "rawPath": path,
        "headers": headers or {},
        "queryStringParameters": query,
    }
    if body is not None:
        event["body"] = body if isinstance(body, str) else json.dumps(body)
    return event


def _admin(token: str = ADMIN) -> dict:
    return {"authorization": f"Bearer {token}"}


def _json(resp: dict) -> dict:
    return json.loads(resp["body"])


@pytest.fixture
def runtime():
    with mock_aws():
        ddb = boto3.client("dynamodb", region_name="us-east-1")
        ddb.create_table(
            TableName="Requests",
            KeySchema=[{"AttributeName": "PK", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "PK", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        sqs = boto3.client("sqs", region_name="us-east-1")
        queue_url = sqs.create_queue(QueueName="request-events")["QueueUrl"]
        yield request_api.ApiRuntime(
            store=RequestStore(ddb, "Requests"),
            queue=EventQueue(sqs, queue_url),
            admin_token=ADMIN,
            public_base_url="http://localhost:8080",
        )


def _create(runtime, title="t1") -> dict:
    resp = request_api.handle_event(_event("POST", "/requests", body={"title": title}), runtime)
    assert resp["statusCode"] == 200
    return _json(resp)


# ---------------------------------------------------------------------------
# health / routing
# ---------------------------------------------------------------------------


def test_health(runtime):
    resp = request_api.handle_event(_event("GET", "/health"), runtime)
    assert resp["statusCode"] == 200
    assert resp["body"] == "ok\n"


def test_health_wrong_method_is_405(runtime):
    assert request_api.handle_event(_event("POST", "/health"), runtime)["statusCode"] == 405


def test_requests_wrong_method_is_405(runtime):
    assert request_api.handle_event(_event("GET", "/requests"), runtime)["statusCode"] == 405


def test_options_preflight(runtime):
    resp = request_api.handle_event(_event("OPTIONS", "/requests/abc/status"), runtime)
    assert resp["statusCode"] == 204
    assert "Access-Control-Allow-Methods" in resp["headers"]


def test_unknown_route_is_404(runtime):
    resp = request_api.handle_event(_event("GET", "/nope"), runtime)
    assert resp["statusCode"] == 404
    assert "No route matched" in _json(resp)["error"]


# ---------------------------------------------------------------------------
# POST /requests
# ---------------------------------------------------------------------------


def test_create_returns_tracking_url(runtime):
    payload = _create(runtime)
    assert payload["title"] == "t1"
    assert payload["createdAt"].endswith("Z")
    assert payload["trackingUrl"].startswith(f"http://localhost:8080/requests/{payload['requestId']}?t=")


@pytest.mark.parametrize("body", ["{not json", "[1, 2]", ""])
def test_create_bad_json_is_400(runtime, body):
    resp = request_api.handle_event(_event("POST", "/requests", body=body), runtime)
    assert resp["statusCode"] == 400


@pytest.mark.parametrize("body", [{}, {"title": ""}, {"title": None}])
def test_create_missing_title_is_400(runtime, body):
    resp = request_api.handle_event(_event("POST", "/requests", body=body), runtime)
    assert resp["statusCode"] == 400
    assert _json(resp)["error_envelope"]["code"] == "INVALID_INPUT"


def test_create_long_title_is_accepted(runtime):
    payload = _create(runtime, title="x" * 501)
    assert len(payload["title"]) == 501


# ---------------------------------------------------------------------------
# GET /requests/{id}
# ---------------------------------------------------------------------------


def test_read_with_token(runtime):
    created = _create(runtime)
    token = created["trackingUrl"].split("?t=", 1)[1]
    resp = request_api.handle_event(
        _event("GET", f"/requests/{created['requestId']}", query={"t": token}),
        runtime,
    )
    assert resp["statusCode"] == 200
    assert _json(resp) == {
        "requestId": created["requestId"],
        "title": "t1",
        "status": "PENDING",
        "createdAt": created["createdAt"],
    }


def test_read_without_token_is_400(runtime):
    created = _create(runtime)
    resp = request_api.handle_event(_event("GET", f"/requests/{created['requestId']}"), runtime)
    assert resp["statusCode"] == 400


def test_read_wrong_token_is_403(runtime):
    created = _create(runtime)
    resp = request_api.handle_event(
        _event("GET", f"/requests/{created['requestId']}", query={"t": "wrong"}),
        runtime,
    )
    assert resp["statusCode"] == 403


def test_read_unknown_is_404(runtime):
    resp = request_api.handle_event(_event("GET", "/requests/missing", query={"t": "x"}), runtime)
    assert resp["statusCode"] == 404


# ---------------------------------------------------------------------------
# PATCH /requests/{id}/status
# ---------------------------------------------------------------------------


def test_transition_success(runtime):
    created = _create(runtime)
    resp = request_api.handle_event(
        _event("PATCH", f"/requests/{created['requestId']}/status", body={"status": "DONE"}, headers=_admin()),
        runtime,
    )
    assert resp["statusCode"] == 200
    payload = _json(resp)
    assert payload["requestId"] == created["requestId"]
    assert payload["newStatus"] == "DONE"
    assert payload["eventId"]

    messages = runtime.queue.receive_batch(10, 0, 30)
    assert [json.loads(m.body)["eventId"] for m in messages] == [payload["eventId"]]


@pytest.mark.parametrize("headers", [{}, _admin("wrong"), {"authorization": ADMIN}])
def test_transition_bad_credential_is_401(runtime, headers):
    created = _create(runtime)
    resp = request_api.handle_event(
        _event("PATCH", f"/requests/{created['requestId']}/status", body={"status": "DONE"}, headers=headers),
        runtime,
    )
    assert resp["statusCode"] == 401


def test_transition_bad_credential_with_bad_body_is_401(runtime):
    resp = request_api.handle_event(
        _event("PATCH", "/requests/abc/status", body="{oops", headers=_admin("wrong")),
        runtime,
    )
    assert resp["statusCode"] == 401


def test_transition_bad_json_is_400(runtime):
    resp = request_api.handle_event(
        _event("PATCH", "/requests/abc/status", body="{oops", headers=_admin()),
        runtime,
    )
    assert resp["statusCode"] == 400


def test_transition_invalid_status_is_400(runtime):
    created = _create(runtime)
    resp = request_api.handle_event(
        _event("PATCH", f"/requests/{created['requestId']}/status", body={"status": "ARCHIVED"}, headers=_admin()),
        runtime,
    )
    assert resp["statusCode"] == 400


def test_transition_unknown_request_is_404(runtime):
    resp = request_api.handle_event(
        _event("PATCH", "/requests/missing/status", body={"status": "DONE"}, headers=_admin()),
        runtime,
    )
    assert resp["statusCode"] == 404
    assert runtime.queue.receive_batch(10, 0, 30) == []


def test_transition_enqueue_failure_is_500_with_status_updated(runtime):
    created = _create(runtime)
    broken = MagicMock()
    broken.send.side_effect = QueueError("send_message failed")
    runtime.queue = broken

    resp = request_api.handle_event(
        _event("PATCH", f"/requests/{created['requestId']}/status", body={"status": "DONE"}, headers=_admin()),
        runtime,
    )

    assert resp["statusCode"] == 500
    envelope = _json(resp)["error_envelope"]
    assert envelope["code"] == "UPSTREAM_ERROR"
    assert envelope["details"]["statusUpdated"] is True
    assert runtime.store.read_consistent(created["requestId"]).status == "DONE"


# ---------------------------------------------------------------------------
# lambda_handler wiring
# ---------------------------------------------------------------------------


def test_lambda_handler_uses_cached_runtime(monkeypatch):
    runtime = MagicMock()
    built = []

    def _build():
        built.append(1)
        return runtime

    monkeypatch.setattr(request_api, "_runtime", None)
    monkeypatch.setattr(request_api, "build_runtime", _build)

    for _ in range(2):
        resp = request_api.lambda_handler(_event("GET", "/health"), None)
        assert resp["statusCode"] == 200
    assert built == [1]


def test_lambda_handler_reports_init_failure(monkeypatch):
    def _build():
        raise QueueError("queue not found")

    monkeypatch.setattr(request_api, "_runtime", None)
    monkeypatch.setattr(request_api, "build_runtime", _build)

    resp = request_api.lambda_handler(_event("GET", "/health"), None)
    assert resp["statusCode"] == 500
