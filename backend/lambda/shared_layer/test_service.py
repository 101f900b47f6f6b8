"""test_service.py — API operations against an emulated table and queue.

Run: python3 -m pytest backend/lambda/shared_layer/test_service.py -v
"""

from __future__ import annotations

import itertools
import json
import os
import sys
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

import boto3
import pytest
from moto import mock_aws

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
from request_tracker_shared.models import RequestRecord, RequestStatus
from request_tracker_shared.service import (
    check_admin_credential,
    create_request,
    read_request,
    tracking_url,
    transition_status,
)
from request_tracker_shared.store import RequestStore
from request_tracker_shared.worker import MessageOutcome, StatusEventWorker

REGION = "us-east-1"
TABLE = "Requests"
ADMIN = "admin-secret"
BASE_URL = "http://localhost:8080"


@pytest.fixture
def aws():
    with mock_aws():
        ddb = boto3.client("dynamodb", region_name=REGION)
        ddb.create_table(
            TableName=TABLE,
            KeySchema=[{"AttributeName": "PK", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "PK", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        sqs = boto3.client("sqs", region_name=REGION)
        queue_url = sqs.create_queue(QueueName="request-events")["QueueUrl"]
        yield RequestStore(ddb, TABLE), EventQueue(sqs, queue_url)


@pytest.fixture
def store(aws):
    return aws[0]


@pytest.fixture
def queue(aws):
    return aws[1]


def _transition(store, queue, request_id, status, credential=ADMIN):
    return transition_status(store, queue, request_id, status, credential, admin_token=ADMIN)


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


def test_create_returns_pending_record_and_tracking_url(store):
    created = create_request(store, "t1", public_base_url=BASE_URL + "/")
    record = created.record

    assert record.status == "PENDING"
    assert record.request_id and record.requester_token
    assert record.request_id != record.requester_token
    assert created.tracking_url == f"{BASE_URL}/requests/{record.request_id}?t={record.requester_token}"

    stored = store.read_consistent(record.request_id)
    assert stored.title == "t1"
    assert stored.status_history == []


def test_create_generates_distinct_identifiers(store):
    a = create_request(store, "same", public_base_url=BASE_URL).record
    b = create_request(store, "same", public_base_url=BASE_URL).record
    assert a.request_id != b.request_id
    assert a.requester_token != b.requester_token


@pytest.mark.parametrize("title", [None, "", 42, ["t1"]])
def test_create_rejects_missing_title(store, title):
    with pytest.raises(ValidationError):
        create_request(store, title, public_base_url=BASE_URL)


@pytest.mark.parametrize("title", ["x" * 501, "x" * 5000, "   ", "\t"])
def test_create_accepts_any_non_empty_title(store, title):
    record = create_request(store, title, public_base_url=BASE_URL).record
    assert store.read_consistent(record.request_id).title == title


def test_tracking_url_without_base():
    assert tracking_url("", "abc", "tok") == "/requests/abc?t=tok"


# ---------------------------------------------------------------------------
# read
# ---------------------------------------------------------------------------


def test_read_with_matching_token(store):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    fetched = read_request(store, record.request_id, record.requester_token)
    assert fetched.request_id == record.request_id
    assert fetched.status == "PENDING"


def test_read_with_wrong_token_is_forbidden(store):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    with pytest.raises(ForbiddenError):
        read_request(store, record.request_id, "not-the-token")


@pytest.mark.parametrize("token", [None, ""])
def test_read_without_token_is_validation_error(store, token):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    with pytest.raises(ValidationError):
        read_request(store, record.request_id, token)


def test_read_unknown_request_is_not_found(store):
    with pytest.raises(NotFoundError):
        read_request(store, "does-not-exist", "any-token")


def test_read_item_without_token_is_corrupt(store):
    store.create(RequestRecord("bare", "t1", "PENDING", "2026-01-01T00:00:00Z", ""))
    with pytest.raises(PersistenceError):
        read_request(store, "bare", "any-token")


# ---------------------------------------------------------------------------
# transition
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("credential", [None, "", "wrong"])
def test_check_admin_credential_rejects(credential):
    with pytest.raises(UnauthorizedError):
        check_admin_credential(credential, ADMIN)


def test_check_admin_credential_rejects_when_secret_unset():
    with pytest.raises(UnauthorizedError):
        check_admin_credential("", "")


def test_transition_requires_admin_before_touching_store():
    store = MagicMock()
    queue = MagicMock()
    with pytest.raises(UnauthorizedError):
        _transition(store, queue, "req-1", "DONE", credential="nope")
    store.update_status.assert_not_called()
    queue.send.assert_not_called()


def test_transition_rejects_unknown_status_without_writing():
    store = MagicMock()
    queue = MagicMock()
    with pytest.raises(ValidationError):
        _transition(store, queue, "req-1", "ARCHIVED")
    store.update_status.assert_not_called()


def test_transition_unknown_request_is_not_found(store, queue):
    with pytest.raises(NotFoundError):
        _transition(store, queue, "does-not-exist", "DONE")
    assert queue.receive_batch(10, 0, 30) == []


def test_transition_publishes_event_matching_response(store, queue):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    event = _transition(store, queue, record.request_id, "IN_PROGRESS")

    messages = queue.receive_batch(10, 0, 30)
    assert len(messages) == 1
    assert json.loads(messages[0].body) == {
        "eventId": event.event_id,
        "requestId": record.request_id,
        "newStatus": "IN_PROGRESS",
        "changedAt": event.changed_at,
    }
    stored = store.read_consistent(record.request_id)
    assert stored.status == "IN_PROGRESS"
    assert stored.status_updated_at == event.changed_at


def test_every_status_pair_is_allowed(store, queue):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    statuses = [s.value for s in RequestStatus]
    for current, target in itertools.product(statuses, statuses):
        _transition(store, queue, record.request_id, current)
        _transition(store, queue, record.request_id, target)
        assert store.read_consistent(record.request_id).status == target


def test_same_status_twice_publishes_two_events(store, queue):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    first = _transition(store, queue, record.request_id, "DONE")
    second = _transition(store, queue, record.request_id, "DONE")
    assert first.event_id != second.event_id


def test_enqueue_failure_leaves_status_updated(store):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    broken_queue = MagicMock()
    broken_queue.send.side_effect = QueueError("queue unavailable")

    with pytest.raises(EventPublishError) as ctx:
        _transition(store, broken_queue, record.request_id, "REJECTED")

    assert ctx.value.status_code == 500
    assert ctx.value.details["statusUpdated"] is True
    stored = store.read_consistent(record.request_id)
    assert stored.status == "REJECTED"
    assert stored.status_history == []


# ---------------------------------------------------------------------------
# end to end
# ---------------------------------------------------------------------------


def test_create_transition_process_read(store, queue):
    created = create_request(store, "t1", public_base_url=BASE_URL)
    record = created.record
    event = _transition(store, queue, record.request_id, "IN_PROGRESS")

    worker = StatusEventWorker(store, queue, max_messages=10, wait_time_seconds=0)
    summary = worker.run_once()
    assert summary.applied == 1
    assert summary.ack_failures == 0

    fetched = read_request(store, record.request_id, record.requester_token)
    assert fetched.status == "IN_PROGRESS"
    assert len(fetched.status_history) == 1
    assert fetched.status_history[0].event_id == event.event_id
    assert fetched.status_history[0].new_status == "IN_PROGRESS"
    assert fetched.notified_at
    assert fetched.last_event_id == event.event_id

    # The message was deleted; nothing further to process.
    assert worker.run_once().received == 0


def test_redelivered_event_is_skipped(store, queue):
    record = create_request(store, "t1", public_base_url=BASE_URL).record
    event = _transition(store, queue, record.request_id, "DONE")
    worker = StatusEventWorker(store, queue, wait_time_seconds=0)

    assert worker.reconcile(event.to_json()) is MessageOutcome.APPLIED
    assert worker.reconcile(event.to_json()) is MessageOutcome.SKIPPED
    assert len(store.read_consistent(record.request_id).status_history) == 1
