"""status_worker/lambda_function.py — SQS-triggered status event reconciler.

Triggered by the request-events SQS queue (event source mapping with
ReportBatchItemFailures enabled). Each record body is a StatusChangedEvent;
the handler applies it to the request idempotently and reports only the
records that must be redelivered:

  malformed body            -> dropped (acknowledged)
  applied / already applied -> acknowledged
  store failure             -> returned in batchItemFailures, redelivered
                               after the visibility timeout

The long-running equivalent for non-Lambda hosts is poller.py in this
directory; both use StatusEventWorker.reconcile.

Environment variables:
  REQUESTS_TABLE         default: Requests
  DYNAMODB_ENDPOINT      optional endpoint override
  WORKER_EXPLAIN_SKIPS   default: false
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from request_tracker_shared import config
from request_tracker_shared.aws_clients import build_ddb_client
from request_tracker_shared.store import RequestStore
from request_tracker_shared.worker import BatchSummary, MessageOutcome, StatusEventWorker

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_worker: Optional[StatusEventWorker] = None


def build_worker() -> StatusEventWorker:
    ddb = build_ddb_client(config.AWS_REGION, config.DYNAMODB_ENDPOINT)
    return StatusEventWorker(
        RequestStore(ddb, config.REQUESTS_TABLE),
        explain_skips=config.WORKER_EXPLAIN_SKIPS,
    )


def _get_worker() -> StatusEventWorker:
    global _worker
    if _worker is None:
        _worker = build_worker()
    return _worker


def _receive_count(record: Dict[str, Any]) -> int:
    attributes = record.get("attributes") or {}
    try:
        return int(attributes.get("ApproximateReceiveCount") or 1)
    except (TypeError, ValueError):
        return 1


def process_records(records: List[Dict[str, Any]], worker: StatusEventWorker) -> Dict[str, Any]:
    failures: List[Dict[str, str]] = []
    summary = BatchSummary(received=len(records))
    for record in records:
        message_id = str(record.get("messageId") or "")
        outcome = worker.reconcile(
            record.get("body"),
            message_id=message_id,
            receive_count=_receive_count(record),
        )
        summary.record(outcome)
        if outcome is MessageOutcome.RETRY:
            failures.append({"itemIdentifier": message_id})

    logger.info(
        "[END] status_worker: %s",
        json.dumps({
            "received": summary.received,
            "applied": summary.applied,
            "skipped": summary.skipped,
            "discarded": summary.discarded,
            "retried": summary.retried,
        }),
    )
    return {"batchItemFailures": failures}


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """SQS Lambda handler returning a partial batch response."""
    records = event.get("Records") or []
    logger.info("[START] status_worker: received %d SQS message(s)", len(records))
    return process_records(records, _get_worker())
