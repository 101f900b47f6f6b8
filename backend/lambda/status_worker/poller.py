#!/usr/bin/env python3
"""Long-polling status worker for hosts outside Lambda (containers, local dev).

Receives StatusChangedEvent messages from the request-events queue and applies
them to the Requests table until SIGINT/SIGTERM. On a signal no further
receives are issued; the batch being processed is finished first.

Usage:
  python3 poller.py [--max-messages N] [--wait-time-seconds S]
                    [--visibility-timeout-seconds S] [--explain-skips]

Defaults come from request_tracker_shared.config (WORKER_* variables).
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from request_tracker_shared import config
from request_tracker_shared.aws_clients import build_ddb_client, build_sqs_client, resolve_queue_url
from request_tracker_shared.errors import QueueError
from request_tracker_shared.event_queue import EventQueue
from request_tracker_shared.store import RequestStore
from request_tracker_shared.worker import StatusEventWorker

logger = logging.getLogger("status_worker.poller")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply request status events from SQS")
    parser.add_argument("--max-messages", type=int, default=config.WORKER_MAX_MESSAGES)
    parser.add_argument("--wait-time-seconds", type=int, default=config.WORKER_WAIT_TIME_SECONDS)
    parser.add_argument(
        "--visibility-timeout-seconds",
        type=int,
        default=config.WORKER_VISIBILITY_TIMEOUT_SECONDS,
    )
    parser.add_argument(
        "--receive-error-backoff-seconds",
        type=float,
        default=config.WORKER_RECEIVE_ERROR_BACKOFF_SECONDS,
    )
    parser.add_argument(
        "--explain-skips",
        action=argparse.BooleanOptionalAction,
        default=config.WORKER_EXPLAIN_SKIPS,
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL)
    return parser.parse_args(argv)


@contextmanager
def stop_on_signals(stop_event: threading.Event) -> Iterator[None]:
    """Set ``stop_event`` on SIGINT/SIGTERM for the duration of the block."""
    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _frame: object) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("[INFO] %s received; finishing current batch", name)
        stop_event.set()

    installed = False
    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        installed = True
    except ValueError:
        # Signal handlers can only be installed in the main thread.
        logger.warning("[WARNING] Not in main thread; SIGINT/SIGTERM handlers not installed")

    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def build_worker(args: argparse.Namespace) -> StatusEventWorker:
    ddb = build_ddb_client(config.AWS_REGION, config.DYNAMODB_ENDPOINT)
    sqs = build_sqs_client(config.AWS_REGION, config.SQS_ENDPOINT)
    queue_url = resolve_queue_url(sqs, config.SQS_QUEUE_NAME, config.SQS_QUEUE_URL)
    return StatusEventWorker(
        RequestStore(ddb, config.REQUESTS_TABLE),
        EventQueue(sqs, queue_url),
        max_messages=args.max_messages,
        wait_time_seconds=args.wait_time_seconds,
        visibility_timeout_seconds=args.visibility_timeout_seconds,
        receive_error_backoff_seconds=args.receive_error_backoff_seconds,
        explain_skips=args.explain_skips,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        worker = build_worker(args)
    except QueueError as exc:
        logger.error("[ERROR] %s", exc)
        return 1

    stop_event = threading.Event()
    with stop_on_signals(stop_event):
        worker.run(stop_event)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
