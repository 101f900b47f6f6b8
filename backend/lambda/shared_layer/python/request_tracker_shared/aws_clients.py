"""request_tracker_shared.aws_clients — boto3 client factories.

Each call builds a new client. Entry points call these once at startup and
pass the clients to ``RequestStore`` / ``EventQueue``; nothing here is cached.
"""

from __future__ import annotations

import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from request_tracker_shared.errors import QueueError

__all__ = [
    "build_ddb_client",
    "build_sqs_client",
    "resolve_queue_url",
]

logger = logging.getLogger(__name__)


def build_ddb_client(region: str, endpoint_url: Optional[str] = None):
    """Build a DynamoDB client, optionally pointed at a local endpoint."""
    return boto3.client(
        "dynamodb",
        region_name=region,
        endpoint_url=endpoint_url or None,
        config=Config(retries={"max_attempts": 5, "mode": "standard"}),
    )


def build_sqs_client(region: str, endpoint_url: Optional[str] = None):
    """Build an SQS client, optionally pointed at a local endpoint."""
    return boto3.client(
        "sqs",
        region_name=region,
        endpoint_url=endpoint_url or None,
        config=Config(retries={"max_attempts": 3, "mode": "standard"}),
    )


def resolve_queue_url(sqs_client, queue_name: str, explicit_url: str = "") -> str:
    """Return ``explicit_url`` when set, otherwise look the queue up by name."""
    if explicit_url:
        return explicit_url
    try:
        resp = sqs_client.get_queue_url(QueueName=queue_name)
    except (BotoCoreError, ClientError) as exc:
        raise QueueError(f"Unable to resolve queue URL for '{queue_name}': {exc}") from exc
    queue_url = str(resp.get("QueueUrl") or "")
    if not queue_url:
        raise QueueError(f"GetQueueUrl returned no URL for '{queue_name}'")
    logger.info("[INFO] Resolved queue '%s' -> %s", queue_name, queue_url)
    return queue_url
