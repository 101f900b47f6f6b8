"""request_tracker_shared.event_queue — SQS adapter for status-changed events.

Delivery is at-least-once with no ordering: a received message that is not
deleted becomes visible again once its visibility timeout elapses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from botocore.exceptions import BotoCoreError, ClientError

from request_tracker_shared.errors import QueueError

__all__ = [
    "EventQueue",
    "ReceivedMessage",
]

logger = logging.getLogger(__name__)

# SQS hard limits for ReceiveMessage.
_MAX_BATCH = 10
_MAX_WAIT_SECONDS = 20


@dataclass(frozen=True)
class ReceivedMessage:
    message_id: str
    body: str
    receipt_handle: str
    receive_count: int = 1


class EventQueue:
    """Queue adapter over an injected SQS client."""

    def __init__(self, sqs_client, queue_url: str) -> None:
        self._sqs = sqs_client
        self.queue_url = queue_url

    def send(self, body: str) -> str:
        try:
            resp = self._sqs.send_message(QueueUrl=self.queue_url, MessageBody=body)
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"send_message failed: {exc}") from exc
        return str(resp.get("MessageId") or "")

    def receive_batch(
        self,
        max_messages: int,
        long_poll_seconds: int,
        visibility_timeout_seconds: int,
    ) -> List[ReceivedMessage]:
        """Long-poll for up to ``max_messages``; an empty list is not an error."""
        try:
            resp = self._sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max(1, min(int(max_messages), _MAX_BATCH)),
                WaitTimeSeconds=max(0, min(int(long_poll_seconds), _MAX_WAIT_SECONDS)),
                VisibilityTimeout=max(0, int(visibility_timeout_seconds)),
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"receive_message failed: {exc}") from exc

        messages: List[ReceivedMessage] = []
        for raw in resp.get("Messages") or []:
            body = raw.get("Body")
            handle = raw.get("ReceiptHandle")
            if body is None or not handle:
                logger.warning("[WARNING] Skipping message without body/receipt handle: %s", raw.get("MessageId"))
                continue
            attributes = raw.get("Attributes") or {}
            try:
                receive_count = int(attributes.get("ApproximateReceiveCount") or 1)
            except (TypeError, ValueError):
                receive_count = 1
            messages.append(
                ReceivedMessage(
                    message_id=str(raw.get("MessageId") or ""),
                    body=body,
                    receipt_handle=handle,
                    receive_count=receive_count,
                )
            )
        return messages

    def delete(self, receipt_handle: str) -> None:
        try:
            self._sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"delete_message failed: {exc}") from exc
