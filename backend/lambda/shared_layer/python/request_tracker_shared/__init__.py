"""request_tracker_shared — Shared code for the request tracker Lambdas and worker.

Provides:
    - Request / StatusChangedEvent models and the queue wire format
    - DynamoDB request store with conditional, idempotent writes
    - SQS event queue adapter
    - API status-transition logic (create, token-gated read, admin transition)
    - Status event worker loop (long-poll and SQS-trigger variants)
    - Environment configuration, HTTP response helpers, timestamps
"""

__version__ = "1.0.0"
