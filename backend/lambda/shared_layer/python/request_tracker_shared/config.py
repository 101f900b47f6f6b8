"""request_tracker_shared.config — Environment configuration for the request tracker.

Values are read once at import time. Outside production a local ``.env`` file
is loaded first; variables already present in the environment win.

Only entry points (the Lambda handlers and the poller) read these constants.
Store, queue, service and worker code receive what they need as arguments.

Environment variables:
    APP_ENV                              default: local
    AWS_REGION / DYNAMODB_REGION         default: us-east-1
    DYNAMODB_ENDPOINT                    optional endpoint override (local emulator)
    REQUESTS_TABLE                       default: Requests
    SQS_ENDPOINT                         optional endpoint override
    SQS_QUEUE_URL                        optional; resolved from SQS_QUEUE_NAME when unset
    SQS_QUEUE_NAME                       default: request-events
    ADMIN_TOKEN                          default: dev-admin-token
    APP_PUBLIC_BASE_URL                  default: http://localhost:8080
    CORS_ORIGIN                          default: *
    WORKER_MAX_MESSAGES                  default: 10
    WORKER_WAIT_TIME_SECONDS             default: 10
    WORKER_VISIBILITY_TIMEOUT_SECONDS    default: 30
    WORKER_RECEIVE_ERROR_BACKOFF_SECONDS default: 1
    WORKER_EXPLAIN_SKIPS                 default: false
    LOG_LEVEL                            default: INFO
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

__all__ = [
    "ADMIN_TOKEN",
    "APP_ENV",
    "APP_PUBLIC_BASE_URL",
    "AWS_REGION",
    "CORS_ORIGIN",
    "DYNAMODB_ENDPOINT",
    "LOG_LEVEL",
    "REQUESTS_TABLE",
    "SQS_ENDPOINT",
    "SQS_QUEUE_NAME",
    "SQS_QUEUE_URL",
    "WORKER_EXPLAIN_SKIPS",
    "WORKER_MAX_MESSAGES",
    "WORKER_RECEIVE_ERROR_BACKOFF_SECONDS",
    "WORKER_VISIBILITY_TIMEOUT_SECONDS",
    "WORKER_WAIT_TIME_SECONDS",
]

logger = logging.getLogger(__name__)

APP_ENV = os.environ.get("APP_ENV", "local")
if APP_ENV != "production":
    load_dotenv(".env", override=False)


def _first_nonempty_env(*names: str, default: str = "") -> str:
    for name in names:
        value = str(os.environ.get(name, "")).strip()
        if value:
            return value
    return default


def _env_int(name: str, default: int) -> int:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[WARNING] %s=%r is not an integer; using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[WARNING] %s=%r is not a number; using %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes"}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

AWS_REGION = _first_nonempty_env("AWS_REGION", "DYNAMODB_REGION", default="us-east-1")

DYNAMODB_ENDPOINT = _first_nonempty_env("DYNAMODB_ENDPOINT")
REQUESTS_TABLE = _first_nonempty_env("REQUESTS_TABLE", default="Requests")

SQS_ENDPOINT = _first_nonempty_env("SQS_ENDPOINT")
SQS_QUEUE_URL = _first_nonempty_env("SQS_QUEUE_URL")
SQS_QUEUE_NAME = _first_nonempty_env("SQS_QUEUE_NAME", default="request-events")

ADMIN_TOKEN = _first_nonempty_env("ADMIN_TOKEN", default="dev-admin-token")
APP_PUBLIC_BASE_URL = _first_nonempty_env("APP_PUBLIC_BASE_URL", default="http://localhost:8080")
CORS_ORIGIN = _first_nonempty_env("CORS_ORIGIN", default="*")

WORKER_MAX_MESSAGES = _env_int("WORKER_MAX_MESSAGES", 10)
WORKER_WAIT_TIME_SECONDS = _env_int("WORKER_WAIT_TIME_SECONDS", 10)
WORKER_VISIBILITY_TIMEOUT_SECONDS = _env_int("WORKER_VISIBILITY_TIMEOUT_SECONDS", 30)
WORKER_RECEIVE_ERROR_BACKOFF_SECONDS = _env_float("WORKER_RECEIVE_ERROR_BACKOFF_SECONDS", 1.0)
WORKER_EXPLAIN_SKIPS = _env_bool("WORKER_EXPLAIN_SKIPS")

LOG_LEVEL = _first_nonempty_env("LOG_LEVEL", default="INFO").upper()
