"""Fire-and-forget notification delivery.

The engine calls :func:`notify_after_commit` once a transition is committed.
Delivery runs on a small thread pool with its own retry policy; whatever
happens there is logged and counted, never raised back into the engine.
"""
from __future__ import annotations

import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from app.metrics import notifications_total
from app.utils.runtime_config import get_notify_webhook

logger = logging.getLogger(__name__)

NOTIFY_ENABLED = os.getenv("NOTIFY_ENABLED", "1") == "1"
NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3"))
NOTIFY_BACKOFF_SEC = float(os.getenv("NOTIFY_BACKOFF_SEC", "0.5"))
NOTIFY_WORKERS = int(os.getenv("NOTIFY_WORKERS", "2"))
NOTIFY_TIMEOUT_SEC = float(os.getenv("NOTIFY_TIMEOUT_SEC", "10"))

_executor = ThreadPoolExecutor(max_workers=NOTIFY_WORKERS, thread_name_prefix="notify")


def deliver(event: str, payload: Dict[str, Any]) -> bool:
    """POST one event to the webhook. Returns True when it was accepted."""
    url = get_notify_webhook()
    if not NOTIFY_ENABLED or not url:
        logger.debug("notification %s skipped: delivery disabled or no webhook", event)
        notifications_total.labels(result="skipped").inc()
        return False

    body = {
        "event": event,
        "sent_at": datetime.now(timezone.utc).isoformat(),
        **payload,
    }
    for attempt in range(1, NOTIFY_MAX_ATTEMPTS + 1):
        try:
            r = requests.post(url, json=body, timeout=NOTIFY_TIMEOUT_SEC)
            if r.status_code < 300:
                notifications_total.labels(result="sent").inc()
                return True
            logger.warning("notification %s attempt %d: HTTP %s %s",
                           event, attempt, r.status_code, r.text[:300])
        except requests.RequestException as e:
            logger.warning("notification %s attempt %d failed: %s", event, attempt, e)
        if attempt < NOTIFY_MAX_ATTEMPTS:
            time.sleep(NOTIFY_BACKOFF_SEC * attempt)

    logger.error("notification %s dropped after %d attempts", event, NOTIFY_MAX_ATTEMPTS)
    notifications_total.labels(result="failed").inc()
    return False


def _deliver_quietly(event: str, payload: Dict[str, Any]) -> bool:
    try:
        return deliver(event, payload)
    except Exception:
        logger.exception("notification %s crashed", event)
        notifications_total.labels(result="failed").inc()
        return False


def dispatch(event: str, payload: Dict[str, Any]) -> Future:
    """Queue an event for delivery and return without waiting."""
    return _executor.submit(_deliver_quietly, event, payload)


def notify_after_commit(event: str, payload: Dict[str, Any]) -> Optional[Future]:
    """Post-commit hook used by the engine; a failure to even queue is only logged."""
    try:
        return dispatch(event, payload)
    except Exception:
        logger.exception("could not queue notification %s", event)
        notifications_total.labels(result="failed").inc()
        return None


def shutdown(wait: bool = False) -> None:
    _executor.shutdown(wait=wait)
