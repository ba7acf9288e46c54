"""Verification of Slack request signatures (``X-Slack-Signature``)."""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable, Optional

VERSION = "v0"
MAX_AGE_SECONDS = 300


def compute_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    """Return the ``v0=<hex>`` signature Slack sends for ``body``."""
    base = f"{VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(signing_secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
    return f"{VERSION}={digest}"


def verify_signature(
    signing_secret: str,
    timestamp: Optional[str],
    signature: Optional[str],
    body: bytes,
    clock: Callable[[], float] = time.time,
    max_age: int = MAX_AGE_SECONDS,
) -> bool:
    """Check that the request was signed with ``signing_secret`` recently.

    Requests older (or further in the future) than ``max_age`` seconds are
    rejected to limit replays.
    """
    if not timestamp or not signature:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs(clock() - sent_at) > max_age:
        return False
    expected = compute_signature(signing_secret, timestamp, body)
    return hmac.compare_digest(expected, signature)
