"""Bounded FIFO memory of recently seen inbound event ids.

The cache lives in one process, so it only protects a single warm instance
against redelivery. Several instances need a shared TTL store instead.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Optional


class DedupCache:
    """Remember up to ``capacity`` event ids, evicting the oldest first.

    Args:
        capacity: Maximum number of ids retained.
        window_seconds: Optional age after which an id counts as unseen again.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        capacity: int = 1000,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: str) -> bool:
        seen_at = self._seen.get(event_id)
        if seen_at is None:
            return False
        if self.window_seconds is not None and self._clock() - seen_at > self.window_seconds:
            return False
        return True

    def check_and_record(self, event_id: str) -> bool:
        """Record ``event_id`` and return True when it had not been seen yet."""
        if event_id in self:
            return False
        self._seen.pop(event_id, None)
        self._seen[event_id] = self._clock()
        while len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
        return True
