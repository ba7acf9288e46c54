"""Helpers to remove expired sessions and leases from the SQLite database."""

import asyncio
import logging
import time
from typing import Callable

from utils.database_init import AsyncDatabaseInitializer

LOGGER = logging.getLogger(__name__)


class DatabaseCleaner:
    """Delete session and lock rows whose TTL has elapsed."""

    def __init__(self, db_initializer: AsyncDatabaseInitializer, clock: Callable[[], float] = time.time) -> None:
        """
        Args:
            db_initializer: Shared database initializer/connection provider.
            clock: Time source compared against each row's `expires_at`.
        """
        self._db = db_initializer
        self._clock = clock

    async def prune_expired(self) -> int:
        """Delete expired rows and return the number of sessions removed."""
        now = self._clock()
        async with self._db.connection() as conn:
            await conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (now,))
            cur = await conn.execute("SELECT changes()")
            deleted = await cur.fetchone()
            await conn.execute("DELETE FROM locks WHERE expires_at <= ?", (now,))
            await conn.commit()
            return int(deleted[0]) if deleted and deleted[0] is not None else 0

    async def run_periodic_cleanup(self, interval_seconds: int = 3_600) -> None:
        """
        Repeatedly prune expired rows at the given interval until cancelled.

        Args:
            interval_seconds: Seconds to sleep between cleanup runs.
        """
        while True:
            try:
                removed = await self.prune_expired()
                if removed:
                    LOGGER.info("Pruned %d expired sessions", removed)
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception:
                LOGGER.exception("Session cleanup failed; retrying next tick")
                await asyncio.sleep(interval_seconds)
