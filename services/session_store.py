"""TTL-bearing persistence for per-thread wizard sessions."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from models.session_models import Session, session_from_dict, session_to_dict
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import SessionNotFound

LOGGER = logging.getLogger(__name__)


class SessionStore:
	"""Store one session row per thread id in SQLite.

	Rows carry an absolute ``expires_at``; expired rows read as missing and are
	pruned later by ``utils.database_cleaner.DatabaseCleaner``. The ``locks``
	table provides short leases used to keep a duplicate "post" delivery from
	committing twice.
	"""

	def __init__(self, db_initializer: AsyncDatabaseInitializer, clock: Callable[[], float] = time.time) -> None:
		self._db = db_initializer
		self._clock = clock

	async def get(self, session_id: str) -> Optional[Session]:
		"""Return the live session for ``session_id`` or None if missing/expired."""
		async with self._db.connection() as conn:
			cur = await conn.execute(
				"SELECT payload FROM sessions WHERE id = ? AND expires_at > ?",
				(session_id, self._clock()),
			)
			row = await cur.fetchone()
		if row is None:
			return None
		try:
			return session_from_dict(json.loads(row[0]))
		except ValueError as exc:
			# json.JSONDecodeError is a ValueError as well
			LOGGER.warning("Dropping unreadable session %s: %s", session_id, exc)
			return None

	async def require(self, session_id: str) -> Session:
		"""Like ``get`` but raise ``SessionNotFound`` for a missing or expired session."""
		session = await self.get(session_id)
		if session is None:
			raise SessionNotFound(session_id)
		return session

	async def put(self, session: Session, ttl_seconds: float) -> None:
		"""Insert or replace the session row with a fresh expiry."""
		payload = json.dumps(session_to_dict(session), ensure_ascii=False)
		async with self._db.connection() as conn:
			await conn.execute(
				"INSERT OR REPLACE INTO sessions (id, payload, expires_at) VALUES (?, ?, ?)",
				(session.session_id, payload, self._clock() + ttl_seconds),
			)
			await conn.commit()

	async def delete(self, session_id: str) -> None:
		async with self._db.connection() as conn:
			await conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
			await conn.commit()

	async def try_lock(self, key: str, ttl_seconds: float) -> bool:
		"""Take a lease on ``key``. Returns False while another lease is live."""
		now = self._clock()
		async with self._db.connection() as conn:
			await conn.execute("DELETE FROM locks WHERE key = ? AND expires_at <= ?", (key, now))
			cur = await conn.execute(
				"INSERT OR IGNORE INTO locks (key, expires_at) VALUES (?, ?)",
				(key, now + ttl_seconds),
			)
			acquired = cur.rowcount == 1
			await conn.commit()
		return acquired

	async def release(self, key: str) -> None:
		async with self._db.connection() as conn:
			await conn.execute("DELETE FROM locks WHERE key = ?", (key,))
			await conn.commit()
