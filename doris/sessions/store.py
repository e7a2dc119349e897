"""SessionStore: conversation sessions keyed by session id.

Sessions live in memory. When a *db_path* is given each session is also
snapshotted to SQLite after every mutation, so a session waiting on a
client-executed tool survives a restart.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from doris.errors import SessionBusy
from doris.sessions.models import ConversationSession

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager
    from pathlib import Path

    from doris.sessions.models import Message

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class SessionStore:
    """Owns every ConversationSession.

    Two kinds of per-session lock are kept:

    - the *turn* lock gives at most one in-flight turn per session;
      ``turn()`` raises ``SessionBusy`` instead of waiting.
    - the *mutation* lock serializes the short read-modify-write sections
      below. There is no lock across sessions.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        window_size: int = 40,
        max_chars: int | None = None,
        summary_chars: int = 2000,
    ) -> None:
        self._db_path = db_path
        self._initialised = False
        self.window_size = window_size
        self.max_chars = max_chars
        self.summary_chars = summary_chars
        self._sessions: dict[str, ConversationSession] = {}
        self._turn_locks: dict[str, asyncio.Lock] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Coroutines holding or waiting for either lock of a session.
        self._lock_users: dict[str, int] = {}

    # -- Locking ---------------------------------------------------------------

    @asynccontextmanager
    async def _using(self, session_id: str, lock: asyncio.Lock) -> AsyncIterator[None]:
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1

    def _lock(self, session_id: str) -> AbstractAsyncContextManager[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        return self._using(session_id, lock)

    def _turn_lock(self, session_id: str) -> asyncio.Lock:
        return self._turn_locks.setdefault(session_id, asyncio.Lock())

    def _forget_if_idle(self, session_id: str) -> None:
        """Drop a session's locks and cached state once nobody uses them."""
        if self._lock_users.get(session_id, 0):
            return
        self._lock_users.pop(session_id, None)
        self._locks.pop(session_id, None)
        self._turn_locks.pop(session_id, None)
        self._sessions.pop(session_id, None)

    def is_busy(self, session_id: str) -> bool:
        lock = self._turn_locks.get(session_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def turn(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session for one turn, or raise ``SessionBusy``."""
        lock = self._turn_lock(session_id)
        if lock.locked():
            msg = f"A turn is already in progress for session '{session_id}'"
            raise SessionBusy(msg)
        async with self._using(session_id, lock):
            yield

    # -- Persistence -----------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        assert self._db_path is not None
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def _load(self, session_id: str) -> ConversationSession | None:
        if self._db_path is None:
            return None
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT data FROM sessions WHERE id = ?", (session_id,))
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            return None
        logger.info("Restored session %s from snapshot", session_id)
        return ConversationSession.model_validate_json(row[0])

    async def _save(self, session: ConversationSession) -> None:
        if self._db_path is None:
            return
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO sessions (id, data, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data,
                                              updated_at = excluded.updated_at
                """,
                (session.id, session.model_dump_json(), datetime.now(UTC).isoformat()),
            )
            await db.commit()
        finally:
            await db.close()

    # -- Contract --------------------------------------------------------------

    async def _get_unlocked(self, session_id: str) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = await self._load(session_id) or ConversationSession(id=session_id)
            self._sessions[session_id] = session
        return session

    async def get(self, session_id: str) -> ConversationSession:
        """Get or create a session."""
        async with self._lock(session_id):
            return await self._get_unlocked(session_id)

    async def snapshot(self, session_id: str) -> ConversationSession:
        """Deep copy of a session, for a turn to work on."""
        session = await self.get(session_id)
        return session.model_copy(deep=True)

    async def append(self, session_id: str, message: Message) -> None:
        """Append a message, then apply the window policy."""
        async with self._lock(session_id):
            session = await self._get_unlocked(session_id)
            session.append(message)
            self._apply_window(session)
            await self._save(session)

    async def replace(self, session_id: str, session: ConversationSession) -> None:
        """Commit a working copy produced by a turn."""
        async with self._lock(session_id):
            self._apply_window(session)
            self._sessions[session_id] = session
            await self._save(session)

    async def trim(
        self,
        session_id: str,
        max_messages: int | None = None,
        max_chars: int | None = None,
    ) -> int:
        """Trim a session to explicit limits. Returns messages removed."""
        async with self._lock(session_id):
            session = await self._get_unlocked(session_id)
            removed = session.trim(max_messages, max_chars, self.summary_chars)
            if removed:
                logger.info("Trimmed %d messages from session %s", removed, session_id)
                await self._save(session)
            return removed

    async def clear(self, session_id: str) -> int:
        """Clear a session, waiting for any in-flight turn to finish first.

        Clearing an already empty session is a no-op. A cleared session
        nobody else is using is evicted from memory along with its locks.
        """
        turn_lock = self._turn_lock(session_id)
        async with self._using(session_id, turn_lock), self._lock(session_id):
            session = await self._get_unlocked(session_id)
            count = session.clear()
            await self._save(session)
            logger.info("Cleared %d messages from session %s", count, session_id)
        self._forget_if_idle(session_id)
        return count

    def _apply_window(self, session: ConversationSession) -> None:
        removed = session.trim(self.window_size, self.max_chars, self.summary_chars)
        if removed:
            logger.info("Trimmed %d messages from session %s", removed, session.id)
