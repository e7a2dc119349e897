"""MemoryStore: aiosqlite persistence for long-term memories.

Reads open their own connection and may run concurrently. Writes are
serialized through a single ``asyncio.Lock`` so duplicate detection and
supersede bookkeeping never interleave.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from doris.memory.models import (
    MemoryCategory,
    MemoryRecord,
    MemorySource,
    clamp_confidence,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Confidence added when the same fact is stored again.
REINFORCEMENT_STEP = 0.1

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content TEXT NOT NULL,
    content_key TEXT NOT NULL,
    category TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'explicit',
    subject TEXT,
    confidence REAL NOT NULL DEFAULT 1.0,
    last_confirmed TEXT,
    supersedes INTEGER REFERENCES memories(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_memories_subject ON memories(subject)"

_COLUMNS = (
    "id, content, category, source, subject, confidence, "
    "last_confirmed, supersedes, created_at, updated_at"
)

_ACTIVE = "id NOT IN (SELECT supersedes FROM memories WHERE supersedes IS NOT NULL)"

_WORD_RE = re.compile(r"[^\w]+")


def _content_key(content: str) -> str:
    """Normalize content for duplicate detection."""
    return " ".join(content.lower().split())


def _row_to_record(row: tuple) -> MemoryRecord:
    return MemoryRecord(
        id=row[0],
        content=row[1],
        category=MemoryCategory(row[2]),
        source=MemorySource(row[3]),
        subject=row[4],
        confidence=row[5],
        last_confirmed=row[6],
        supersedes=row[7],
        created_at=row[8],
        updated_at=row[9],
    )


class MemoryStore:
    """Persists memory records in SQLite.

    Pass an explicit *db_path* for test isolation
    (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False
        self._write_lock = asyncio.Lock()

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute(_CREATE_TABLE)
            await db.execute(_CREATE_INDEX)
            await db.commit()
            self._initialised = True
        return db

    async def _query(self, sql: str, params: tuple = ()) -> list[MemoryRecord]:
        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            return [_row_to_record(row) for row in rows]
        finally:
            await db.close()

    # -- Write -----------------------------------------------------------------

    async def add(self, record: MemoryRecord) -> int:
        """Store a memory and return its id.

        If an active memory with the same normalized content and subject
        already exists, its confidence is reinforced instead and its id is
        returned.
        """
        key = _content_key(record.content)
        now = datetime.now(UTC).isoformat()
        async with self._write_lock:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    f"SELECT id, confidence FROM memories "
                    f"WHERE content_key = ? AND IFNULL(subject, '') = ? AND {_ACTIVE}",
                    (key, record.subject or ""),
                )
                existing = await cursor.fetchone()
                if existing is not None:
                    memory_id, old_confidence = existing
                    confidence = clamp_confidence(
                        max(old_confidence, record.confidence) + REINFORCEMENT_STEP
                    )
                    await db.execute(
                        "UPDATE memories SET confidence = ?, last_confirmed = ?, "
                        "updated_at = ? WHERE id = ?",
                        (confidence, now, now, memory_id),
                    )
                    await db.commit()
                    logger.info(
                        "Reinforced memory %d (confidence %.2f)", memory_id, confidence
                    )
                    return memory_id

                cursor = await db.execute(
                    """
                    INSERT INTO memories
                        (content, content_key, category, source, subject, confidence,
                         last_confirmed, supersedes, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.content,
                        key,
                        record.category.value,
                        record.source.value,
                        record.subject,
                        clamp_confidence(record.confidence),
                        now,
                        record.supersedes,
                        record.created_at,
                        now,
                    ),
                )
                await db.commit()
                memory_id = cursor.lastrowid
                logger.info(
                    "Stored memory %d [%s] %s", memory_id, record.category, record.content[:80]
                )
                return memory_id
            finally:
                await db.close()

    async def supersede(
        self,
        old_id: int,
        content: str,
        category: MemoryCategory,
        subject: str | None = None,
    ) -> int | None:
        """Replace a memory with a corrected one.

        The new record points at the old one via ``supersedes`` and the old
        record's confidence drops to 0. Returns the new id, or None if the
        old memory does not exist.
        """
        old = await self.get(old_id)
        if old is None:
            logger.warning("Cannot supersede memory %d: not found", old_id)
            return None

        record = MemoryRecord(
            content=content,
            category=category,
            subject=subject if subject is not None else old.subject,
            supersedes=old_id,
        )
        now = datetime.now(UTC).isoformat()
        async with self._write_lock:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    """
                    INSERT INTO memories
                        (content, content_key, category, source, subject, confidence,
                         last_confirmed, supersedes, created_at, updated_at)
                    VALUES (?, ?, ?, 'explicit', ?, 1.0, ?, ?, ?, ?)
                    """,
                    (
                        record.content,
                        _content_key(record.content),
                        record.category.value,
                        record.subject,
                        now,
                        old_id,
                        now,
                        now,
                    ),
                )
                await db.execute(
                    "UPDATE memories SET confidence = 0.0, updated_at = ? WHERE id = ?",
                    (now, old_id),
                )
                await db.commit()
                new_id = cursor.lastrowid
                logger.info("Memory %d superseded by %d", old_id, new_id)
                return new_id
            finally:
                await db.close()

    async def delete(self, memory_id: int) -> bool:
        """Delete a memory by id. Returns True if a row was removed."""
        async with self._write_lock:
            db = await self._connect()
            try:
                cursor = await db.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
                await db.commit()
                deleted = cursor.rowcount > 0
                if deleted:
                    logger.info("Deleted memory %d", memory_id)
                return deleted
            finally:
                await db.close()

    # -- Read ------------------------------------------------------------------

    async def get(self, memory_id: int) -> MemoryRecord | None:
        rows = await self._query(
            f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
        )
        return rows[0] if rows else None

    async def all(self) -> list[MemoryRecord]:
        """All active memories in insertion order."""
        return await self._query(
            f"SELECT {_COLUMNS} FROM memories WHERE {_ACTIVE} ORDER BY created_at, id"
        )

    async def count(self) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(f"SELECT COUNT(*) FROM memories WHERE {_ACTIVE}")
            row = await cursor.fetchone()
            return row[0] if row else 0
        finally:
            await db.close()

    async def search(self, query: str, limit: int = 20) -> list[MemoryRecord]:
        """Substring match on content or subject, most confident first."""
        pattern = f"%{query.strip().lower()}%"
        return await self._query(
            f"""
            SELECT {_COLUMNS} FROM memories
            WHERE {_ACTIVE} AND (LOWER(content) LIKE ? OR IFNULL(subject, '') LIKE ?)
            ORDER BY confidence DESC, updated_at DESC
            LIMIT ?
            """,
            (pattern, pattern, limit),
        )

    async def get_about(self, subject: str) -> list[MemoryRecord]:
        """Memories whose subject list contains *subject*."""
        needle = subject.strip().lower()
        candidates = await self._query(
            f"SELECT {_COLUMNS} FROM memories "
            f"WHERE {_ACTIVE} AND subject LIKE ? ORDER BY created_at, id",
            (f"%{needle}%",),
        )
        return [m for m in candidates if needle in m.subjects]

    async def subjects(self) -> list[str]:
        """Sorted list of every subject that has an active memory."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT DISTINCT subject FROM memories "
                f"WHERE {_ACTIVE} AND subject IS NOT NULL"
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        found: set[str] = set()
        for (subject,) in rows:
            found.update(s for s in subject.split(",") if s)
        return sorted(found)

    async def find_similar(self, content: str, subject: str | None = None) -> list[MemoryRecord]:
        """Candidate duplicates or corrections for *content*.

        Subject matches come first, then memories sharing one of the first
        three significant words (longer than three characters).
        """
        words = [w for w in _WORD_RE.split(content.lower()) if len(w) > 3]
        if not words and not subject:
            return []

        found: list[MemoryRecord] = []
        seen: set[int] = set()
        if subject:
            for memory in await self.get_about(subject):
                found.append(memory)
                seen.add(memory.id)
        for word in words[:3]:
            for memory in await self.search(word):
                if memory.id not in seen:
                    found.append(memory)
                    seen.add(memory.id)
        return found
