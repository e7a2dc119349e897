"""ConversationArchive: permanent log of finished exchanges.

Unlike the session history, which is trimmed to fit the model's context,
the archive keeps every user and assistant message so past conversations
can be listed, searched and deleted from the client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import aiosqlite

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Length of the auto-generated title taken from the first user message.
TITLE_LENGTH = 50

_CREATE_CONVERSATIONS = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    title TEXT,
    summary TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at DESC)",
)


def make_title(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + "..."
    return text


@dataclass
class Conversation:
    id: int
    session_id: str
    title: str | None
    summary: str | None
    created_at: str
    updated_at: str
    message_count: int = 0
    messages: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, include_messages: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title or "",
            "summary": self.summary or "",
            "message_count": self.message_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_messages:
            data["messages"] = self.messages
        return data


class ConversationArchive:
    """aiosqlite-backed conversation log.

    Pass an explicit *db_path* for test isolation.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialised = False
        self._current: dict[str, int] = {}

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA foreign_keys = ON")
        if not self._initialised:
            await db.execute(_CREATE_CONVERSATIONS)
            await db.execute(_CREATE_MESSAGES)
            for statement in _INDEXES:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    # -- Write -----------------------------------------------------------------

    async def create_conversation(self, session_id: str, title: str | None = None) -> int:
        now = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            cursor = await db.execute(
                "INSERT INTO conversations (session_id, title, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (session_id, title, now, now),
            )
            await db.commit()
            conversation_id = cursor.lastrowid
        finally:
            await db.close()
        self._current[session_id] = conversation_id
        logger.info("Created conversation %d for session %s", conversation_id, session_id)
        return conversation_id

    async def add_message(self, conversation_id: int, role: str, content: str) -> int:
        now = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            cursor = await db.execute(
                "INSERT INTO messages (conversation_id, role, content, created_at) "
                "VALUES (?, ?, ?, ?)",
                (conversation_id, role, content, now),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?", (now, conversation_id)
            )
            await db.commit()
            return cursor.lastrowid
        finally:
            await db.close()

    async def record_exchange(
        self,
        session_id: str,
        conversation_id: int | None,
        user_text: str,
        assistant_text: str,
    ) -> int:
        """Log one finished exchange, opening a conversation if needed.

        Returns the conversation id the exchange was written to.
        """
        if conversation_id is None:
            conversation_id = await self.create_conversation(session_id, make_title(user_text))
        else:
            self._current[session_id] = conversation_id
        if user_text:
            await self.add_message(conversation_id, "user", user_text)
        await self.add_message(conversation_id, "assistant", assistant_text)
        return conversation_id

    async def update_summary(self, conversation_id: int, summary: str) -> None:
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE conversations SET summary = ?, updated_at = ? WHERE id = ?",
                (summary, datetime.now(UTC).isoformat(), conversation_id),
            )
            await db.commit()
        finally:
            await db.close()

    async def delete_conversation(self, conversation_id: int) -> bool:
        db = await self._connect()
        try:
            await db.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cursor = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        finally:
            await db.close()
        if deleted:
            self._current = {
                sid: cid for sid, cid in self._current.items() if cid != conversation_id
            }
            logger.info("Deleted conversation %d", conversation_id)
        return deleted

    def end_conversation(self, session_id: str) -> None:
        """Forget the current conversation of a session (after a clear)."""
        self._current.pop(session_id, None)

    def current_conversation_id(self, session_id: str) -> int | None:
        return self._current.get(session_id)

    # -- Read ------------------------------------------------------------------

    async def list_conversations(self, limit: int = 50, offset: int = 0) -> list[Conversation]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT c.id, c.session_id, c.title, c.summary, c.created_at, c.updated_at,
                       (SELECT COUNT(*) FROM messages WHERE conversation_id = c.id)
                FROM conversations c
                ORDER BY c.updated_at DESC, c.id DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [Conversation(*row) for row in rows]

    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        """Fetch a conversation with its messages, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT c.id, c.session_id, c.title, c.summary, c.created_at, c.updated_at,
                       (SELECT COUNT(*) FROM messages WHERE conversation_id = c.id)
                FROM conversations c WHERE c.id = ?
                """,
                (conversation_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            conversation = Conversation(*row)
            cursor = await db.execute(
                "SELECT id, role, content, created_at FROM messages "
                "WHERE conversation_id = ? ORDER BY id",
                (conversation_id,),
            )
            conversation.messages = [
                {"id": r[0], "role": r[1], "content": r[2], "created_at": r[3]}
                for r in await cursor.fetchall()
            ]
            return conversation
        finally:
            await db.close()

    async def search(self, query: str, limit: int = 50) -> list[dict[str, Any]]:
        """Messages whose content contains *query*, newest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT m.id, m.conversation_id, c.title, m.role, m.content, m.created_at
                FROM messages m JOIN conversations c ON c.id = m.conversation_id
                WHERE m.content LIKE ?
                ORDER BY m.id DESC
                LIMIT ?
                """,
                (f"%{query}%", limit),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [
            {
                "message_id": row[0],
                "conversation_id": row[1],
                "conversation_title": row[2] or "",
                "role": row[3],
                "content": row[4],
                "created_at": row[5],
            }
            for row in rows
        ]
