"""Conversation sessions, their store and the conversation archive."""

from doris.sessions.archive import ConversationArchive
from doris.sessions.models import (
    ConversationSession,
    Message,
    PendingRemoteTool,
    SessionState,
)
from doris.sessions.store import SessionStore

__all__ = [
    "ConversationArchive",
    "ConversationSession",
    "Message",
    "PendingRemoteTool",
    "SessionState",
    "SessionStore",
]
