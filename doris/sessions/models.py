"""Conversation session data models."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from doris.tools.base import ToolCall, ToolResult

# Per-message cap when folding trimmed messages into the summary.
_SUMMARY_LINE_CHARS = 200


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class SessionState(StrEnum):
    IDLE = "idle"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"


class Message(BaseModel):
    """A single entry of the replayed conversation history.

    Assistant messages that request a tool carry ``tool_call``; tool
    messages carry the matching ``tool_call_id``.
    """

    id: str = Field(default_factory=_new_id)
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    timestamp: str = Field(default_factory=_now)
    tool_call: ToolCall | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    is_error: bool = False
    pinned: bool = False

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_call: ToolCall | None = None) -> Message:
        return cls(role="assistant", content=content, tool_call=tool_call)

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> Message:
        return cls(
            role="tool",
            content=result.to_content(),
            tool_call_id=result.call_id,
            tool_name=result.tool_name,
            is_error=not result.success,
        )

    def size(self) -> int:
        """Approximate serialized size in characters."""
        size = len(self.content)
        if self.tool_call is not None:
            size += len(self.tool_call.tool_name)
            size += len(json.dumps(self.tool_call.parameters.to_dict(), default=str))
        return size


class PendingRemoteTool(BaseModel):
    """A client-delegated tool call the session is waiting on."""

    session_id: str
    tool_call: ToolCall
    requested_at: str = Field(default_factory=_now)


class ConversationSession(BaseModel):
    """Conversation history and turn state for one session."""

    id: str
    messages: list[Message] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now)
    summary: str = ""
    pending_tool: PendingRemoteTool | None = None
    conversation_id: int | None = None

    @property
    def state(self) -> SessionState:
        if self.pending_tool is not None:
            return SessionState.AWAITING_TOOL_RESULT
        return SessionState.IDLE

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def unresolved_tool_calls(self) -> list[str]:
        """Call ids of tool-call messages that have no result message."""
        answered = {m.tool_call_id for m in self.messages if m.role == "tool"}
        return [
            m.tool_call.call_id
            for m in self.messages
            if m.tool_call is not None and m.tool_call.call_id not in answered
        ]

    def trim(self, max_messages: int | None = None, max_chars: int | None = None,
             summary_chars: int = 2000) -> int:
        """Drop the oldest exchanges until the history fits.

        An exchange is a user message plus everything up to the next user
        message, so a tool call always leaves together with its result and
        the history keeps starting with a user message. Pinned exchanges
        and the latest exchange are never dropped. Dropped text is folded
        into ``summary``. Returns the number of messages removed.
        """
        exchanges = _group_exchanges(self.messages)
        dropped: list[Message] = []

        def over_budget() -> bool:
            kept = [m for ex in exchanges for m in ex]
            if max_messages is not None and len(kept) > max_messages:
                return True
            return max_chars is not None and sum(m.size() for m in kept) > max_chars

        while over_budget():
            index = next(
                (
                    i
                    for i, ex in enumerate(exchanges[:-1])
                    if not any(m.pinned for m in ex)
                ),
                None,
            )
            if index is None:
                break
            dropped.extend(exchanges.pop(index))

        if not dropped:
            return 0
        self.messages = [m for ex in exchanges for m in ex]
        self.summary = _fold_summary(self.summary, dropped, summary_chars)
        return len(dropped)

    def clear(self) -> int:
        """Reset history and turn state. Returns the count of cleared messages."""
        count = len(self.messages)
        self.messages = []
        self.summary = ""
        self.pending_tool = None
        self.conversation_id = None
        return count


def _group_exchanges(messages: list[Message]) -> list[list[Message]]:
    exchanges: list[list[Message]] = []
    for message in messages:
        if message.role == "user" or not exchanges:
            exchanges.append([message])
        else:
            exchanges[-1].append(message)
    return exchanges


def _fold_summary(existing: str, dropped: list[Message], limit: int) -> str:
    """Role-aware compaction of dropped messages, bounded to *limit* chars."""
    lines: list[str] = []
    if existing:
        lines.append(existing.strip())
    for message in dropped:
        if message.role == "tool" or not message.content.strip():
            continue
        text = " ".join(message.content.split())
        if len(text) > _SUMMARY_LINE_CHARS:
            text = text[: _SUMMARY_LINE_CHARS - 3] + "..."
        lines.append(f"{message.role}: {text}")
    folded = "\n".join(lines)
    if len(folded) > limit:
        folded = folded[-limit:]
    return folded
