"""Request bodies and response shaping for the HTTP API."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, JsonValue

from doris.llm.prompt import ClientContext
from doris.sessions.models import Message
from doris.tools.base import SUCCESS, ToolResult

if TYPE_CHECKING:
    from doris.engine import ChatReply


class HistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ToolResultIn(BaseModel):
    """A client-executed tool result, echoing the request's ``tool_use_id``."""

    tool_use_id: str = Field(min_length=1)
    tool_name: str = ""
    status: str = SUCCESS
    parameters: dict[str, JsonValue] = Field(default_factory=dict)
    data: JsonValue = None

    def to_result(self) -> ToolResult:
        return ToolResult.from_client(
            call_id=self.tool_use_id,
            tool_name=self.tool_name,
            status=self.status,
            data=self.data,
        )


class ChatRequest(BaseModel):
    message: str = ""
    include_audio: bool = False
    history: list[HistoryItem] = Field(default_factory=list)
    client_context: ClientContext | None = None
    tool_result: ToolResultIn | None = None
    session_id: str | None = None

    def history_messages(self) -> list[Message]:
        return [Message(role=item.role, content=item.content) for item in self.history]


class ClearRequest(BaseModel):
    session_id: str | None = None


class TTSRequest(BaseModel):
    text: str = Field(min_length=1)


def chat_response(reply: ChatReply) -> dict[str, Any]:
    """Shape a ChatReply as the client expects it."""
    body: dict[str, Any] = {"latency_ms": reply.latency_ms, "source": reply.source}
    if reply.text is not None:
        body["response"] = reply.text
    if reply.audio:
        body["audio"] = base64.b64encode(reply.audio).decode("ascii")
    if reply.pending_tool_request is not None:
        call = reply.pending_tool_request
        body["tool_request"] = {
            "tool_name": call.tool_name,
            "parameters": call.parameters.to_dict(),
            "tool_use_id": call.call_id,
        }
    if reply.actions:
        body["actions"] = [action.model_dump() for action in reply.actions]
    return body
