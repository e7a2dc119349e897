"""Base types for the tool-calling framework."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, JsonValue, RootModel

SUCCESS = "success"
ERROR = "error"


class ToolParameters(RootModel[dict[str, JsonValue]]):
    """JSON-object parameters of a tool call.

    Values are plain JSON values (null, bool, number, string, array,
    object). Use the typed accessors instead of indexing; each returns
    ``default`` when the key is missing or holds a different type.
    """

    root: dict[str, JsonValue] = Field(default_factory=dict)

    def __contains__(self, key: str) -> bool:
        return key in self.root

    def __len__(self) -> int:
        return len(self.root)

    def keys(self) -> list[str]:
        return list(self.root)

    def to_dict(self) -> dict[str, JsonValue]:
        return dict(self.root)

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self.root.get(key)
        return value if isinstance(value, str) else default

    def get_int(self, key: str, default: int | None = None) -> int | None:
        value = self.root.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return default

    def get_float(self, key: str, default: float | None = None) -> float | None:
        value = self.root.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            return float(value)
        return default

    def get_bool(self, key: str, default: bool | None = None) -> bool | None:
        value = self.root.get(key)
        return value if isinstance(value, bool) else default

    def get_list(self, key: str) -> list[JsonValue]:
        value = self.root.get(key)
        return value if isinstance(value, list) else []

    def get_object(self, key: str) -> dict[str, JsonValue]:
        value = self.root.get(key)
        return value if isinstance(value, dict) else {}

    def require_str(self, key: str) -> str:
        """Return a non-empty string parameter or raise ``KeyError``."""
        value = self.get_str(key)
        if not value:
            msg = f"Missing required parameter: {key}"
            raise KeyError(msg)
        return value


class ToolCall(BaseModel):
    """A tool invocation requested by the model for one turn."""

    tool_name: str
    parameters: ToolParameters = Field(default_factory=ToolParameters)
    call_id: str


class ClientAction(BaseModel):
    """Something the client should do after the reply, e.g. open maps."""

    type: str
    parameters: dict[str, JsonValue] = Field(default_factory=dict)


@dataclass
class ToolResult:
    """Result of a tool execution.

    Handlers return ``ToolResult(data=...)`` or ``ToolResult(error=...)``.
    The registry stamps ``call_id`` and ``tool_name`` so the result always
    echoes the originating call.
    """

    data: Any = None
    error: str | None = None
    call_id: str = ""
    tool_name: str = ""
    actions: list[ClientAction] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def status(self) -> str:
        return SUCCESS if self.success else ERROR

    @property
    def payload(self) -> Any:
        """The model-visible data: ``{"error": ...}`` for failures."""
        if self.error is not None:
            return {"error": self.error}
        return self.data if self.data is not None else {}

    def to_content(self) -> str:
        """Serialize for the Claude tool_result content field."""
        return json.dumps(self.payload, default=str)

    @classmethod
    def from_client(
        cls, *, call_id: str, tool_name: str, status: str, data: Any
    ) -> ToolResult:
        """Build a result returned by the client for a delegated tool."""
        if status == SUCCESS:
            return cls(data=data, call_id=call_id, tool_name=tool_name)
        error = data.get("error") if isinstance(data, dict) else None
        return cls(
            error=str(error or data or "Client tool failed"),
            call_id=call_id,
            tool_name=tool_name,
        )


class ToolParams(BaseModel):
    """Base class for tool parameter models.

    Subclass with Field() definitions. The JSON schema is auto-generated
    via model_json_schema() for Claude's tool definitions.
    """
