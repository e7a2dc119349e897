"""Tool framework and the built-in tools."""

from __future__ import annotations

from typing import TYPE_CHECKING

from doris.tools.base import ClientAction, ToolCall, ToolParameters, ToolParams, ToolResult
from doris.tools.client_tools import register_client_tools
from doris.tools.memory_tools import register_memory_tools
from doris.tools.registry import ToolRegistry
from doris.tools.utility import register_utility_tools

if TYPE_CHECKING:
    from doris.memory.store import MemoryStore


def build_default_registry(memory_store: MemoryStore, timezone: str = "UTC") -> ToolRegistry:
    """A registry with every built-in tool registered.

    To add a tool module, write a ``register_*`` function and call it here.
    """
    registry = ToolRegistry()
    register_utility_tools(registry, timezone)
    register_memory_tools(registry, memory_store)
    register_client_tools(registry)
    return registry


__all__ = [
    "ClientAction",
    "ToolCall",
    "ToolParameters",
    "ToolParams",
    "ToolRegistry",
    "ToolResult",
    "build_default_registry",
]
