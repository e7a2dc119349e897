"""Tool registry: central catalog of local and client-delegated tools."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from doris.tools.base import ToolCall, ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass
class ToolDef:
    """Internal representation of a registered tool."""

    name: str
    description: str
    category: str
    handler: Callable[..., Awaitable[ToolResult]] | None = None
    params_model: type[ToolParams] | None = None
    remote: bool = False
    capability: str = ""


class ToolRegistry:
    """Registry of the tools the model may call.

    Local tools run on the server::

        @registry.tool(name="get_time", description="...", category="utility")
        async def get_time() -> ToolResult:
            ...

    Remote tools are only described here; the client executes them::

        registry.register_remote(
            "get_directions", description="...", capability="maps",
            params_model=DirectionsParams,
        )
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable:
        """Decorator to register an async function as a local tool."""

        def decorator(fn: Callable[..., Awaitable[ToolResult]]) -> Callable:
            self.register(
                name,
                fn,
                description=description,
                category=category,
                params_model=params_model,
            )
            return fn

        return decorator

    def register(
        self,
        name: str,
        handler: Callable[..., Awaitable[ToolResult]],
        *,
        description: str = "",
        category: str = "custom",
        params_model: type[ToolParams] | None = None,
    ) -> None:
        """Register an async handler as a local tool."""
        if not inspect.iscoroutinefunction(handler):
            msg = f"Tool handler '{name}' must be an async function"
            raise TypeError(msg)
        self._tools[name] = ToolDef(
            name=name,
            description=description,
            category=category,
            handler=handler,
            params_model=params_model,
        )

    def register_remote(
        self,
        name: str,
        *,
        description: str,
        capability: str,
        params_model: type[ToolParams] | None = None,
        category: str = "client",
    ) -> None:
        """Register a tool the client must execute and return."""
        self._tools[name] = ToolDef(
            name=name,
            description=description,
            category=category,
            params_model=params_model,
            remote=True,
            capability=capability,
        )

    def get(self, name: str) -> ToolDef | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def is_remote(self, name: str) -> bool:
        tool_def = self._tools.get(name)
        return tool_def is not None and tool_def.remote

    @property
    def tool_names(self) -> list[str]:
        """All registered tool names."""
        return list(self._tools.keys())

    def get_schemas(self, capabilities: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Generate Claude tool schemas.

        Local tools are always included. Remote tools are included only
        when their capability is in ``capabilities``.
        """
        allowed = set(capabilities or ())
        return [
            self._tool_schema(t)
            for t in self._tools.values()
            if not t.remote or t.capability in allowed
        ]

    async def execute(self, tool_call: ToolCall) -> ToolResult:
        """Execute a local tool call.

        Never raises: unknown tools, remote tools, invalid parameters and
        handler exceptions all come back as error results carrying the
        call's ``call_id``.
        """
        result = await self._execute(tool_call)
        result.call_id = tool_call.call_id
        result.tool_name = tool_call.tool_name
        return result

    async def _execute(self, tool_call: ToolCall) -> ToolResult:
        name = tool_call.tool_name
        tool_def = self._tools.get(name)
        if tool_def is None:
            return ToolResult(error=f"Unknown tool: {name}")
        if tool_def.remote or tool_def.handler is None:
            return ToolResult(error=f"Tool '{name}' must be executed by the client")

        arguments = tool_call.parameters.to_dict()
        logger.info("Tool '%s' called with %s", name, arguments)
        t0 = time.monotonic()

        try:
            if tool_def.params_model is not None:
                params = tool_def.params_model(**arguments)
                kwargs = params.model_dump()
            else:
                kwargs = dict(arguments)

            result = await tool_def.handler(**kwargs)
            elapsed = time.monotonic() - t0
            if result.success:
                logger.info("Tool '%s' succeeded in %.2fs", name, elapsed)
            else:
                logger.warning("Tool '%s' returned error in %.2fs: %s", name, elapsed, result.error)
            return result
        except Exception as exc:
            elapsed = time.monotonic() - t0
            logger.exception("Tool '%s' failed in %.2fs", name, elapsed)
            return ToolResult(error=f"Tool '{name}' failed: {exc}")

    @staticmethod
    def _tool_schema(tool_def: ToolDef) -> dict[str, Any]:
        """Build a single Claude tool schema dict."""
        if tool_def.params_model is not None:
            input_schema = tool_def.params_model.model_json_schema()
        else:
            input_schema = {"type": "object", "properties": {}}

        return {
            "name": tool_def.name,
            "description": tool_def.description,
            "input_schema": input_schema,
        }
