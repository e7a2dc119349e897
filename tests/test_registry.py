"""Tests for the tool registry."""

import pytest
from pydantic import Field

from doris.tools.base import ToolCall, ToolParameters, ToolParams, ToolResult
from doris.tools.registry import ToolRegistry

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def reg() -> ToolRegistry:
    """Fresh registry for each test."""
    return ToolRegistry()


def _call(name: str, /, call_id: str = "call_1", **params) -> ToolCall:
    return ToolCall(tool_name=name, parameters=ToolParameters(params), call_id=call_id)


class EchoParams(ToolParams):
    text: str = Field(description="Text to echo")
    times: int = Field(default=1, description="Repeat count")


# -- Registration ------------------------------------------------------------


def test_register_via_decorator(reg: ToolRegistry) -> None:
    @reg.tool(name="ping", description="Ping", category="test")
    async def ping() -> ToolResult:
        return ToolResult(data={"pong": True})

    assert "ping" in reg.tool_names
    assert reg.get("ping") is not None
    assert reg.get("ping").category == "test"
    assert not reg.is_remote("ping")


def test_decorator_rejects_sync_function(reg: ToolRegistry) -> None:
    with pytest.raises(TypeError, match="must be an async function"):

        @reg.tool(name="bad", description="Bad", category="test")
        def bad() -> ToolResult:
            return ToolResult()


def test_register_remote(reg: ToolRegistry) -> None:
    reg.register_remote("get_directions", description="Directions", capability="maps")
    assert reg.is_remote("get_directions")
    assert reg.get("get_directions").handler is None
    assert not reg.is_remote("unknown")


# -- Schemas -----------------------------------------------------------------


def test_schema_from_params_model(reg: ToolRegistry) -> None:
    @reg.tool(name="echo", description="Echo", category="test", params_model=EchoParams)
    async def echo(text: str, times: int = 1) -> ToolResult:
        return ToolResult(data=text * times)

    [schema] = reg.get_schemas()
    assert schema["name"] == "echo"
    assert schema["description"] == "Echo"
    assert "text" in schema["input_schema"]["properties"]
    assert schema["input_schema"]["required"] == ["text"]


def test_schema_without_params(reg: ToolRegistry) -> None:
    @reg.tool(name="noop", description="Nothing", category="test")
    async def noop() -> ToolResult:
        return ToolResult()

    [schema] = reg.get_schemas()
    assert schema["input_schema"] == {"type": "object", "properties": {}}


def test_remote_tools_gated_by_capability(reg: ToolRegistry) -> None:
    @reg.tool(name="local", description="Local", category="test")
    async def local() -> ToolResult:
        return ToolResult()

    reg.register_remote("nearby", description="Nearby", capability="maps")
    reg.register_remote("where", description="Where", capability="location")

    assert [s["name"] for s in reg.get_schemas()] == ["local"]
    assert [s["name"] for s in reg.get_schemas(["maps"])] == ["local", "nearby"]
    assert [s["name"] for s in reg.get_schemas({"maps", "location"})] == [
        "local",
        "nearby",
        "where",
    ]


# -- Execution ---------------------------------------------------------------


async def test_execute_validates_and_calls(reg: ToolRegistry) -> None:
    @reg.tool(name="echo", description="Echo", category="test", params_model=EchoParams)
    async def echo(text: str, times: int = 1) -> ToolResult:
        return ToolResult(data={"echo": text * times})

    result = await reg.execute(_call("echo", call_id="c9", text="hi", times=2))
    assert result.success
    assert result.data == {"echo": "hihi"}
    assert result.call_id == "c9"
    assert result.tool_name == "echo"


async def test_execute_unknown_tool(reg: ToolRegistry) -> None:
    result = await reg.execute(_call("nope", call_id="c1"))
    assert not result.success
    assert "Unknown tool" in result.error
    assert result.call_id == "c1"


async def test_execute_remote_tool_is_error(reg: ToolRegistry) -> None:
    reg.register_remote("nearby", description="Nearby", capability="maps")
    result = await reg.execute(_call("nearby"))
    assert not result.success
    assert "executed by the client" in result.error


async def test_execute_invalid_params(reg: ToolRegistry) -> None:
    @reg.tool(name="echo", description="Echo", category="test", params_model=EchoParams)
    async def echo(text: str, times: int = 1) -> ToolResult:
        return ToolResult(data=text)

    result = await reg.execute(_call("echo", times=2))
    assert not result.success
    assert "echo" in result.error


async def test_execute_catches_handler_exception(reg: ToolRegistry) -> None:
    @reg.tool(name="explode", description="Boom", category="test")
    async def explode() -> ToolResult:
        raise RuntimeError("kaboom")

    result = await reg.execute(_call("explode", call_id="c2"))
    assert not result.success
    assert "kaboom" in result.error
    assert result.call_id == "c2"


async def test_execute_without_params_model_passes_raw_arguments(reg: ToolRegistry) -> None:
    async def greet(name: str) -> ToolResult:
        return ToolResult(data=f"hi {name}")

    reg.register("greet", greet, description="Greet")
    result = await reg.execute(_call("greet", name="gabby"))
    assert result.data == "hi gabby"
