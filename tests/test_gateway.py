"""Tests for ModelGateway: wire format, streaming, retries and error mapping."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any
from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest

from doris.errors import UpstreamTimeout, UpstreamUnavailable
from doris.llm.gateway import ModelGateway, to_wire_messages, to_wire_tools
from doris.sessions.models import Message
from doris.tools.base import ToolCall, ToolParameters, ToolResult

# ---------------------------------------------------------------------------
# Helpers: mock the streaming API
# ---------------------------------------------------------------------------

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


@dataclass
class _FakeBlock:
    type: str
    text: str = ""
    id: str = ""
    name: str = ""
    input: dict[str, Any] | None = None


class _FakeStream:
    """Simulates an anthropic streaming context manager."""

    def __init__(self, text_chunks: list[str], content_blocks: list[_FakeBlock]) -> None:
        self._text_chunks = text_chunks
        self._content_blocks = content_blocks

    @property
    async def text_stream(self):
        for chunk in self._text_chunks:
            yield chunk

    async def get_final_message(self):
        msg = MagicMock()
        msg.content = self._content_blocks
        msg.stop_reason = "end_turn" if not any(
            b.type == "tool_use" for b in self._content_blocks
        ) else "tool_use"
        return msg


class _BrokenStream(_FakeStream):
    """Yields some text, then fails the way a dropped transport does."""

    def __init__(self, error: Exception) -> None:
        super().__init__(["It is "], [])
        self._error = error

    @property
    async def text_stream(self):
        yield "It is "
        raise self._error


class _SlowStream(_FakeStream):
    """Trickles chunks in slower than the request deadline allows."""

    def __init__(self, delay: float) -> None:
        super().__init__(["a", "b", "c"], [_FakeBlock(type="text", text="abc")])
        self._delay = delay

    @property
    async def text_stream(self):
        for chunk in self._text_chunks:
            await asyncio.sleep(self._delay)
            yield chunk


def _text_stream(text: str) -> _FakeStream:
    return _FakeStream([text], [_FakeBlock(type="text", text=text)])


def _make_mock_client(rounds: list[_FakeStream | Exception]):
    """Mock Anthropic client; each round yields a stream or raises an exception."""
    client = MagicMock()
    client.calls = []

    @asynccontextmanager
    async def _stream(**kwargs):
        client.calls.append(kwargs)
        item = rounds[len(client.calls) - 1]
        if isinstance(item, Exception):
            raise item
        yield item

    client.messages.stream = _stream
    return client


def _status_error(status: int) -> anthropic.APIStatusError:
    response = httpx.Response(status, request=_REQUEST)
    return anthropic.APIStatusError(f"status {status}", response=response, body=None)


def _gateway(client, **kwargs) -> ModelGateway:
    kwargs.setdefault("backoff_base", 0)
    return ModelGateway(client, model="test-model", **kwargs)


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def test_to_wire_messages_round_trip_of_tool_exchange() -> None:
    call = ToolCall(tool_name="get_time", parameters=ToolParameters({"tz": "UTC"}), call_id="tu_1")
    messages = [
        Message.user("What time is it?"),
        Message.assistant("Let me check.", tool_call=call),
        Message.from_tool_result(ToolResult(data={"time": "12:00 PM"}, call_id="tu_1")),
        Message.assistant("It is noon."),
    ]

    wire = to_wire_messages(messages)

    assert wire == [
        {"role": "user", "content": "What time is it?"},
        {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Let me check."},
                {"type": "tool_use", "id": "tu_1", "name": "get_time", "input": {"tz": "UTC"}},
            ],
        },
        {
            "role": "user",
            "content": [{
                "type": "tool_result",
                "tool_use_id": "tu_1",
                "content": '{"time": "12:00 PM"}',
                "is_error": False,
            }],
        },
        {"role": "assistant", "content": "It is noon."},
    ]


def test_to_wire_messages_omits_empty_text_block() -> None:
    call = ToolCall(tool_name="get_time", call_id="tu_1")
    [wire] = to_wire_messages([Message.assistant("", tool_call=call)])
    assert [b["type"] for b in wire["content"]] == ["tool_use"]


def test_to_wire_messages_skips_empty_assistant_text() -> None:
    wire = to_wire_messages([
        Message.user("Hello"),
        Message.assistant(""),
        Message.user("Again"),
    ])
    assert [m["role"] for m in wire] == ["user", "user"]
    assert all(m["content"] for m in wire)


def test_internal_fields_not_forwarded() -> None:
    message = Message.user("hi")
    message.pinned = True
    [wire] = to_wire_messages([message])
    assert set(wire) == {"role", "content"}


def test_to_wire_tools_strips_extra_keys() -> None:
    tools = [{"name": "a", "description": "A", "input_schema": {}, "category": "x"}]
    assert to_wire_tools(tools) == [{"name": "a", "description": "A", "input_schema": {}}]


# ---------------------------------------------------------------------------
# complete()
# ---------------------------------------------------------------------------


async def test_complete_returns_text_and_streams_deltas() -> None:
    client = _make_mock_client([_FakeStream(["It is ", "noon."], [
        _FakeBlock(type="text", text="It is noon."),
    ])])
    deltas: list[str] = []

    async def on_delta(text: str) -> None:
        deltas.append(text)

    reply = await _gateway(client).complete(
        [Message.user("time?")], system="sys", on_text_delta=on_delta
    )

    assert reply.content == "It is noon."
    assert reply.tool_call is None
    assert reply.stop_reason == "end_turn"
    assert deltas == ["It is ", "noon."]
    assert client.calls[0]["model"] == "test-model"
    assert client.calls[0]["system"] == "sys"
    assert "tools" not in client.calls[0]


async def test_complete_parses_tool_call_and_requests_single_tool() -> None:
    client = _make_mock_client([_FakeStream([], [
        _FakeBlock(type="tool_use", id="tu_1", name="get_time", input={}),
        _FakeBlock(type="tool_use", id="tu_2", name="memory_search", input={"query": "x"}),
    ])])
    tools = [{"name": "get_time", "description": "Time", "input_schema": {"type": "object"}}]

    reply = await _gateway(client).complete([Message.user("time?")], tools=tools)

    assert reply.tool_call.tool_name == "get_time"
    assert reply.tool_call.call_id == "tu_1"
    assert reply.stop_reason == "tool_use"
    assert client.calls[0]["tool_choice"] == {"type": "auto", "disable_parallel_tool_use": True}


async def test_per_request_timeout_overrides_default() -> None:
    client = _make_mock_client([_text_stream("ok")])
    await _gateway(client, timeout=60.0).complete([Message.user("hi")], timeout=5.0)
    assert client.calls[0]["timeout"] == 5.0


# ---------------------------------------------------------------------------
# Retries and error mapping
# ---------------------------------------------------------------------------


async def test_retries_transient_errors_then_succeeds() -> None:
    client = _make_mock_client([
        anthropic.APIConnectionError(request=_REQUEST),
        _status_error(529),
        _text_stream("finally"),
    ])
    reply = await _gateway(client, max_attempts=3).complete([Message.user("hi")])
    assert reply.content == "finally"
    assert len(client.calls) == 3


async def test_backoff_is_exponential() -> None:
    client = _make_mock_client([_status_error(503), _status_error(503), _text_stream("ok")])
    gateway = ModelGateway(client, backoff_base=0.5, max_attempts=3)
    with patch("doris.llm.gateway.asyncio.sleep") as mock_sleep:
        await gateway.complete([Message.user("hi")])
    assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]


async def test_timeout_maps_to_upstream_timeout() -> None:
    client = _make_mock_client([anthropic.APITimeoutError(request=_REQUEST)] * 2)
    with pytest.raises(UpstreamTimeout):
        await _gateway(client, max_attempts=2).complete([Message.user("hi")])
    assert len(client.calls) == 2


async def test_exhausted_retries_map_to_upstream_unavailable() -> None:
    client = _make_mock_client([_status_error(500)] * 3)
    with pytest.raises(UpstreamUnavailable, match="500"):
        await _gateway(client).complete([Message.user("hi")])


async def test_client_errors_are_not_retried() -> None:
    client = _make_mock_client([_status_error(400), _text_stream("never")])
    with pytest.raises(UpstreamUnavailable, match="400"):
        await _gateway(client).complete([Message.user("hi")])
    assert len(client.calls) == 1


async def test_read_timeout_mid_stream_is_retried() -> None:
    client = _make_mock_client([
        _BrokenStream(httpx.ReadTimeout("read timed out", request=_REQUEST)),
        _text_stream("It is noon."),
    ])
    reply = await _gateway(client).complete([Message.user("time?")])
    assert reply.content == "It is noon."
    assert len(client.calls) == 2


async def test_read_timeout_mid_stream_maps_to_upstream_timeout() -> None:
    error = httpx.ReadTimeout("read timed out", request=_REQUEST)
    client = _make_mock_client([_BrokenStream(error), _BrokenStream(error)])
    with pytest.raises(UpstreamTimeout):
        await _gateway(client, max_attempts=2).complete([Message.user("hi")])
    assert len(client.calls) == 2


async def test_dropped_connection_mid_stream_maps_to_upstream_unavailable() -> None:
    error = httpx.RemoteProtocolError("peer closed connection", request=_REQUEST)
    client = _make_mock_client([_BrokenStream(error)])
    with pytest.raises(UpstreamUnavailable, match="unreachable"):
        await _gateway(client, max_attempts=1).complete([Message.user("hi")])


async def test_slow_stream_hits_request_deadline() -> None:
    client = _make_mock_client([_SlowStream(delay=0.2)])
    with pytest.raises(UpstreamTimeout):
        await _gateway(client, max_attempts=1).complete([Message.user("hi")], timeout=0.05)
