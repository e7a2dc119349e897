"""Model gateway: Anthropic Messages API with retries and streaming.

Translates the session's ordered ``Message`` list into Claude's wire
format, streams the reply, and maps provider failures onto
``UpstreamTimeout`` / ``UpstreamUnavailable``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import anthropic
import httpx

from doris.errors import UpstreamTimeout, UpstreamUnavailable
from doris.tools.base import ToolCall, ToolParameters

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from doris.sessions.models import Message

logger = logging.getLogger(__name__)

# HTTP statuses worth retrying (529 is Anthropic's "overloaded").
RETRYABLE_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504, 529})

# Transport errors raised while reading the stream escape the SDK unwrapped;
# TimeoutError is the per-request deadline expiring.
_UPSTREAM_ERRORS = (anthropic.APIError, httpx.TransportError, TimeoutError)

# Keys Claude accepts in a tool definition.
_TOOL_SCHEMA_KEYS = ("name", "description", "input_schema")


@dataclass
class ModelReply:
    """One model response: final text and/or a single tool call."""

    content: str
    tool_call: ToolCall | None = None
    stop_reason: str | None = None


def to_wire_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Serialize session messages to Claude message dicts, in order.

    Only role and content blocks are emitted; ids, timestamps and flags
    stay internal. Tool messages become user turns carrying a single
    ``tool_result`` block.
    """
    wire: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "user":
            wire.append({"role": "user", "content": message.content})
        elif message.role == "assistant":
            if message.tool_call is None:
                # Claude rejects an assistant turn with empty text.
                if message.content.strip():
                    wire.append({"role": "assistant", "content": message.content})
                continue
            blocks: list[dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            blocks.append({
                "type": "tool_use",
                "id": message.tool_call.call_id,
                "name": message.tool_call.tool_name,
                "input": message.tool_call.parameters.to_dict(),
            })
            wire.append({"role": "assistant", "content": blocks})
        else:
            wire.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content,
                    "is_error": message.is_error,
                }],
            })
    return wire


def to_wire_tools(tools: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Strip tool definitions down to the keys Claude accepts."""
    return [{k: t[k] for k in _TOOL_SCHEMA_KEYS if k in t} for t in tools]


def _parse_content(content: Sequence[Any]) -> tuple[str, ToolCall | None]:
    """Join text blocks and pick the first tool_use block."""
    texts: list[str] = []
    tool_call: ToolCall | None = None
    for block in content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            if tool_call is not None:
                logger.warning("Ignoring extra tool call '%s' in one reply", block.name)
                continue
            tool_call = ToolCall(
                tool_name=block.name,
                parameters=ToolParameters(dict(block.input or {})),
                call_id=block.id,
            )
    return "".join(texts), tool_call


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (anthropic.APIConnectionError, httpx.TransportError, TimeoutError)):
        # APIConnectionError includes APITimeoutError.
        return True
    if isinstance(exc, anthropic.APIStatusError):
        return exc.status_code in RETRYABLE_STATUSES
    return False


class ModelGateway:
    """Adapter between the engine and Claude."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        *,
        api_key: str = "",
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 1024,
        timeout: float = 60.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
    ) -> None:
        # Retries are handled here so that timeouts and rejections can be
        # told apart; the SDK's own retry loop is disabled.
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key, max_retries=0, timeout=timeout
        )
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        system: str | list[dict[str, Any]] | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
        on_text_delta: Callable[[str], Awaitable[None]] | None = None,
        timeout: float | None = None,
    ) -> ModelReply:
        """Send the history (and optional tool schemas) and return the reply.

        Raises:
            UpstreamTimeout: the last attempt timed out.
            UpstreamUnavailable: any other provider failure.
        """
        deadline = timeout or self.timeout
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": to_wire_messages(messages),
            "timeout": deadline,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = to_wire_tools(tools)
            kwargs["tool_choice"] = {"type": "auto", "disable_parallel_tool_use": True}

        for attempt in range(self.max_attempts):
            try:
                # The SDK timeout bounds each read; this bounds the whole reply.
                async with asyncio.timeout(deadline):
                    return await self._stream(kwargs, on_text_delta)
            except _UPSTREAM_ERRORS as exc:
                last_attempt = attempt + 1 >= self.max_attempts
                if not _is_retryable(exc) or last_attempt:
                    raise self._translate(exc, attempt + 1) from exc
                delay = self.backoff_base * (2**attempt)
                logger.warning(
                    "Model call failed (%s), retrying in %.2fs (attempt %d/%d)",
                    type(exc).__name__,
                    delay,
                    attempt + 1,
                    self.max_attempts,
                )
                await asyncio.sleep(delay)

        msg = "Model call failed"
        raise UpstreamUnavailable(msg)

    async def _stream(
        self,
        kwargs: dict[str, Any],
        on_text_delta: Callable[[str], Awaitable[None]] | None,
    ) -> ModelReply:
        async with self._client.messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                if on_text_delta:
                    await on_text_delta(text)
            response = await stream.get_final_message()

        content, tool_call = _parse_content(response.content)
        logger.info(
            "Model reply: stop_reason=%s, tool=%s, %d chars",
            response.stop_reason,
            tool_call.tool_name if tool_call else None,
            len(content),
        )
        return ModelReply(content=content, tool_call=tool_call, stop_reason=response.stop_reason)

    @staticmethod
    def _translate(exc: Exception, attempts: int) -> UpstreamUnavailable | UpstreamTimeout:
        if isinstance(exc, (anthropic.APITimeoutError, httpx.TimeoutException, TimeoutError)):
            logger.error("Model call timed out after %d attempt(s)", attempts)
            return UpstreamTimeout(f"Model request timed out after {attempts} attempt(s)")
        if isinstance(exc, anthropic.APIStatusError):
            logger.error("Model call failed with status %d: %s", exc.status_code, exc.message)
            return UpstreamUnavailable(
                f"Model provider returned {exc.status_code} after {attempts} attempt(s)"
            )
        logger.error("Model call failed after %d attempt(s): %s", attempts, exc)
        return UpstreamUnavailable(f"Model provider unreachable after {attempts} attempt(s)")
