"""Chat engine: one conversational turn from utterance to reply.

The engine takes a snapshot of the session, runs the model/tool loop on
it and commits the snapshot back only when the turn finishes or suspends
for a client-executed tool. Any failure in between (upstream errors, the
tool-round cap, cancellation) leaves the stored session untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from doris.config import Settings
from doris.errors import (
    SessionBusy,
    StaleToolResult,
    SynthesisUnavailable,
    ToolLoopExceeded,
    ValidationError,
)
from doris.llm.intent import should_offer_tools
from doris.llm.prompt import build_system_prompt, load_persona, select_memories
from doris.sessions.models import Message, PendingRemoteTool
from doris.tools.client_tools import expand_capabilities

if TYPE_CHECKING:
    from doris.llm.gateway import ModelGateway
    from doris.llm.prompt import ClientContext
    from doris.memory.models import MemoryRecord
    from doris.memory.store import MemoryStore
    from doris.sessions.archive import ConversationArchive
    from doris.sessions.models import ConversationSession
    from doris.sessions.store import SessionStore
    from doris.speech.synthesizer import SpeechSynthesizer
    from doris.tools.base import ClientAction, ToolCall, ToolResult
    from doris.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Spoken when the model ends its turn without any text.
EMPTY_REPLY_TEXT = "Sorry, I lost my train of thought. Could you say that again?"


@dataclass
class RespondOptions:
    """Per-request knobs for ``ChatEngine.respond``.

    ``history`` seeds an empty session with turns the client already has;
    only alternating user/assistant text messages are taken.
    ``prior_tool_result`` resumes a turn suspended on a remote tool.
    """

    include_audio: bool = False
    client_context: ClientContext | None = None
    prior_tool_result: ToolResult | None = None
    history: list[Message] = field(default_factory=list)
    timeout: float | None = None


@dataclass
class ChatReply:
    text: str | None = None
    audio: bytes | None = None
    pending_tool_request: ToolCall | None = None
    actions: list[ClientAction] = field(default_factory=list)
    source: str = "model"
    latency_ms: int = 0


def _seed_messages(history: list[Message]) -> list[Message]:
    """Keep a clean user/assistant alternation that ends on an assistant turn."""
    seeded: list[Message] = []
    for message in history:
        if message.role not in ("user", "assistant") or not message.content.strip():
            continue
        expected = "user" if not seeded or seeded[-1].role == "assistant" else "assistant"
        if message.role != expected:
            continue
        seeded.append(Message(role=message.role, content=message.content))
    if seeded and seeded[-1].role == "user":
        seeded.pop()
    return seeded


def _last_user_text(session: ConversationSession) -> str:
    for message in reversed(session.messages):
        if message.role == "user":
            return message.content
    return ""


class ChatEngine:
    """Runs turns against injected services. Holds no per-turn state."""

    def __init__(
        self,
        gateway: ModelGateway,
        tools: ToolRegistry,
        sessions: SessionStore,
        memory: MemoryStore,
        *,
        synthesizer: SpeechSynthesizer | None = None,
        archive: ConversationArchive | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.gateway = gateway
        self.tools = tools
        self.sessions = sessions
        self.memory = memory
        self.synthesizer = synthesizer
        self.archive = archive
        self.settings = settings or Settings()
        self.persona = load_persona(self.settings.assistant_name, self.settings.persona_path)

    async def respond(
        self,
        session_id: str,
        message: str = "",
        options: RespondOptions | None = None,
    ) -> ChatReply:
        """Run one turn.

        Raises:
            SessionBusy: a turn is in flight, or a remote tool result is
                still owed and a new message arrived.
            StaleToolResult: the tool result does not match the pending call.
            ValidationError: neither a message nor a tool result was given.
            ToolLoopExceeded: the model kept calling local tools.
            UpstreamUnavailable, UpstreamTimeout: from the model gateway.
        """
        options = options or RespondOptions()
        t0 = time.monotonic()

        async with self.sessions.turn(session_id):
            work = await self.sessions.snapshot(session_id)

            if options.prior_tool_result is not None:
                self._accept_tool_result(work, options.prior_tool_result)
                if message.strip():
                    logger.warning("Ignoring message sent alongside a tool result")
            else:
                text = message.strip()
                if not text:
                    msg = "A message or a tool result is required"
                    raise ValidationError(msg)
                if work.pending_tool is not None:
                    msg = (
                        f"Session '{session_id}' is waiting for the result of "
                        f"'{work.pending_tool.tool_call.tool_name}'"
                    )
                    raise SessionBusy(msg)
                if not work.messages and options.history:
                    for seeded in _seed_messages(options.history):
                        work.append(seeded)
                work.append(Message.user(text))

            reply = await self._run(work, options)

            if reply.pending_tool_request is None:
                await self._archive(work, reply.text or "")
            await self.sessions.replace(session_id, work)

        if options.include_audio and reply.text:
            reply.audio = await self._synthesize(reply.text)
        reply.latency_ms = int((time.monotonic() - t0) * 1000)
        return reply

    async def clear(self, session_id: str) -> int:
        """Reset a session. Clearing an empty session is a no-op."""
        count = await self.sessions.clear(session_id)
        if self.archive is not None:
            self.archive.end_conversation(session_id)
        return count

    async def memories(self) -> list[MemoryRecord]:
        return await self.memory.all()

    # -- Turn internals --------------------------------------------------------

    def _accept_tool_result(self, work: ConversationSession, result: ToolResult) -> None:
        pending = work.pending_tool
        if pending is None:
            msg = f"No tool call is pending for session '{work.id}'"
            raise StaleToolResult(msg)
        if pending.tool_call.call_id != result.call_id:
            msg = (
                f"Tool result '{result.call_id}' does not match pending call "
                f"'{pending.tool_call.call_id}'"
            )
            raise StaleToolResult(msg)
        result.tool_name = result.tool_name or pending.tool_call.tool_name
        work.append(Message.from_tool_result(result))
        work.pending_tool = None
        logger.info("Resuming session %s with result of '%s'", work.id, result.tool_name)

    async def _run(self, work: ConversationSession, options: RespondOptions) -> ChatReply:
        """The model/tool loop. Mutates only *work*."""
        user_text = _last_user_text(work)
        memories = await self._memories_for_prompt(user_text)
        system = build_system_prompt(
            persona=self.persona,
            timezone=self.settings.timezone,
            memories=memories,
            summary=work.summary,
            client_context=options.client_context,
        )

        # History containing tool blocks cannot be sent without tool definitions.
        offer_tools = should_offer_tools(user_text) or any(
            m.role == "tool" for m in work.messages
        )
        schemas = None
        if offer_tools:
            context = options.client_context
            capabilities = expand_capabilities(context.capabilities if context else [])
            # A resumed turn carries no client context; keep offering the
            # remote tools already used in this history.
            for m in work.messages:
                tool_def = self.tools.get(m.tool_call.tool_name) if m.tool_call else None
                if tool_def is not None and tool_def.remote:
                    capabilities.add(tool_def.capability)
            schemas = self.tools.get_schemas(capabilities)

        actions: list[ClientAction] = []
        rounds = 0
        while True:
            reply = await self.gateway.complete(
                work.messages, system=system, tools=schemas, timeout=options.timeout
            )
            call = reply.tool_call
            if call is None:
                text = reply.content
                if not text.strip():
                    logger.warning(
                        "Model ended the turn with no text (stop_reason=%s)", reply.stop_reason
                    )
                    text = EMPTY_REPLY_TEXT
                work.append(Message.assistant(text))
                return ChatReply(text=text, actions=actions)

            if self.tools.is_remote(call.tool_name):
                work.append(Message.assistant(reply.content, tool_call=call))
                work.pending_tool = PendingRemoteTool(session_id=work.id, tool_call=call)
                logger.info("Delegating '%s' (%s) to the client", call.tool_name, call.call_id)
                return ChatReply(pending_tool_request=call, actions=actions)

            if rounds >= self.settings.max_tool_rounds:
                msg = f"Gave up after {rounds} tool rounds"
                raise ToolLoopExceeded(msg)
            rounds += 1
            logger.info("Round %d: tool call %s", rounds, call.tool_name)

            work.append(Message.assistant(reply.content, tool_call=call))
            result = await self.tools.execute(call)
            actions.extend(result.actions)
            work.append(Message.from_tool_result(result))

    async def _memories_for_prompt(self, user_text: str) -> list[MemoryRecord]:
        try:
            records = await self.memory.all()
        except Exception:
            logger.exception("Memory retrieval failed")
            return []
        return select_memories(records, user_text, self.settings.memory_prompt_limit)

    async def _archive(self, work: ConversationSession, assistant_text: str) -> None:
        if self.archive is None:
            return
        try:
            work.conversation_id = await self.archive.record_exchange(
                work.id, work.conversation_id, _last_user_text(work), assistant_text
            )
        except Exception:
            logger.exception("Failed to archive exchange for session %s", work.id)

    async def _synthesize(self, text: str) -> bytes | None:
        if self.synthesizer is None:
            logger.info("Audio requested but no synthesizer is configured")
            return None
        try:
            return await self.synthesizer.synthesize(text)
        except SynthesisUnavailable as exc:
            logger.warning("Speech synthesis failed, replying without audio: %s", exc.message)
            return None
        except Exception:
            logger.exception("Speech synthesizer raised, replying without audio")
            return None
