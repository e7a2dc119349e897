"""Tests for conversation session models and trimming."""

from doris.sessions.models import ConversationSession, Message, PendingRemoteTool, SessionState
from doris.tools.base import ToolCall, ToolParameters, ToolResult


def _tool_call(call_id: str = "t1", name: str = "get_time") -> ToolCall:
    return ToolCall(tool_name=name, parameters=ToolParameters({}), call_id=call_id)


def _exchange(session: ConversationSession, text: str, *, with_tool: bool = False) -> None:
    session.append(Message.user(text))
    if with_tool:
        call = _tool_call(call_id=f"call-{text}")
        session.append(Message.assistant("", tool_call=call))
        session.append(
            Message.from_tool_result(
                ToolResult(data={"ok": True}, call_id=call.call_id, tool_name=call.tool_name)
            )
        )
    session.append(Message.assistant(f"reply to {text}"))


def test_state_follows_pending_tool() -> None:
    session = ConversationSession(id="s")
    assert session.state == SessionState.IDLE
    session.pending_tool = PendingRemoteTool(session_id="s", tool_call=_tool_call())
    assert session.state == SessionState.AWAITING_TOOL_RESULT


def test_from_tool_result() -> None:
    message = Message.from_tool_result(
        ToolResult(error="nope", call_id="t9", tool_name="get_directions")
    )
    assert message.role == "tool"
    assert message.tool_call_id == "t9"
    assert message.is_error
    assert message.content == '{"error": "nope"}'


def test_unresolved_tool_calls() -> None:
    session = ConversationSession(id="s")
    session.append(Message.user("hi"))
    session.append(Message.assistant("", tool_call=_tool_call("a")))
    assert session.unresolved_tool_calls() == ["a"]
    session.append(Message.from_tool_result(ToolResult(data={}, call_id="a")))
    assert session.unresolved_tool_calls() == []


# -- trim ------------------------------------------------------------------------


def test_trim_by_message_count_drops_oldest_exchange() -> None:
    session = ConversationSession(id="s")
    for i in range(3):
        _exchange(session, f"q{i}")

    removed = session.trim(max_messages=4)

    assert removed == 2
    assert [m.content for m in session.messages] == ["q1", "reply to q1", "q2", "reply to q2"]
    assert "user: q0" in session.summary
    assert "assistant: reply to q0" in session.summary


def test_trim_keeps_tool_call_with_its_result() -> None:
    session = ConversationSession(id="s")
    _exchange(session, "q0", with_tool=True)
    _exchange(session, "q1", with_tool=True)

    session.trim(max_messages=5)

    assert session.messages[0].role == "user"
    assert session.messages[0].content == "q1"
    assert session.unresolved_tool_calls() == []
    assert not any(m.role == "tool" and "q0" in (m.tool_call_id or "") for m in session.messages)


def test_trim_never_drops_latest_exchange() -> None:
    session = ConversationSession(id="s")
    _exchange(session, "only", with_tool=True)
    assert session.trim(max_messages=1) == 0
    assert len(session.messages) == 4


def test_trim_skips_pinned_exchanges() -> None:
    session = ConversationSession(id="s")
    _exchange(session, "pinned")
    session.messages[0].pinned = True
    _exchange(session, "q1")
    _exchange(session, "q2")

    session.trim(max_messages=4)

    assert [m.content for m in session.messages if m.role == "user"] == ["pinned", "q2"]


def test_trim_by_characters() -> None:
    session = ConversationSession(id="s")
    _exchange(session, "a" * 500)
    _exchange(session, "short")
    session.trim(max_chars=100)
    assert session.messages[0].content == "short"


def test_summary_bounded() -> None:
    session = ConversationSession(id="s")
    for i in range(20):
        _exchange(session, f"question {i} " + "x" * 300)
    session.trim(max_messages=2, summary_chars=500)
    assert len(session.summary) <= 500
    assert "question 18" in session.summary


def test_trim_within_budget_is_noop() -> None:
    session = ConversationSession(id="s")
    _exchange(session, "q")
    assert session.trim(max_messages=10, max_chars=10_000) == 0
    assert session.summary == ""


def test_clear_resets_everything() -> None:
    session = ConversationSession(id="s", summary="old", conversation_id=3)
    _exchange(session, "q")
    session.pending_tool = PendingRemoteTool(session_id="s", tool_call=_tool_call())

    assert session.clear() == 2
    assert session.messages == []
    assert session.summary == ""
    assert session.pending_tool is None
    assert session.conversation_id is None
    assert session.clear() == 0
