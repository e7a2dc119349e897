"""Tests for ConversationArchive."""

from doris.sessions.archive import TITLE_LENGTH, ConversationArchive, make_title


def test_make_title_truncates() -> None:
    assert make_title("  short\n title ") == "short title"
    long = make_title("x" * 80)
    assert long == "x" * TITLE_LENGTH + "..."


async def test_record_exchange_opens_conversation(archive: ConversationArchive) -> None:
    conversation_id = await archive.record_exchange("s", None, "What's up?", "Not much.")
    assert archive.current_conversation_id("s") == conversation_id

    again = await archive.record_exchange("s", conversation_id, "And you?", "Same.")
    assert again == conversation_id

    conversation = await archive.get_conversation(conversation_id)
    assert conversation.title == "What's up?"
    assert conversation.message_count == 4
    assert [m["role"] for m in conversation.messages] == ["user", "assistant", "user", "assistant"]


async def test_get_conversation_missing(archive: ConversationArchive) -> None:
    assert await archive.get_conversation(123) is None


async def test_list_conversations_newest_first(archive: ConversationArchive) -> None:
    first = await archive.record_exchange("s", None, "first", "ok")
    archive.end_conversation("s")
    second = await archive.record_exchange("s", None, "second", "ok")

    conversations = await archive.list_conversations()
    assert [c.id for c in conversations] == [second, first]
    assert conversations[0].to_dict()["message_count"] == 2
    assert "messages" not in conversations[0].to_dict()

    page = await archive.list_conversations(limit=1, offset=1)
    assert [c.id for c in page] == [first]


async def test_search(archive: ConversationArchive) -> None:
    conversation_id = await archive.record_exchange("s", None, "Find coffee", "Joe's is close")
    results = await archive.search("coffee")
    assert len(results) == 1
    assert results[0]["conversation_id"] == conversation_id
    assert results[0]["conversation_title"] == "Find coffee"
    assert results[0]["role"] == "user"
    assert await archive.search("tea") == []


async def test_delete_conversation(archive: ConversationArchive) -> None:
    conversation_id = await archive.record_exchange("s", None, "hi", "hello")
    assert await archive.delete_conversation(conversation_id) is True
    assert await archive.get_conversation(conversation_id) is None
    assert archive.current_conversation_id("s") is None
    assert await archive.search("hello") == []
    assert await archive.delete_conversation(conversation_id) is False


async def test_update_summary(archive: ConversationArchive) -> None:
    conversation_id = await archive.create_conversation("s", "Title")
    await archive.update_summary(conversation_id, "Talked about dinner")
    conversation = await archive.get_conversation(conversation_id)
    assert conversation.summary == "Talked about dinner"
