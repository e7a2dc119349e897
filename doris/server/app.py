"""aiohttp application exposing the chat engine over HTTP.

Every ``DorisError`` becomes ``{"error": {"code", "message"}}`` with the
error's status; anything else is logged and answered with a 500.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import pydantic
from aiohttp import web

from doris.engine import RespondOptions
from doris.errors import DorisError, NotFound, SynthesisUnavailable, ValidationError
from doris.server.schemas import ChatRequest, ClearRequest, TTSRequest, chat_response

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from doris.engine import ChatEngine
    from doris.sessions.archive import ConversationArchive
    from doris.speech.synthesizer import SpeechSynthesizer

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"

ENGINE_KEY = web.AppKey("engine", object)
ARCHIVE_KEY = web.AppKey("archive", object)
SYNTHESIZER_KEY = web.AppKey("synthesizer", object)
DEFAULT_SESSION_KEY = web.AppKey("default_session_id", str)

_Model = TypeVar("_Model", bound=pydantic.BaseModel)


@web.middleware
async def error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    try:
        return await handler(request)
    except DorisError as exc:
        logger.warning("%s %s -> %s: %s", request.method, request.path, exc.code, exc.message)
        return web.json_response({"error": exc.to_dict()}, status=exc.status)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(
            {"error": {"code": "internal_error", "message": "Internal server error"}},
            status=500,
        )


# -- Helpers -------------------------------------------------------------------


async def _parse(request: web.Request, model: type[_Model], *, optional: bool = False) -> _Model:
    """Validate the JSON body against *model*, raising ValidationError."""
    raw = await request.text()
    if not raw.strip():
        if optional:
            return model()
        msg = "Request body is required"
        raise ValidationError(msg)
    try:
        payload: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON: {exc.msg}"
        raise ValidationError(msg) from exc
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first["loc"]) or "body"
        msg = f"{where}: {first['msg']}"
        raise ValidationError(msg) from exc


def _session_id(request: web.Request, body_value: str | None = None) -> str:
    return (
        request.headers.get(SESSION_HEADER)
        or body_value
        or request.query.get("session_id")
        or request.app[DEFAULT_SESSION_KEY]
    )


def _int_query(request: web.Request, name: str, default: int) -> int:
    value = request.query.get(name)
    if value is None:
        return default
    try:
        number = int(value)
    except ValueError as exc:
        msg = f"Query parameter '{name}' must be an integer"
        raise ValidationError(msg) from exc
    if number < 0:
        msg = f"Query parameter '{name}' must not be negative"
        raise ValidationError(msg)
    return number


def _archive(request: web.Request) -> ConversationArchive:
    archive = request.app[ARCHIVE_KEY]
    if archive is None:
        msg = "Conversation archive is disabled"
        raise NotFound(msg)
    return archive


# -- Handlers ------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health - basic liveness check."""
    return web.json_response({"status": "ok"})


async def _chat(request: web.Request) -> web.Response:
    """POST /chat - one conversational turn."""
    engine: ChatEngine = request.app[ENGINE_KEY]
    body = await _parse(request, ChatRequest)
    session_id = _session_id(request, body.session_id)

    options = RespondOptions(
        include_audio=body.include_audio,
        client_context=body.client_context,
        prior_tool_result=body.tool_result.to_result() if body.tool_result else None,
        history=body.history_messages(),
    )
    reply = await engine.respond(session_id, body.message, options)
    logger.info(
        "Chat turn for session %s done in %d ms (%s)",
        session_id,
        reply.latency_ms,
        "tool request" if reply.pending_tool_request else "reply",
    )
    return web.json_response(chat_response(reply))


async def _memories(request: web.Request) -> web.Response:
    engine: ChatEngine = request.app[ENGINE_KEY]
    records = await engine.memories()
    return web.json_response({"memories": [r.to_public() for r in records]})


async def _clear(request: web.Request) -> web.Response:
    engine: ChatEngine = request.app[ENGINE_KEY]
    body = await _parse(request, ClearRequest, optional=True)
    await engine.clear(_session_id(request, body.session_id))
    return web.json_response({"status": "cleared"})


async def _tts(request: web.Request) -> web.Response:
    synthesizer: SpeechSynthesizer | None = request.app[SYNTHESIZER_KEY]
    body = await _parse(request, TTSRequest)
    if synthesizer is None:
        msg = "No speech synthesizer is configured"
        raise SynthesisUnavailable(msg)
    audio = await synthesizer.synthesize(body.text)
    return web.Response(body=audio, content_type="audio/mpeg")


async def _list_conversations(request: web.Request) -> web.Response:
    archive = _archive(request)
    conversations = await archive.list_conversations(
        limit=_int_query(request, "limit", 50),
        offset=_int_query(request, "offset", 0),
    )
    return web.json_response({"conversations": [c.to_dict() for c in conversations]})


async def _search_conversations(request: web.Request) -> web.Response:
    archive = _archive(request)
    query = request.query.get("q", "").strip()
    if not query:
        msg = "Missing search query 'q'"
        raise ValidationError(msg)
    results = await archive.search(query, limit=_int_query(request, "limit", 50))
    return web.json_response({"results": results})


async def _current_conversation(request: web.Request) -> web.Response:
    archive = _archive(request)
    engine: ChatEngine = request.app[ENGINE_KEY]
    session_id = _session_id(request)
    conversation_id = archive.current_conversation_id(session_id)
    if conversation_id is None:
        session = await engine.sessions.get(session_id)
        conversation_id = session.conversation_id
    return web.json_response({"conversation_id": conversation_id})


async def _get_conversation(request: web.Request) -> web.Response:
    archive = _archive(request)
    conversation_id = int(request.match_info["id"])
    conversation = await archive.get_conversation(conversation_id)
    if conversation is None:
        msg = f"Conversation {conversation_id} not found"
        raise NotFound(msg)
    return web.json_response(conversation.to_dict(include_messages=True))


async def _delete_conversation(request: web.Request) -> web.Response:
    archive = _archive(request)
    conversation_id = int(request.match_info["id"])
    if not await archive.delete_conversation(conversation_id):
        msg = f"Conversation {conversation_id} not found"
        raise NotFound(msg)
    return web.json_response({"status": "deleted"})


def create_app(
    engine: ChatEngine,
    *,
    archive: ConversationArchive | None = None,
    synthesizer: SpeechSynthesizer | None = None,
    default_session_id: str = "default",
) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[error_middleware])
    app[ENGINE_KEY] = engine
    app[ARCHIVE_KEY] = archive
    app[SYNTHESIZER_KEY] = synthesizer
    app[DEFAULT_SESSION_KEY] = default_session_id

    app.router.add_get("/health", _health)
    app.router.add_get("/status", _health)
    app.router.add_post("/chat", _chat)
    app.router.add_post("/chat/text", _chat)
    app.router.add_get("/memory", _memories)
    app.router.add_get("/memories", _memories)
    app.router.add_post("/clear", _clear)
    app.router.add_post("/tts", _tts)
    app.router.add_get("/conversations", _list_conversations)
    app.router.add_get("/conversations/search", _search_conversations)
    app.router.add_get("/conversations/current", _current_conversation)
    app.router.add_get(r"/conversations/{id:\d+}", _get_conversation)
    app.router.add_delete(r"/conversations/{id:\d+}", _delete_conversation)
    return app
