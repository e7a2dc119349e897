"""Doris server entry point."""

import logging

from aiohttp import web

from doris.config import Settings, settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_app(config: Settings) -> web.Application:
    """Wire every service from *config* and return the aiohttp app."""
    from doris.engine import ChatEngine
    from doris.llm.gateway import ModelGateway
    from doris.memory.store import MemoryStore
    from doris.server.app import create_app
    from doris.sessions.archive import ConversationArchive
    from doris.sessions.store import SessionStore
    from doris.speech.synthesizer import build_synthesizer
    from doris.tools import build_default_registry

    if not config.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is empty; model calls will fail")

    memory = MemoryStore(config.database_path)
    archive = ConversationArchive(config.database_path)
    sessions = SessionStore(
        config.database_path if config.session_persistence else None,
        window_size=config.conversation_window_size,
        max_chars=config.conversation_max_chars,
        summary_chars=config.session_summary_chars,
    )
    gateway = ModelGateway(
        api_key=config.anthropic_api_key,
        model=config.claude_model,
        max_tokens=config.max_tokens,
        timeout=config.model_timeout_seconds,
        max_attempts=config.model_max_attempts,
        backoff_base=config.model_backoff_base,
    )
    synthesizer = build_synthesizer(config)
    engine = ChatEngine(
        gateway,
        build_default_registry(memory, config.timezone),
        sessions,
        memory,
        synthesizer=synthesizer,
        archive=archive,
        settings=config,
    )

    app = create_app(
        engine,
        archive=archive,
        synthesizer=synthesizer,
        default_session_id=config.default_session_id,
    )

    if synthesizer is not None:

        async def _close_synthesizer(_app: web.Application) -> None:
            await synthesizer.close()

        app.on_cleanup.append(_close_synthesizer)
    return app


def main() -> None:
    """Start the HTTP server."""
    logger.info(
        "Starting Doris on %s:%d with model %s...", settings.host, settings.port, settings.claude_model
    )
    app = build_app(settings)
    # A client disconnect cancels the in-flight turn.
    web.run_app(app, host=settings.host, port=settings.port, handler_cancellation=True)


if __name__ == "__main__":
    main()
