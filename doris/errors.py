"""Error taxonomy shared by the engine, gateway and HTTP layer.

Every error carries a stable ``code`` and an HTTP ``status`` so the server
can turn it into a ``{"error": {"code", "message"}}`` body without knowing
the concrete type.
"""

from __future__ import annotations


class DorisError(Exception):
    """Base class for all errors surfaced to clients."""

    code = "internal_error"
    status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class UpstreamUnavailable(DorisError):
    """The model provider could not be reached or rejected the request."""

    code = "upstream_unavailable"
    status = 502


class UpstreamTimeout(DorisError):
    """The model provider did not answer within the request timeout."""

    code = "upstream_timeout"
    status = 504


class ToolLoopExceeded(DorisError):
    """The model kept requesting tools past the per-turn cap."""

    code = "tool_loop_exceeded"
    status = 500


class StaleToolResult(DorisError):
    """A tool result arrived that matches no pending remote tool call."""

    code = "stale_tool_result"
    status = 409


class SessionBusy(DorisError):
    """Another turn is already in flight for the session."""

    code = "session_busy"
    status = 409


class SynthesisUnavailable(DorisError):
    """The speech provider is unreachable or not configured."""

    code = "synthesis_unavailable"
    status = 503


class ValidationError(DorisError):
    """The request body is malformed."""

    code = "validation_error"
    status = 400


class NotFound(DorisError):
    code = "not_found"
    status = 404
