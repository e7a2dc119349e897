"""HTTP boundary."""

from doris.server.app import create_app

__all__ = ["create_app"]
