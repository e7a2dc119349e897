"""Shared test fixtures."""

from pathlib import Path

import pytest

from doris.memory.store import MemoryStore
from doris.sessions.archive import ConversationArchive
from doris.sessions.store import SessionStore


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "doris.db"


@pytest.fixture
def memory_store(db_path: Path) -> MemoryStore:
    """A MemoryStore backed by a temp database."""
    return MemoryStore(db_path)


@pytest.fixture
def session_store() -> SessionStore:
    """An in-memory SessionStore (no snapshots)."""
    return SessionStore(window_size=40)


@pytest.fixture
def archive(db_path: Path) -> ConversationArchive:
    return ConversationArchive(db_path)
