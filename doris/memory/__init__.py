"""Long-term memory: records and their SQLite store."""

from doris.memory.models import MemoryCategory, MemoryRecord, MemorySource
from doris.memory.store import MemoryStore

__all__ = ["MemoryCategory", "MemoryRecord", "MemorySource", "MemoryStore"]
