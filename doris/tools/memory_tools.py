"""Memory tools: the model's read/write access to long-term memory.

Bound to an injected ``MemoryStore`` by ``register_memory_tools``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field

from doris.memory.models import MemoryCategory, MemoryRecord, MemorySource
from doris.tools.base import ToolParams, ToolResult

if TYPE_CHECKING:
    from doris.memory.store import MemoryStore
    from doris.tools.registry import ToolRegistry

_SUBJECT_HINT = (
    "Who or what this is about, lowercase. Comma-separated if several, "
    "e.g. 'levi', 'adam,gabby', 'home'"
)


def _summarise(record: MemoryRecord) -> dict:
    data = record.to_public()
    if not data["subject"]:
        del data["subject"]
    return data


# -- Parameter models ----------------------------------------------------------


class MemoryAddParams(ToolParams):
    content: str = Field(description="The memory: a clear, concise statement of the fact")
    category: MemoryCategory = Field(
        description=(
            "personal (about the user or family), preference (likes/dislikes), "
            "fact (general info), task (recurring things to do), "
            "relationship (connections between people)"
        ),
    )
    subject: str | None = Field(default=None, description=_SUBJECT_HINT)


class MemorySearchParams(ToolParams):
    query: str = Field(description="Search term or phrase")


class MemoryGetAboutParams(ToolParams):
    subject: str = Field(description="The person or thing, e.g. 'levi' or 'house'")


class MemoryCorrectParams(ToolParams):
    subject: str = Field(description=_SUBJECT_HINT)
    old_info: str = Field(description="Keywords from the old, wrong information")
    new_content: str = Field(description="The complete corrected memory")
    category: MemoryCategory = Field(description="Category for the corrected memory")


class MemoryDeleteParams(ToolParams):
    memory_id: int = Field(description="ID of the memory to delete")


# -- Registration --------------------------------------------------------------


def register_memory_tools(registry: ToolRegistry, store: MemoryStore) -> None:
    """Register the memory_* tools against *store*."""

    @registry.tool(
        name="memory_add",
        description=(
            "Store a new memory about the user, their family, preferences or "
            "facts. Use when the user says 'remember this' or shares personal "
            "info worth keeping. Always identify the subject."
        ),
        category="memory",
        params_model=MemoryAddParams,
    )
    async def memory_add(
        content: str, category: MemoryCategory, subject: str | None = None
    ) -> ToolResult:
        similar = await store.find_similar(content, subject)
        memory_id = await store.add(
            MemoryRecord(
                content=content,
                category=category,
                subject=subject,
                source=MemorySource.EXPLICIT,
            )
        )
        data: dict = {"stored": True, "id": memory_id, "content": content}
        others = [m for m in similar if m.id != memory_id]
        if others:
            data["similar"] = [_summarise(m) for m in others[:5]]
        return ToolResult(data=data)

    @registry.tool(
        name="memory_search",
        description=(
            "Search memories by keyword or phrase. Use to recall something or "
            "to check for existing info before adding."
        ),
        category="memory",
        params_model=MemorySearchParams,
    )
    async def memory_search(query: str) -> ToolResult:
        memories = await store.search(query)
        return ToolResult(
            data={"memories": [_summarise(m) for m in memories], "count": len(memories)}
        )

    @registry.tool(
        name="memory_get_about",
        description=(
            "Get every memory about a person or thing. Use when asked "
            "'what do you know about X'."
        ),
        category="memory",
        params_model=MemoryGetAboutParams,
    )
    async def memory_get_about(subject: str) -> ToolResult:
        memories = await store.get_about(subject)
        return ToolResult(
            data={
                "subject": subject.strip().lower(),
                "memories": [_summarise(m) for m in memories],
                "count": len(memories),
            }
        )

    @registry.tool(
        name="memory_correct",
        description=(
            "Correct an existing memory in one step. Use when the user says "
            "'actually', 'not anymore' or 'now it's X not Y'. Finds the old "
            "memory about the subject and replaces it; if none matches, the "
            "corrected memory is simply added."
        ),
        category="memory",
        params_model=MemoryCorrectParams,
    )
    async def memory_correct(
        subject: str, old_info: str, new_content: str, category: MemoryCategory
    ) -> ToolResult:
        needle = old_info.strip().lower()
        candidates = await store.get_about(subject)
        old = next((m for m in candidates if needle in m.content.lower()), None)

        if old is None:
            memory_id = await store.add(
                MemoryRecord(content=new_content, category=category, subject=subject)
            )
            return ToolResult(
                data={"corrected": False, "added": True, "id": memory_id, "content": new_content}
            )

        new_id = await store.supersede(old.id, new_content, category, subject)
        if new_id is None:
            return ToolResult(error=f"Memory {old.id} disappeared before it could be corrected.")
        return ToolResult(
            data={
                "corrected": True,
                "old_id": old.id,
                "old_content": old.content,
                "id": new_id,
                "content": new_content,
            }
        )

    @registry.tool(
        name="memory_delete",
        description="Delete a memory by id. Only when the user explicitly asks to forget it.",
        category="memory",
        params_model=MemoryDeleteParams,
    )
    async def memory_delete(memory_id: int) -> ToolResult:
        if not await store.delete(memory_id):
            return ToolResult(error=f"Memory with id {memory_id} not found.")
        return ToolResult(data={"deleted": True, "id": memory_id})

    @registry.tool(
        name="memory_list_subjects",
        description="List every subject (people, places, things) that has memories.",
        category="memory",
    )
    async def memory_list_subjects() -> ToolResult:
        subjects = await store.subjects()
        return ToolResult(data={"subjects": subjects, "count": len(subjects)})
