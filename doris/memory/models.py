"""Data models for long-term memory."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class MemoryCategory(StrEnum):
    PERSONAL = "personal"
    PREFERENCE = "preference"
    FACT = "fact"
    TASK = "task"
    RELATIONSHIP = "relationship"

    @property
    def display_name(self) -> str:
        return {
            MemoryCategory.PERSONAL: "Personal Info",
            MemoryCategory.PREFERENCE: "Preferences",
            MemoryCategory.FACT: "Facts",
            MemoryCategory.TASK: "Tasks",
            MemoryCategory.RELATIONSHIP: "Relationships",
        }[self]


class MemorySource(StrEnum):
    EXPLICIT = "explicit"  # user said "remember this"
    INFERRED = "inferred"  # picked up from conversation


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


def _now() -> str:
    return datetime.now(UTC).isoformat()


class MemoryRecord(BaseModel):
    """A remembered fact.

    ``id`` is 0 until the record has been stored. ``subject`` may hold
    several comma-separated subjects (e.g. ``"adam,gabby"``).
    """

    id: int = 0
    content: str
    category: MemoryCategory = MemoryCategory.FACT
    subject: str | None = None
    confidence: float = 1.0
    source: MemorySource = MemorySource.EXPLICIT
    supersedes: int | None = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)
    last_confirmed: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_confidence(value)

    @field_validator("subject", mode="before")
    @classmethod
    def _normalize_subject(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parts = [p.strip().lower() for p in str(value).split(",") if p.strip()]
        return ",".join(parts) or None

    @property
    def subjects(self) -> list[str]:
        if not self.subject:
            return []
        return self.subject.split(",")

    def to_public(self) -> dict:
        """Shape exposed by the memory endpoint."""
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category.value,
            "subject": self.subject or "",
            "confidence": self.confidence,
        }
