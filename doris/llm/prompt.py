"""System prompt assembly: persona, time, client context, summary, memories."""

from __future__ import annotations

import logging
import re
import zoneinfo
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from doris.memory.models import MemoryCategory

if TYPE_CHECKING:
    from pathlib import Path

    from doris.memory.models import MemoryRecord

logger = logging.getLogger(__name__)

PERSONA = """\
You are {name}, a personal assistant. This is a VOICE interface: your replies
are spoken aloud by a text-to-speech engine, not read.

Never narrate your thought process. Don't say which tools you are using or
why. Just do the thing and answer naturally. If you're told to remember
something, say "Got it" or "Noted" and move on.

How to speak:
- Talk like a person, not a document. Use contractions.
- No lists, bullets or numbered items. Speak in plain sentences.
- Keep it short: one to three sentences for simple answers.
- Write numbers as words when they'd be spoken, and spell out abbreviations.
- Use punctuation for pacing. Commas are short pauses, periods longer ones.

Personality: slightly dry, a little sarcastic but never mean. Direct and
helpful without being a cheerleader. No "Great question!".

Time: never state the current time from memory or from earlier in the
conversation. Use the get_time tool when asked.

Memory: you have persistent memory tools.
- When the user tells you something new about themselves or their family,
  store it with memory_add.
- When they correct something ("actually", "not anymore", "now it's"), use
  memory_correct.
- When asked "what do you know about X", use memory_get_about.
- Subjects are lowercase names: the user, family members, pets, places.
"""

_WORD_RE = re.compile(r"[^\w]+")
# Words too common to be useful for memory matching.
_STOPWORDS = frozenset(
    {"the", "and", "for", "you", "what", "that", "this", "with", "are", "was", "does", "have"}
)


class Location(BaseModel):
    lat: float
    lon: float
    accuracy: float | None = None


class ClientContext(BaseModel):
    """What the client knows about its surroundings."""

    location: Location | None = None
    timestamp: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    device: str = ""


def load_persona(name: str, persona_path: Path | None = None) -> str:
    """The persona text, from *persona_path* if it exists."""
    if persona_path is not None:
        if persona_path.exists():
            return persona_path.read_text(encoding="utf-8")
        logger.warning("Persona file %s not found, using built-in persona", persona_path)
    return PERSONA.format(name=name)


def format_time(timezone: str, now: datetime | None = None) -> str:
    tz = zoneinfo.ZoneInfo(timezone)
    now = now.astimezone(tz) if now else datetime.now(tz)
    return f"Current time: {now.strftime('%A, %B %d, %Y %I:%M %p %Z')} ({timezone})"


def format_client_context(context: ClientContext | None) -> str:
    if context is None:
        return ""
    lines = ["# Client Context\n"]
    if context.device:
        lines.append(f"- Device: {context.device}")
    if context.location is not None:
        loc = context.location
        where = f"- Location: {loc.lat:.5f}, {loc.lon:.5f}"
        if loc.accuracy is not None:
            where += f" (accuracy {loc.accuracy:.0f} m)"
        lines.append(where)
    if context.timestamp:
        lines.append(f"- Client time: {context.timestamp}")
    if context.capabilities:
        lines.append(f"- Capabilities: {', '.join(sorted(context.capabilities))}")
    if len(lines) == 1:
        return ""
    return "\n".join(lines)


def format_memories(records: list[MemoryRecord]) -> str:
    """Memories grouped by subject, then subject-less ones by category."""
    if not records:
        return ""

    by_subject: dict[str, list[MemoryRecord]] = {}
    general: dict[MemoryCategory, list[MemoryRecord]] = {}
    for record in records:
        if record.subjects:
            for subject in record.subjects:
                by_subject.setdefault(subject, []).append(record)
        else:
            general.setdefault(record.category, []).append(record)

    lines = ["# Things You Remember"]
    for subject in sorted(by_subject):
        lines.append(f"\nAbout {subject.title()}:")
        for record in by_subject[subject]:
            marker = " (uncertain)" if record.confidence < 1.0 else ""
            lines.append(f"- {record.content}{marker}")

    if general:
        lines.append("\nGeneral:")
        for category in MemoryCategory:
            for record in general.get(category, []):
                lines.append(f"- [{category.display_name}] {record.content}")

    return "\n".join(lines)


def select_memories(records: list[MemoryRecord], message: str, limit: int) -> list[MemoryRecord]:
    """Pick which memories go into the prompt.

    Everything fits when there are at most *limit* records. Otherwise
    records sharing a word with the message come first (most confident
    first), topped up with the most confident of the rest.
    """
    if len(records) <= limit:
        return records

    words = {
        w for w in _WORD_RE.split(message.lower()) if len(w) > 2 and w not in _STOPWORDS
    }

    def matches(record: MemoryRecord) -> bool:
        text = f"{record.content} {record.subject or ''}".lower()
        return any(w in text for w in words)

    ranked = sorted(records, key=lambda r: r.confidence, reverse=True)
    relevant = [r for r in ranked if matches(r)]
    rest = [r for r in ranked if not matches(r)]
    return (relevant + rest)[:limit]


def build_system_prompt(
    *,
    persona: str,
    timezone: str,
    memories: list[MemoryRecord] | None = None,
    summary: str = "",
    client_context: ClientContext | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Assemble the system prompt as Claude content blocks.

    The persona is static and gets ``cache_control`` so it is cached
    across tool rounds. Time, client context, the summary of trimmed
    history and memories change per call and follow as separate blocks.
    """
    blocks: list[dict] = [
        {"type": "text", "text": persona, "cache_control": {"type": "ephemeral"}},
        {"type": "text", "text": format_time(timezone, now)},
    ]

    context_text = format_client_context(client_context)
    if context_text:
        blocks.append({"type": "text", "text": context_text})

    if summary:
        blocks.append({
            "type": "text",
            "text": f"# Earlier In This Conversation\n\n{summary}",
        })

    memory_text = format_memories(memories or [])
    if memory_text:
        blocks.append({"type": "text", "text": memory_text})

    return blocks
