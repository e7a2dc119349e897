"""Keyword heuristic deciding whether to offer tools to the model.

This only trims request size and latency. A false negative means the
model answers without tools; a false positive costs one tool-schema
payload.
"""

import re

KEYWORDS: dict[str, tuple[str, ...]] = {
    "time": (
        "what time", "what's the time", "current time", "what day", "today's date",
        "what date", "time is it",
    ),
    "calendar": (
        "calendar", "schedule", "events", "meeting", "what's on", "free", "busy",
        "appointment", "reschedule", "cancel", "am i free",
    ),
    "email": (
        "email", "mail", "inbox", "unread", "gmail", "send", "reply", "compose",
        "draft", "archive", "label", "flag",
    ),
    "reminders": (
        "remind", "reminder", "to do", "todo", "to-do", "task", "shopping list",
        "groceries", "don't forget", "need to", "have to", "pick up", "buy",
    ),
    "action": (
        "set", "create", "add", "delete", "remove", "move", "change", "update",
        "complete", "done", "mark",
    ),
    "location": (
        "where am i", "location", "how far", "distance", "get home", "directions",
        "nearby", "near me", "closest", "nearest", "navigate", "map",
    ),
    "memory": (
        "remember", "memorize", "what do you know", "forget", "you know", "actually",
        "not anymore", "now it's", "changed", "correction", "wrong", "instead",
    ),
    "contacts": (
        "contact", "phone number", "look up", "find", "address", "birthday",
    ),
}

# Single-word keywords must match on word boundaries ("set" not "sunset").
_PATTERNS: dict[str, re.Pattern[str]] = {
    group: re.compile(
        "|".join(
            rf"\b{re.escape(k)}\b" if " " not in k else re.escape(k) for k in words
        )
    )
    for group, words in KEYWORDS.items()
}


def matched_groups(message: str) -> list[str]:
    """Keyword groups that match the message."""
    text = message.lower()
    return [group for group, pattern in _PATTERNS.items() if pattern.search(text)]


def should_offer_tools(message: str) -> bool:
    """True if the message looks like it needs tool access."""
    return bool(matched_groups(message))
