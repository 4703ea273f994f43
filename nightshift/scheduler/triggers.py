"""
Good-night / morning phrase detection.

Matching is a case-insensitive substring test against the configured phrase
lists. Structured message content (a list of blocks) is flattened to its
``text`` blocks joined by a single space; other block types are ignored.
"""

from typing import Any, Iterable

from nightshift.config.loader import TriggerConfig


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def extract_text(content: Any) -> str:
    """Flatten a message body to plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if _get(block, "type") != "text":
                continue
            text = _get(block, "text")
            if isinstance(text, str):
                parts.append(text)
        return " ".join(parts)
    return ""


def last_user_text(messages: Iterable[Any] | None) -> str | None:
    """Text of the most recent ``role == "user"`` message, or None if there is none."""
    last = None
    for message in messages or ():
        if _get(message, "role") == "user":
            last = message
    if last is None:
        return None
    return extract_text(_get(last, "content"))


class TriggerDetector:
    def __init__(self, config: TriggerConfig) -> None:
        self._good_night = self._prepare(config.good_night_phrases)
        self._morning = self._prepare(config.morning_phrases)

    @staticmethod
    def _prepare(phrases: list[str]) -> list[str]:
        # Blank phrases would match every message.
        return [p.lower() for p in phrases if p and p.strip()]

    @staticmethod
    def _matches(text: str | None, phrases: list[str]) -> bool:
        if not text:
            return False
        lowered = text.lower()
        return any(phrase in lowered for phrase in phrases)

    def detect_good_night(self, text: str | None) -> bool:
        return self._matches(text, self._good_night)

    def detect_morning(self, text: str | None) -> bool:
        return self._matches(text, self._morning)
