# processing/slot_parser.py
"""Tolerant extraction of ``slot id -> content`` maps from generated text.

Models drift between several output shapes, so extraction is an ordered
cascade of strategies. The first strategy that yields at least one slot wins.
``extract`` never raises: a broken strategy is logged and skipped, and the
worst case is an empty map.
"""

from __future__ import annotations

import json
import re
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)

_LEADING_JUNK_RE = re.compile(r"^[\s\-*>]+")
_LEADING_JUNK_MULTILINE_RE = re.compile(r"^[\s\-*>]+", re.MULTILINE)
_FALLBACK_TOKEN_RE = re.compile(r"\[([A-Z_]+[A-Z0-9_]*)\]")
_FALLBACK_PREFIX_RE = re.compile(r"^[:;\-\s]+")

MAX_BLOCK_CHARS = 2000
FALLBACK_WINDOW_CHARS = 500
FALLBACK_MIN_CHARS = 10
FALLBACK_MAX_CHARS = 1000
FALLBACK_SHORT_CHARS = 20


def _strip_quotes(content: str, *, single: bool = True) -> str:
    if len(content) >= 2 and content.startswith('"') and content.endswith('"'):
        content = content[1:-1]
    if single and len(content) >= 2 and content.startswith("'") and content.endswith("'"):
        content = content[1:-1]
    return content


class SlotStrategy(Protocol):
    name: str

    def attempt(self, text: str) -> dict[str, str] | None: ...


class BracketColonStrategy:
    """``[ID]: "content"`` / ``[ID]: content`` / ``[ID] : content``."""

    name = "bracket-colon"
    patterns = (
        re.compile(r'\[([^\]]+)\]:\s*"([^"]+)"'),
        re.compile(r"\[([^\]]+)\]:\s*(.+?)(?=\n\[|\n\n|$)", re.DOTALL),
        re.compile(r"\[([^\]]+)\]\s*:\s*(.+?)(?=\n\[|\n\n|$)", re.DOTALL),
    )

    def attempt(self, text: str) -> dict[str, str] | None:
        for pattern in self.patterns:
            slots: dict[str, str] = {}
            for match in pattern.finditer(text):
                slot_id = match.group(1).strip()
                content = _strip_quotes(match.group(2).strip())
                content = _LEADING_JUNK_RE.sub("", content).strip()
                if content:
                    slots[slot_id] = content
            if slots:
                return slots
        return None


class MultilineBlockStrategy:
    """``[ID]`` on its own line followed by a block of content."""

    name = "multiline-block"
    pattern = re.compile(r"\[([^\]]+)\]\s*\n+([\s\S]+?)(?=\n\[|\n\n\[|$)")

    def attempt(self, text: str) -> dict[str, str] | None:
        slots: dict[str, str] = {}
        for match in self.pattern.finditer(text):
            slot_id = match.group(1).strip()
            content = _strip_quotes(match.group(2).strip(), single=False)
            content = _LEADING_JUNK_MULTILINE_RE.sub("", content).strip()
            if 0 < len(content) < MAX_BLOCK_CHARS:
                slots[slot_id] = content
        return slots or None


class EmbeddedJsonStrategy:
    """A JSON object somewhere in the text whose string values are slot contents."""

    name = "embedded-json"
    pattern = re.compile(r"\{[\s\S]*\}")

    def attempt(self, text: str) -> dict[str, str] | None:
        slots: dict[str, str] = {}
        for candidate in self.pattern.findall(text):
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if not isinstance(parsed, dict):
                continue
            for key, value in parsed.items():
                if isinstance(value, str) and value:
                    slots[str(key)] = value
        return slots or None


class MarkdownHeadingStrategy:
    """``## [ID]``, ``**[ID]**`` or ``### ID`` headings over content blocks."""

    name = "markdown-heading"
    patterns = (
        re.compile(r"##\s*\[([^\]]+)\]\s*\n+([\s\S]+?)(?=\n##|$)"),
        re.compile(r"\*\*\[([^\]]+)\]\*\*\s*\n+([\s\S]+?)(?=\n\*\*\[|$)"),
        re.compile(r"###\s*([A-Z_]+)\s*\n+([\s\S]+?)(?=\n###|$)"),
    )

    def attempt(self, text: str) -> dict[str, str] | None:
        for pattern in self.patterns:
            slots: dict[str, str] = {}
            for match in pattern.finditer(text):
                slot_id = match.group(1).strip()
                content = _LEADING_JUNK_MULTILINE_RE.sub("", match.group(2).strip()).strip()
                if 0 < len(content) < MAX_BLOCK_CHARS:
                    slots[slot_id] = content
            if slots:
                return slots
        return None


class NumberedListStrategy:
    """``1. [ID]: content`` entries."""

    name = "numbered-list"
    pattern = re.compile(r"\d+\.\s*\[([^\]]+)\]\s*:?\s*(.+?)(?=\n\d+\.|$)", re.DOTALL)

    def attempt(self, text: str) -> dict[str, str] | None:
        slots: dict[str, str] = {}
        for match in self.pattern.finditer(text):
            slot_id = match.group(1).strip()
            content = _strip_quotes(match.group(2).strip(), single=False)
            content = _LEADING_JUNK_RE.sub("", content).strip()
            if content:
                slots[slot_id] = content
        return slots or None


class FallbackContextStrategy:
    """Last resort: take the prose surrounding each bare ``[ID]`` token."""

    name = "fallback-context"

    def attempt(self, text: str) -> dict[str, str] | None:
        slots: dict[str, str] = {}
        for match in _FALLBACK_TOKEN_RE.finditer(text):
            slot_id = match.group(1)
            if slot_id in slots:
                continue

            after = text[match.end() :]
            next_token = _FALLBACK_TOKEN_RE.search(after)
            end = next_token.start() if next_token else min(FALLBACK_WINDOW_CHARS, len(after))
            content = _FALLBACK_PREFIX_RE.sub("", after[:end].strip()).strip()

            if len(content) < FALLBACK_SHORT_CHARS:
                window_start = max(0, match.start() - FALLBACK_WINDOW_CHARS)
                before = text[window_start : match.start()]
                previous = list(_FALLBACK_TOKEN_RE.finditer(before))
                start = previous[-1].end() if previous else 0
                content = _FALLBACK_PREFIX_RE.sub("", before[start:].strip()).strip()

            if (
                FALLBACK_MIN_CHARS <= len(content) <= FALLBACK_MAX_CHARS
                and "[" not in content
            ):
                slots[slot_id] = content
        return slots or None


DEFAULT_STRATEGIES: tuple[SlotStrategy, ...] = (
    BracketColonStrategy(),
    MultilineBlockStrategy(),
    EmbeddedJsonStrategy(),
    MarkdownHeadingStrategy(),
    NumberedListStrategy(),
    FallbackContextStrategy(),
)


class SlotParser:
    """Run the strategy cascade in priority order."""

    def __init__(self, strategies: tuple[SlotStrategy, ...] = DEFAULT_STRATEGIES) -> None:
        self.strategies = strategies
        self.last_strategy: str | None = None

    def extract(self, text: object) -> dict[str, str]:
        self.last_strategy = None
        if not isinstance(text, str) or not text.strip():
            return {}
        for strategy in self.strategies:
            try:
                slots = strategy.attempt(text)
            except Exception as exc:  # skip strategies that raise
                logger.warning(
                    "Slot strategy '%s' raised: %s", strategy.name, exc, exc_info=True
                )
                continue
            if slots:
                self.last_strategy = strategy.name
                logger.debug(
                    "Extracted %s slots with strategy '%s'", len(slots), strategy.name
                )
                return dict(slots)
        logger.warning(
            "No slots found with any extraction strategy. Preview: %s", text[:200]
        )
        return {}


_default_parser = SlotParser()


def extract(text: object) -> dict[str, str]:
    """Module-level convenience wrapper around the default cascade."""
    return _default_parser.extract(text)
