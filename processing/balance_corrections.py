# processing/balance_corrections.py
"""Small local rewrites triggered by balance and content-limit findings.

All rewrites skip slot markers and are bounded: each correction type runs at
most once per call to ``apply_balance_corrections``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from models import BalanceIssue, SlotCategory
from processing.slot_markers import category_of, map_outside_markers

logger = structlog.get_logger(__name__)

MICRO_ACTIONS = (
    "她调整了一下坐姿。",
    "他深吸了一口气。",
    "目光低垂。",
    "他握紧了拳头。",
    "她移开了视线。",
)
ACTION_BEATS = (
    "她凑近了一些。",
    "他环视四周。",
    "时间仿佛凝固了。",
    "气氛有些微妙的变化。",
)

_SENSORY_NOUNS = "气味|声音|味道|感觉|气息|响声|滋味|触感"
# Two or more stacked "X的" modifiers in front of a sensory noun.
_STACKED_MODIFIERS_RE = re.compile(
    rf"((?:[^\s，,。！？；、“”\"\[\]]{{1,4}}的){{2,}})({_SENSORY_NOUNS})"
)
_SINGLE_MODIFIER_RE = re.compile(r"[^\s，,。！？；、“”\"\[\]]{1,4}的")
# A sentence end followed by two long descriptive sentences.
_CONSECUTIVE_LONG_RE = re.compile(r"([。])(\s*[^。\[\]]{100,}[。])(\s*[^。\[\]]{100,}[。])")
_SENTENCE_END_RE = re.compile(r"(?<=[。！？])")
_INTROSPECTION_CUES = ("想", "觉得", "心里", "心中", "思索", "意识到", "明白")

MAX_INSERTIONS = 3
INTERNAL_PARAGRAPH_CHARS = 400


def reduce_description_density(text: str) -> str:
    """Collapse stacked adjective chains before sensory nouns to a single modifier."""

    def _collapse(match: re.Match[str]) -> str:
        modifiers = _SINGLE_MODIFIER_RE.findall(match.group(1))
        return f"{modifiers[-1]}{match.group(2)}" if modifiers else match.group(0)

    return map_outside_markers(text, lambda piece: _STACKED_MODIFIERS_RE.sub(_collapse, piece))


def insert_action_beats(text: str) -> str:
    """Break runs of long descriptive sentences with short action beats."""
    inserted = 0

    def _insert(match: re.Match[str]) -> str:
        nonlocal inserted
        if inserted >= MAX_INSERTIONS:
            return match.group(0)
        beat = ACTION_BEATS[inserted % len(ACTION_BEATS)]
        inserted += 1
        return f"{match.group(1)}{match.group(2)}{beat}{match.group(3)}"

    return map_outside_markers(text, lambda piece: _CONSECUTIVE_LONG_RE.sub(_insert, piece))


def break_up_internal_monologue(text: str) -> str:
    """Insert a micro-action halfway through long introspective paragraphs."""
    inserted = 0

    def _split_paragraph(paragraph: str) -> str:
        nonlocal inserted
        if (
            inserted >= MAX_INSERTIONS
            or len(paragraph) <= INTERNAL_PARAGRAPH_CHARS
            or not any(cue in paragraph for cue in _INTROSPECTION_CUES)
        ):
            return paragraph
        sentences = [s for s in _SENTENCE_END_RE.split(paragraph) if s]
        if len(sentences) < 2:
            return paragraph
        middle = len(sentences) // 2
        action = MICRO_ACTIONS[inserted % len(MICRO_ACTIONS)]
        inserted += 1
        return "".join(sentences[:middle]) + action + "".join(sentences[middle:])

    def _transform(piece: str) -> str:
        return "\n".join(_split_paragraph(p) for p in piece.split("\n"))

    return map_outside_markers(text, _transform)


def condense_internal_slots(internal: dict[str, str], limit: int) -> dict[str, str]:
    """Trim internal monologue slots to whole sentences within ``limit`` chars."""
    condensed = {}
    for slot_id, content in internal.items():
        if len(content) <= limit:
            condensed[slot_id] = content
            continue
        kept = ""
        for sentence in (s for s in _SENTENCE_END_RE.split(content) if s):
            if len(kept) + len(sentence) > limit:
                break
            kept += sentence
        condensed[slot_id] = kept or content[:limit] + "……"
    return condensed


def add_micro_actions(internal: dict[str, str], slot_order: Sequence[str]) -> dict[str, str]:
    """Prefix a micro-action to an internal slot that directly follows another one."""
    updated = dict(internal)
    inserted = 0
    for previous, current in zip(slot_order, slot_order[1:]):
        if (
            category_of(previous) == SlotCategory.INTERNAL
            and category_of(current) == SlotCategory.INTERNAL
            and current in updated
        ):
            action = MICRO_ACTIONS[inserted % len(MICRO_ACTIONS)]
            updated[current] = f"{action}{updated[current]}"
            inserted += 1
    return updated


_CORRECTIONS = {
    "description-overload": ("reduce-description-density", reduce_description_density),
    "internal-overload": ("break-up-internal-monologue", break_up_internal_monologue),
    "consecutive-description": ("insert-action-beats", insert_action_beats),
}


def apply_balance_corrections(
    text: str, issues: Sequence[BalanceIssue]
) -> tuple[str, list[str]]:
    """Apply each flagged correction once; return the new text and applied names."""
    applied: list[str] = []
    for issue in issues:
        name, correction = _CORRECTIONS[issue.type]
        if name in applied:
            continue
        corrected = correction(text)
        applied.append(name)
        if corrected != text:
            logger.info("Balance correction '%s' changed the chapter text.", name)
        text = corrected
    return text, applied
