# processing/slot_markers.py
"""Slot marker syntax: ``[CATEGORY_IDENTIFIER]`` embedded in prose."""

from __future__ import annotations

import math
import re

import structlog

from models import Slot, SlotCategory, StructureFramework

logger = structlog.get_logger(__name__)

_CATEGORY_ALTERNATION = "|".join(category.value for category in SlotCategory)

# Any uppercase bracket token, valid or not.
BRACKET_TOKEN_RE = re.compile(r"\[([A-Z][A-Z0-9_]*)\]")
# Only tokens with a known category prefix.
SLOT_MARKER_RE = re.compile(rf"\[((?:{_CATEGORY_ALTERNATION})_[A-Z0-9_]+)\]")

# (divisor for minimum, divisor for upper target) per category
_DENSITY_DIVISORS: dict[SlotCategory, tuple[int, int]] = {
    SlotCategory.DIALOGUE: (500, 400),
    SlotCategory.ACTION: (1000, 600),
    SlotCategory.INTERNAL: (1000, 800),
    SlotCategory.DESCRIPTION: (800, 600),
    SlotCategory.TRANSITION: (1200, 1000),
}


def category_of(slot_id: str) -> SlotCategory | None:
    return SlotCategory.from_slot_id(slot_id)


def find_slot_ids(text: str) -> list[str]:
    """Return every known slot id in ``text`` in order of appearance, repeats included."""
    if not text:
        return []
    return SLOT_MARKER_RE.findall(text)


def has_markers(text: str) -> bool:
    return bool(text) and SLOT_MARKER_RE.search(text) is not None


def build_framework(text: str) -> StructureFramework:
    """Derive the slot inventory for a skeleton.

    The inventory keeps first-occurrence order. Repeated ids are inventoried
    once and reported in ``duplicate_ids``; bracket tokens without a known
    category prefix are reported in ``invalid_markers``.
    """
    slots: list[Slot] = []
    seen: set[str] = set()
    duplicates: list[str] = []
    invalid: list[str] = []
    for token in BRACKET_TOKEN_RE.findall(text or ""):
        category = category_of(token)
        if category is None or token == f"{category.value}_":
            if token not in invalid:
                invalid.append(token)
            continue
        if token in seen:
            if token not in duplicates:
                duplicates.append(token)
            continue
        seen.add(token)
        slots.append(Slot(id=token, category=category))
    return StructureFramework(
        text=text or "", slots=slots, duplicate_ids=duplicates, invalid_markers=invalid
    )


def validate_framework(framework: StructureFramework) -> list[str]:
    """Human-readable marker-uniqueness and category violations."""
    problems = [f"duplicate slot marker: {slot_id}" for slot_id in framework.duplicate_ids]
    problems.extend(
        f"unknown marker category: [{token}]" for token in framework.invalid_markers
    )
    return problems


def density_targets(target_length: int) -> dict[SlotCategory, tuple[int, int]]:
    """Minimum and upper-target marker counts per category for ``target_length`` chars."""
    length = max(int(target_length), 1)
    return {
        category: (math.ceil(length / low), math.ceil(length / high))
        for category, (low, high) in _DENSITY_DIVISORS.items()
    }


def density_shortfalls(framework: StructureFramework, target_length: int) -> list[str]:
    counts = framework.count_by_category()
    shortfalls = []
    for category, (minimum, _upper) in density_targets(target_length).items():
        if counts[category] < minimum:
            shortfalls.append(
                f"{category.value}: {counts[category]} markers, expected at least {minimum}"
            )
    return shortfalls


# Capturing variant for re.split: odd-indexed pieces are whole markers.
SLOT_MARKER_SPLIT_RE = re.compile(rf"(\[(?:{_CATEGORY_ALTERNATION})_[A-Z0-9_]+\])")


def map_outside_markers(text: str, transform) -> str:
    """Apply ``transform`` to the prose between markers, never to a marker itself."""
    pieces = SLOT_MARKER_SPLIT_RE.split(text)
    return "".join(
        piece if index % 2 else transform(piece) for index, piece in enumerate(pieces)
    )


def partition_owned(
    slot_map: dict[str, str], owned: set[SlotCategory]
) -> tuple[dict[str, str], dict[str, str]]:
    """Split ``slot_map`` into ids of the ``owned`` categories and everything else."""
    kept: dict[str, str] = {}
    foreign: dict[str, str] = {}
    for slot_id, content in slot_map.items():
        if category_of(slot_id) in owned:
            kept[slot_id] = content
        else:
            foreign[slot_id] = content
    return kept, foreign
