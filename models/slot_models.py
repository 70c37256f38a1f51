# models/slot_models.py
"""Slot, skeleton and merge records shared by the generation stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SlotCategory(str, Enum):
    DIALOGUE = "DIALOGUE"
    ACTION = "ACTION"
    INTERNAL = "INTERNAL"
    DESCRIPTION = "DESCRIPTION"
    TRANSITION = "TRANSITION"

    @classmethod
    def from_slot_id(cls, slot_id: str) -> SlotCategory | None:
        """Derive the category from the ``CATEGORY_`` prefix of ``slot_id``."""
        for category in cls:
            if slot_id.startswith(f"{category.value}_"):
                return category
        return None


SourceAgent = Literal["structure", "character", "scene"]

SOURCE_PRIORITY: dict[str, int] = {"structure": 3, "character": 2, "scene": 1}


class Slot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    category: SlotCategory

    @property
    def marker(self) -> str:
        return f"[{self.id}]"


class StructureFramework(BaseModel):
    """Skeleton prose plus its derived slot inventory."""

    model_config = ConfigDict(frozen=True)

    text: str
    slots: list[Slot] = Field(default_factory=list)
    duplicate_ids: list[str] = Field(default_factory=list)
    invalid_markers: list[str] = Field(default_factory=list)

    @property
    def slot_ids(self) -> list[str]:
        return [slot.id for slot in self.slots]

    def slots_in(self, categories: set[SlotCategory]) -> list[Slot]:
        return [slot for slot in self.slots if slot.category in categories]

    def count_by_category(self) -> dict[SlotCategory, int]:
        counts = {category: 0 for category in SlotCategory}
        for slot in self.slots:
            counts[slot.category] += 1
        return counts


@dataclass(frozen=True)
class SlotMapping:
    """Normalized merge record; higher ``priority`` wins on duplicate ids."""

    slot_id: str
    content: str
    source_agent: SourceAgent
    priority: int

    @classmethod
    def from_source(cls, slot_id: str, content: str, source: SourceAgent) -> SlotMapping:
        return cls(slot_id, content, source, SOURCE_PRIORITY[source])

    def sort_key(self) -> tuple[int, str]:
        return (-self.priority, self.slot_id)


ConflictType = Literal[
    "tone", "pacing", "content", "power_scaling", "system_logic"
]


class ConflictRecord(BaseModel):
    """Detection result; never mutates content."""

    model_config = ConfigDict(frozen=True)

    type: ConflictType
    description: str
    resolution: str
    slot_ids: list[str] = Field(default_factory=list)


class UnresolvedSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    slot_id: str
    category: SlotCategory | None = None

    @property
    def warning(self) -> str:
        return f"unresolved slot: {self.slot_id}"
