# models/coherence_models.py
"""Records exchanged with the cross-chapter coherence store."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class DialogueRequirement(BaseModel):
    slot_id: str
    characters: list[str]
    purpose: str
    emotional_tone: str = "neutral"
    subtext: str = ""


class CharacterState(BaseModel):
    name: str
    description: str = ""
    last_seen_chapter: int | None = None
    recent_development: str = ""


class CoherenceConstraints(BaseModel):
    established_facts: list[str] = Field(default_factory=list)
    active_plot_threads: list[str] = Field(default_factory=list)
    forbidden_repetitions: list[str] = Field(default_factory=list)
    world_rules: list[str] = Field(default_factory=list)


class StructureContext(BaseModel):
    outline_excerpt: str = ""
    chapter_role: str = ""
    tempo: str = "medium"
    tension_target: int = 5
    previous_chapter_tail: str = ""
    plot_threads: list[str] = Field(default_factory=list)


class CharacterContext(BaseModel):
    characters: list[CharacterState] = Field(default_factory=list)
    dialogue_requirements: list[DialogueRequirement] = Field(default_factory=list)


class SceneContext(BaseModel):
    location: str = ""
    atmosphere: str = ""
    scene_type: str = "setup"


class ChapterContext(BaseModel):
    chapter_number: int
    structure: StructureContext = Field(default_factory=StructureContext)
    character: CharacterContext = Field(default_factory=CharacterContext)
    scene: SceneContext = Field(default_factory=SceneContext)
    constraints: CoherenceConstraints = Field(default_factory=CoherenceConstraints)


class RepetitionIssue(BaseModel):
    phrase: str
    count: int
    category: Literal[
        "metaphors", "sensoryDescriptions", "emotionalPhrases", "phrases"
    ] = "phrases"
    severity: Literal["low", "medium", "high"] = "medium"


class RepetitionReport(BaseModel):
    issues: list[RepetitionIssue] = Field(default_factory=list)
    severity: Literal["none", "low", "medium", "high"] = "none"
    total_repetitions: int = 0


BalanceIssueType = Literal[
    "description-overload", "internal-overload", "consecutive-description"
]


class BalanceIssue(BaseModel):
    type: BalanceIssueType
    detail: str = ""


class BalanceReport(BaseModel):
    issues: list[BalanceIssue] = Field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return not self.issues


class LimitCheck(BaseModel):
    allowed: bool = True
    reason: str = ""
    suggested_action: Literal["condense-internal", "add-micro-action"] | None = None


class ToneGuidance(BaseModel):
    tone: str = "neutral"
    description_length: Literal["short", "medium", "long"] = "medium"
    sentence_style: str = "变化的句子长度"
