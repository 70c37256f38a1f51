# models/plan_models.py
"""Chapter plan input models.

Plans usually arrive as JSON written by an upstream planner, so every model
accepts both ``snake_case`` field names and their ``camelCase`` aliases.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlanBaseModel(BaseModel):
    """Immutable plan fragment accepting camelCase input."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class DetailedScene(PlanBaseModel):
    scene_id: str = ""
    location: str = ""
    participants: list[str] = Field(default_factory=list)
    objective: str = ""
    conflict: str = ""
    outcome: str = ""
    duration: str = ""
    mood: str = ""
    key_moments: list[str] = Field(default_factory=list)


class ChapterEvent(PlanBaseModel):
    event_id: str = ""
    event_type: Literal[
        "dialogue", "action", "revelation", "conflict", "internal", "transition"
    ] = "action"
    description: str = ""
    participants: list[str] = Field(default_factory=list)
    consequences: list[str] = Field(default_factory=list)
    emotional_impact: int = Field(5, ge=1, le=10)
    plot_significance: str = ""
    scene_id: str | None = None


class DialogueBeat(PlanBaseModel):
    beat_id: str = ""
    purpose: str = ""
    participants: list[str] = Field(default_factory=list)
    subtext: str = ""
    revelations: list[str] = Field(default_factory=list)
    tensions: list[str] = Field(default_factory=list)
    emotional_shifts: list[str] = Field(default_factory=list)
    scene_id: str | None = None


class CharacterArc(PlanBaseModel):
    character: str
    start_state: str = ""
    key_moments: list[str] = Field(default_factory=list)
    end_state: str = ""
    internal_conflicts: list[str] = Field(default_factory=list)
    growth: str = ""
    relationships: str = ""


class ChapterPlan(PlanBaseModel):
    """Everything the pipeline knows about the chapter it must write."""

    title: str
    summary: str = ""
    scene_breakdown: str = ""
    character_development_focus: str = ""
    plot_advancement: str = ""
    timeline_indicators: str = ""
    emotional_tone_tension: str = ""
    connection_to_next_chapter: str = ""
    conflict_type: str = ""
    tension_level: int = Field(5, ge=1, le=10)
    rhythm_pacing: str = ""
    moral_dilemma: str = ""
    character_complexity: str = ""
    consequences_of_choices: str = ""
    primary_location: str = ""
    target_word_count: int | None = Field(None, gt=0)
    opening_hook: str = ""
    climax_moment: str = ""
    chapter_ending: str = ""
    detailed_scenes: list[DetailedScene] = Field(default_factory=list)
    chapter_events: list[ChapterEvent] = Field(default_factory=list)
    dialogue_beats: list[DialogueBeat] = Field(default_factory=list)
    character_arcs: list[CharacterArc] = Field(default_factory=list)

    def formatted(self) -> str:
        """Plain-text rendering stored in the chapter record."""
        return "\n".join(
            [
                f"标题：{self.title}",
                f"概要：{self.summary}",
                f"场景拆解：{self.scene_breakdown}",
                f"角色发展：{self.character_development_focus}",
                f"冲突类型：{self.conflict_type or '未指定'}",
                f"紧张度：{self.tension_level}/10",
                f"道德困境：{self.moral_dilemma or '未指定'}",
                f"角色复杂性：{self.character_complexity or '未指定'}",
                f"后果：{self.consequences_of_choices or '未指定'}",
            ]
        )
