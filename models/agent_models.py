# models/agent_models.py
"""Structured outputs produced by each generation stage."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .slot_models import ConflictRecord, StructureFramework, UnresolvedSlot


class AgentBaseModel(BaseModel):
    """Base model supporting mapping style access."""

    model_config = ConfigDict(from_attributes=True, extra="allow")

    def __getitem__(self, item: str) -> Any:  # pragma: no cover - convenience
        return getattr(self, item)

    def get(
        self, item: str, default: Any = None
    ) -> Any:  # pragma: no cover - convenience
        return getattr(self, item, default)


class AgentMetadata(AgentBaseModel):
    agent_type: str
    processing_time_ms: float = 0.0
    confidence: int = 0
    notes: list[str] = Field(default_factory=list)


class StructureOutput(AgentBaseModel):
    kind: Literal["structure"] = "structure"
    framework: StructureFramework
    plot_notes: list[str] = Field(default_factory=list)
    pacing_notes: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: AgentMetadata


class CharacterOutput(AgentBaseModel):
    kind: Literal["character"] = "character"
    dialogue: dict[str, str] = Field(default_factory=dict)
    internal: dict[str, str] = Field(default_factory=dict)
    foreign_slots: dict[str, str] = Field(default_factory=dict)
    limits_applied: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: AgentMetadata

    @property
    def slot_map(self) -> dict[str, str]:
        return {**self.dialogue, **self.internal}


class SceneOutput(AgentBaseModel):
    kind: Literal["scene"] = "scene"
    descriptions: dict[str, str] = Field(default_factory=dict)
    actions: dict[str, str] = Field(default_factory=dict)
    foreign_slots: dict[str, str] = Field(default_factory=dict)
    tone_adaptation: str | None = None
    warnings: list[str] = Field(default_factory=list)
    metadata: AgentMetadata

    @property
    def slot_map(self) -> dict[str, str]:
        return {**self.descriptions, **self.actions}


class SynthesisOutput(AgentBaseModel):
    kind: Literal["synthesis"] = "synthesis"
    integrated_chapter: str
    hooks_added: list[str] = Field(default_factory=list)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    confidence: int = 0
    unresolved_slots: list[UnresolvedSlot] = Field(default_factory=list)
    integration_notes: list[str] = Field(default_factory=list)
    assembly_mode: Literal["assisted", "deterministic"] = "deterministic"
    warnings: list[str] = Field(default_factory=list)
    metadata: AgentMetadata


AgentOutput = Annotated[
    Union[StructureOutput, CharacterOutput, SceneOutput, SynthesisOutput],
    Field(discriminator="kind"),
]
