# models/pipeline_models.py
"""Phase, editing and result records emitted by the coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EditingStrategy = Literal["skip", "targeted-edit", "regenerate", "polish"]


class PhaseResult(BaseModel):
    """Uniform envelope for one coordinator phase."""

    name: str
    duration_ms: float
    success: bool
    output: Any = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class EditingDecision(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    strategy: EditingStrategy
    reasoning: str = ""
    priority: Literal["high", "medium", "low"] = "medium"
    estimated_changes: str = Field("", alias="estimatedChanges")
    confidence: int = Field(70, ge=0, le=100)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> int:
        try:
            number = int(round(float(value)))
        except (TypeError, ValueError):
            return 70
        return max(0, min(100, number))


class EditingEvaluation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quality_score: int = Field(75, alias="qualityScore")
    changes_applied: list[str] = Field(default_factory=list, alias="changesApplied")
    plan_elements_present: list[str] = Field(
        default_factory=list, alias="planElementsPresent"
    )
    remaining_issues: list[str] = Field(default_factory=list, alias="remainingIssues")

    @field_validator("quality_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        number = int(round(float(value)))
        return max(0, min(100, number))


@dataclass
class DiffRecord:
    before: str
    after: str
    strategy: EditingStrategy
    iteration: int


@dataclass
class EditingLogEntry:
    kind: Literal["decision", "execution", "evaluation", "iteration", "warning", "success"]
    message: str
    iteration: int
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class EditingResult:
    content: str
    decision: EditingDecision | None
    changes_applied: list[str]
    quality_score: int
    decide_calls: int
    iterations: int
    log: list[EditingLogEntry] = field(default_factory=list)
    diffs: list[DiffRecord] = field(default_factory=list)


class ChapterData(BaseModel):
    title: str
    content: str
    plan: str
    summary: str


class QualityMetrics(BaseModel):
    coherence: int = 0
    integration: int = 0
    polish: int = 0


class AgentTiming(BaseModel):
    processing_time_ms: float = 0.0
    confidence: int = 0


class GenerationMetadata(BaseModel):
    total_time_ms: float = 0.0
    per_agent_timing: dict[str, AgentTiming] = Field(default_factory=dict)
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    retried: bool = False
    warnings: list[str] = Field(default_factory=list)


class ChapterGenerationResult(BaseModel):
    success: bool
    chapter_number: int
    chapter_data: ChapterData
    phases: list[PhaseResult] = Field(default_factory=list)
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)
    error: str | None = None

    def phase(self, name: str) -> PhaseResult | None:
        for phase in self.phases:
            if phase.name == name:
                return phase
        return None


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    enable_light_polish: bool = True
    enable_consistency_check: bool = True
    enable_fallback_retry: bool = False
    parallel_processing: bool = False
    max_retries: int = 2
