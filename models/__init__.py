"""Central package for Slotweave data models."""

from .agent_models import (
    AgentBaseModel,
    AgentMetadata,
    AgentOutput,
    CharacterOutput,
    SceneOutput,
    StructureOutput,
    SynthesisOutput,
)
from .coherence_models import (
    BalanceIssue,
    BalanceReport,
    ChapterContext,
    CharacterContext,
    CharacterState,
    CoherenceConstraints,
    DialogueRequirement,
    LimitCheck,
    RepetitionIssue,
    RepetitionReport,
    SceneContext,
    StructureContext,
    ToneGuidance,
)
from .pipeline_models import (
    AgentTiming,
    ChapterData,
    ChapterGenerationResult,
    DiffRecord,
    EditingDecision,
    EditingEvaluation,
    EditingLogEntry,
    EditingResult,
    GenerationMetadata,
    GenerationOptions,
    PhaseResult,
    QualityMetrics,
)
from .plan_models import (
    ChapterEvent,
    ChapterPlan,
    CharacterArc,
    DetailedScene,
    DialogueBeat,
)
from .slot_models import (
    SOURCE_PRIORITY,
    ConflictRecord,
    Slot,
    SlotCategory,
    SlotMapping,
    StructureFramework,
    UnresolvedSlot,
)

__all__ = [
    "AgentBaseModel",
    "AgentMetadata",
    "AgentOutput",
    "StructureOutput",
    "CharacterOutput",
    "SceneOutput",
    "SynthesisOutput",
    "BalanceIssue",
    "BalanceReport",
    "ChapterContext",
    "CharacterContext",
    "CharacterState",
    "CoherenceConstraints",
    "DialogueRequirement",
    "LimitCheck",
    "RepetitionIssue",
    "RepetitionReport",
    "SceneContext",
    "StructureContext",
    "ToneGuidance",
    "AgentTiming",
    "ChapterData",
    "ChapterGenerationResult",
    "DiffRecord",
    "EditingDecision",
    "EditingEvaluation",
    "EditingLogEntry",
    "EditingResult",
    "GenerationMetadata",
    "GenerationOptions",
    "PhaseResult",
    "QualityMetrics",
    "ChapterEvent",
    "ChapterPlan",
    "CharacterArc",
    "DetailedScene",
    "DialogueBeat",
    "SOURCE_PRIORITY",
    "ConflictRecord",
    "Slot",
    "SlotCategory",
    "SlotMapping",
    "StructureFramework",
    "UnresolvedSlot",
]
