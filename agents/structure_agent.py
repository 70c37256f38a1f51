# agents/structure_agent.py
"""Skeleton generation: narrative prose with inline slot markers."""

from __future__ import annotations

import time

import structlog
from config import ModelAssignments, settings
from prompt_renderer import render_prompt

from core.errors import PhaseFailure, ProviderError
from core.llm_interface import TextGenerator, clean_model_response
from models import AgentMetadata, ChapterContext, ChapterPlan, StructureOutput
from processing.slot_markers import (
    build_framework,
    density_shortfalls,
    density_targets,
    validate_framework,
)

logger = structlog.get_logger(__name__)

PHASE_NAME = "Specialist Generation"
STRUCTURE_CONFIDENCE = 85

_CATEGORY_LABELS = {
    "DIALOGUE": "对话",
    "ACTION": "动作",
    "INTERNAL": "内心",
    "DESCRIPTION": "描写",
    "TRANSITION": "过渡",
}


class StructureAgent:
    """Writes the chapter skeleton every later stage fills in."""

    def __init__(
        self,
        generator: TextGenerator,
        assignments: ModelAssignments | None = None,
    ) -> None:
        self.generator = generator
        self.assignments = assignments or settings.model_assignments()
        logger.info(
            "StructureAgent initialized with model: %s",
            self.assignments.structure.model,
        )

    def _density_context(self, target_length: int) -> dict[str, tuple[int, int]]:
        return {
            _CATEGORY_LABELS[category.value]: bounds
            for category, bounds in density_targets(target_length).items()
        }

    async def generate(
        self,
        chapter_number: int,
        plan: ChapterPlan,
        context: ChapterContext,
        outline: str = "",
        previous_tail: str = "",
        target_length: int | None = None,
    ) -> StructureOutput:
        """Generate the skeleton for ``chapter_number``.

        Raises ``PhaseFailure`` when the provider fails, the response is empty
        or the skeleton carries no slot markers.
        """
        start = time.monotonic()
        length = target_length or plan.target_word_count or settings.DEFAULT_TARGET_LENGTH
        profile = self.assignments.structure

        prompt = render_prompt(
            "structure_agent/user.j2",
            {
                "chapter_number": chapter_number,
                "plan": plan,
                "outline": outline,
                "context": context,
                "previous_tail": previous_tail,
                "target_length": length,
                "density": self._density_context(length),
            },
        )
        system = render_prompt("structure_agent/system.j2", {})

        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=system,
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="structure",
            )
        except ProviderError as exc:
            logger.error(
                "Structure generation failed for chapter %s: %s", chapter_number, exc
            )
            raise PhaseFailure(PHASE_NAME, f"structure generation failed: {exc}") from exc

        skeleton = clean_model_response(raw or "")
        if not skeleton.strip():
            raise PhaseFailure(PHASE_NAME, "structure agent returned an empty skeleton")

        framework = build_framework(skeleton)
        if not framework.slots:
            raise PhaseFailure(PHASE_NAME, "structure skeleton contains no slot markers")

        warnings = validate_framework(framework)
        for problem in warnings:
            logger.warning("Chapter %s skeleton: %s", chapter_number, problem)

        pacing_notes = density_shortfalls(framework, length)
        for shortfall in pacing_notes:
            logger.info("Chapter %s marker density below target: %s", chapter_number, shortfall)

        elapsed_ms = (time.monotonic() - start) * 1000
        counts = framework.count_by_category()
        logger.info(
            "Structure skeleton ready for chapter %s: %s slots (%s)",
            chapter_number,
            len(framework.slots),
            ", ".join(f"{c.value}={n}" for c, n in counts.items() if n),
        )
        return StructureOutput(
            framework=framework,
            plot_notes=[plan.plot_advancement] if plan.plot_advancement else [],
            pacing_notes=pacing_notes,
            warnings=warnings,
            metadata=AgentMetadata(
                agent_type="structure",
                processing_time_ms=elapsed_ms,
                confidence=STRUCTURE_CONFIDENCE,
                notes=[f"{len(skeleton)} chars", f"{len(framework.slots)} slots"],
            ),
        )
