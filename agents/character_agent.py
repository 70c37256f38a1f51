# agents/character_agent.py
"""Dialogue and internal-monologue content for the skeleton's character slots."""

from __future__ import annotations

import time

import structlog
from config import ModelAssignments, settings
from prompt_renderer import render_prompt

from core.errors import PhaseFailure, ProviderError
from core.llm_interface import TextGenerator, clean_model_response
from models import (
    AgentMetadata,
    ChapterContext,
    ChapterPlan,
    CharacterOutput,
    SlotCategory,
    StructureFramework,
)
from processing.slot_markers import partition_owned
from processing.slot_parser import SlotParser

logger = structlog.get_logger(__name__)

PHASE_NAME = "Specialist Generation"
CHARACTER_CONFIDENCE = 80
OWNED_CATEGORIES = {SlotCategory.DIALOGUE, SlotCategory.INTERNAL}

DIALOGUE_PURPOSES = (
    ("GREETING", "初始互动，建立氛围"),
    ("CONFLICT", "对抗，紧张升级"),
    ("REVELATION", "信息揭示，情节推进"),
)
INTERNAL_FOCUSES = (
    ("SUSPICION", "渐增的疑虑和不确定"),
    ("REACTION", "处理新信息"),
    ("RESOLVE", "决策与决心"),
)


def slot_purpose(slot_id: str) -> str:
    """Infer what a character slot should accomplish from its identifier."""
    if slot_id.startswith("DIALOGUE_"):
        table, default = DIALOGUE_PURPOSES, "角色互动与发展"
    else:
        table, default = INTERNAL_FOCUSES, "角色情感状态和想法"
    for keyword, purpose in table:
        if keyword in slot_id:
            return purpose
    return default


class CharacterAgent:
    """Fills DIALOGUE and INTERNAL slots."""

    def __init__(
        self,
        generator: TextGenerator,
        assignments: ModelAssignments | None = None,
        parser: SlotParser | None = None,
    ) -> None:
        self.generator = generator
        self.assignments = assignments or settings.model_assignments()
        self.parser = parser or SlotParser()

    async def generate(
        self,
        chapter_number: int,
        plan: ChapterPlan,
        context: ChapterContext,
        framework: StructureFramework,
    ) -> CharacterOutput:
        start = time.monotonic()
        owned_slots = framework.slots_in(OWNED_CATEGORIES)
        warnings: list[str] = []
        if not owned_slots:
            logger.info(
                "Chapter %s skeleton has no dialogue or internal slots; skipping character call.",
                chapter_number,
            )
            return CharacterOutput(
                warnings=["no character slots in skeleton"],
                metadata=AgentMetadata(agent_type="character", confidence=CHARACTER_CONFIDENCE),
            )

        profile = self.assignments.character
        prompt = render_prompt(
            "character_agent/user.j2",
            {
                "chapter_number": chapter_number,
                "plan": plan,
                "context": context,
                "slots": [
                    {"id": slot.id, "purpose": slot_purpose(slot.id)} for slot in owned_slots
                ],
            },
        )
        system = render_prompt(
            "character_agent/system.j2",
            {"internal_limit": settings.INTERNAL_SLOT_CHAR_LIMIT},
        )

        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=system,
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="character",
            )
        except ProviderError as exc:
            logger.error("Character generation failed for chapter %s: %s", chapter_number, exc)
            raise PhaseFailure(PHASE_NAME, f"character generation failed: {exc}") from exc

        parsed = self.parser.extract(clean_model_response(raw or ""))
        if not parsed:
            warnings.append("character response could not be parsed into slots")
            logger.warning(
                "Character output for chapter %s yielded no slots; continuing with an empty map.",
                chapter_number,
            )

        kept, foreign = partition_owned(parsed, OWNED_CATEGORIES)
        if foreign:
            logger.warning(
                "Character agent emitted slots it does not own: %s", sorted(foreign)
            )
        missing = [slot.id for slot in owned_slots if slot.id not in kept]
        if parsed and missing:
            warnings.append(f"character slots left empty: {', '.join(missing)}")

        dialogue = {k: v for k, v in kept.items() if k.startswith("DIALOGUE_")}
        internal = {k: v for k, v in kept.items() if k.startswith("INTERNAL_")}
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Character agent filled %s dialogue and %s internal slots for chapter %s",
            len(dialogue),
            len(internal),
            chapter_number,
        )
        return CharacterOutput(
            dialogue=dialogue,
            internal=internal,
            foreign_slots=foreign,
            warnings=warnings,
            metadata=AgentMetadata(
                agent_type="character",
                processing_time_ms=elapsed_ms,
                confidence=CHARACTER_CONFIDENCE,
                notes=[f"parser strategy: {self.parser.last_strategy or 'none'}"],
            ),
        )
