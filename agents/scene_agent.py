# agents/scene_agent.py
"""Description and action content for the skeleton's scene slots."""

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
    SceneOutput,
    SlotCategory,
    StructureFramework,
    ToneGuidance,
)
from processing.slot_markers import partition_owned
from processing.slot_parser import SlotParser

logger = structlog.get_logger(__name__)

PHASE_NAME = "Specialist Generation"
SCENE_CONFIDENCE = 85
OWNED_CATEGORIES = {SlotCategory.DESCRIPTION, SlotCategory.ACTION}

DESCRIPTION_TYPES = (
    ("ATMOSPHERE", "环境氛围与情绪"),
    ("OPENING", "场景建立与设定"),
    ("CONSEQUENCES", "后果与环境影响"),
)
ACTION_TYPES = (
    ("CONFRONTATION", "紧张的肢体互动"),
    ("ESCAPE", "移动与追逐序列"),
    ("CLIMAX", "高潮动作时刻"),
)

# Checked in order; the first matching type wins.
SCENE_TYPE_KEYWORDS = (
    ("动作", ("battle", "fight", "chase", "attack", "combat", "战斗", "攻击", "追逐", "战", "斗", "追")),
    ("揭示", ("reveal", "truth", "discover", "revelation", "secret", "揭示", "秘密", "真相", "发现", "揭")),
    ("情感", ("memory", "emotion", "feel", "remember", "past", "记忆", "情感", "回忆", "过去")),
)

PACING_BY_SCENE_TYPE = {
    "动作": "短促有力的句子（8-12字）。密集动词。最少描写。聚焦运动和冲击。",
    "情感": "较长流畅的句子（15-20字）。丰富感官细节。深层氛围描写。",
    "揭示": "中等句子（12-15字）。聚焦具体细节。清晰、精确的描写。",
    "铺垫": "变化的句子长度。根据时刻在动作与描写间平衡。",
}


def slot_type(slot_id: str) -> str:
    if slot_id.startswith("DESCRIPTION_"):
        table, default = DESCRIPTION_TYPES, "环境描写与感官细节"
    else:
        table, default = ACTION_TYPES, "肢体动作与移动"
    for keyword, label in table:
        if keyword in slot_id:
            return label
    return default


def detect_scene_type(plan: ChapterPlan) -> str:
    """Classify the chapter from keywords in its title and summary."""
    haystack = f"{plan.title} {plan.summary}".lower()
    for scene_type, keywords in SCENE_TYPE_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return scene_type
    return "铺垫"


class SceneAgent:
    """Fills DESCRIPTION and ACTION slots."""

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
        tone: ToneGuidance | None = None,
    ) -> SceneOutput:
        start = time.monotonic()
        owned_slots = framework.slots_in(OWNED_CATEGORIES)
        scene_type = detect_scene_type(plan)
        tone = tone or ToneGuidance()
        if not owned_slots:
            logger.info(
                "Chapter %s skeleton has no description or action slots; skipping scene call.",
                chapter_number,
            )
            return SceneOutput(
                tone_adaptation=scene_type,
                warnings=["no scene slots in skeleton"],
                metadata=AgentMetadata(agent_type="scene", confidence=SCENE_CONFIDENCE),
            )

        profile = self.assignments.scene
        prompt = render_prompt(
            "scene_agent/user.j2",
            {
                "chapter_number": chapter_number,
                "plan": plan,
                "context": context,
                "scene_type": scene_type,
                "pacing": PACING_BY_SCENE_TYPE[scene_type],
                "tone": tone,
                "slots": [{"id": slot.id, "purpose": slot_type(slot.id)} for slot in owned_slots],
            },
        )

        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt("scene_agent/system.j2", {}),
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="scene",
            )
        except ProviderError as exc:
            logger.error("Scene generation failed for chapter %s: %s", chapter_number, exc)
            raise PhaseFailure(PHASE_NAME, f"scene generation failed: {exc}") from exc

        warnings: list[str] = []
        parsed = self.parser.extract(clean_model_response(raw or ""))
        if not parsed:
            warnings.append("scene response could not be parsed into slots")
            logger.warning(
                "Scene output for chapter %s yielded no slots; continuing with an empty map.",
                chapter_number,
            )

        kept, foreign = partition_owned(parsed, OWNED_CATEGORIES)
        if foreign:
            logger.warning("Scene agent emitted slots it does not own: %s", sorted(foreign))

        descriptions = {k: v for k, v in kept.items() if k.startswith("DESCRIPTION_")}
        actions = {k: v for k, v in kept.items() if k.startswith("ACTION_")}
        logger.info(
            "Scene agent filled %s description and %s action slots for chapter %s (%s)",
            len(descriptions),
            len(actions),
            chapter_number,
            scene_type,
        )
        return SceneOutput(
            descriptions=descriptions,
            actions=actions,
            foreign_slots=foreign,
            tone_adaptation=scene_type,
            warnings=warnings,
            metadata=AgentMetadata(
                agent_type="scene",
                processing_time_ms=(time.monotonic() - start) * 1000,
                confidence=SCENE_CONFIDENCE,
                notes=[f"parser strategy: {self.parser.last_strategy or 'none'}"],
            ),
        )
