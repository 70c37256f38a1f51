# orchestration/coherence_store.py
"""Cross-chapter story context consumed and updated by the coordinator.

The coordinator only talks to the ``CoherenceStore`` protocol. The in-memory
implementation below keeps chapter summaries and tails, plot threads taken
from the outline, character states, cross-chapter phrase statistics and the
per-chapter slot output used for balance checks.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

import structlog
from config import settings

from models import (
    BalanceIssue,
    BalanceReport,
    ChapterContext,
    ChapterData,
    ChapterPlan,
    CharacterContext,
    CharacterState,
    CoherenceConstraints,
    LimitCheck,
    RepetitionReport,
    SceneContext,
    SlotCategory,
    StructureContext,
    ToneGuidance,
)
from processing.repetition_analyzer import RepetitionAnalyzer
from processing.repetition_tracker import RepetitionTracker
from processing.slot_markers import category_of

logger = structlog.get_logger(__name__)

_OUTLINE_THREAD_RE = re.compile(r"^\s*(?:[-*•]|\d+[.、)])\s*(.+)$")
MAX_PLOT_THREADS = 8
MAX_ESTABLISHED_FACTS = 5
OUTLINE_EXCERPT_CHARS = 1500

TONE_BY_SCENE_TYPE: dict[str, ToneGuidance] = {
    "action": ToneGuidance(tone="tense", description_length="short", sentence_style="短句为主，动词密集"),
    "climax": ToneGuidance(tone="intense", description_length="short", sentence_style="短促有力，节奏紧凑"),
    "revelation": ToneGuidance(tone="suspenseful", description_length="medium", sentence_style="中等句长，聚焦细节"),
    "emotional": ToneGuidance(tone="reflective", description_length="long", sentence_style="长句流畅，感官丰富"),
    "setup": ToneGuidance(tone="neutral", description_length="medium", sentence_style="变化的句子长度"),
}


@runtime_checkable
class CoherenceStore(Protocol):
    async def initialize_from_outline(
        self, outline: str, characters: Mapping[str, str] | None, chapter_count: int
    ) -> None: ...

    async def prepare_chapter_context(
        self, chapter_number: int, plan: ChapterPlan
    ) -> ChapterContext: ...

    async def update_from_generated_chapter(
        self, chapter_data: ChapterData, chapter_number: int
    ) -> None: ...

    async def check_for_repetition(
        self, text: str, chapter_number: int
    ) -> RepetitionReport: ...

    async def validate_chapter_balance(self) -> BalanceReport: ...

    async def check_content_limits(self, kind: str, text: str) -> LimitCheck: ...

    async def get_tone_guidance_for_scene(self) -> ToneGuidance: ...

    async def begin_chapter(self, chapter_number: int, scene_type: str) -> None: ...

    async def register_agent_output(self, kind: str, slot_map: Mapping[str, str]) -> None: ...


class InMemoryCoherenceStore:
    """Reference ``CoherenceStore`` kept entirely in process memory."""

    def __init__(
        self,
        tracker: RepetitionTracker | None = None,
        analyzer: RepetitionAnalyzer | None = None,
    ) -> None:
        self.tracker = tracker
        self.analyzer = analyzer or RepetitionAnalyzer(tracker=tracker)
        self.outline = ""
        self.chapter_count = settings.DEFAULT_CHAPTER_COUNT
        self.plot_threads: list[str] = []
        self.characters: dict[str, CharacterState] = {}
        self.summaries: dict[int, str] = {}
        self.tails: dict[int, str] = {}
        self.initialized = False
        self.current_chapter: int | None = None
        self.current_scene_type = "setup"
        self.slot_order: list[str] = []
        self.slot_content: dict[str, str] = {}

    async def initialize_from_outline(
        self,
        outline: str,
        characters: Mapping[str, str] | None = None,
        chapter_count: int = settings.DEFAULT_CHAPTER_COUNT,
    ) -> None:
        self.outline = outline or ""
        self.chapter_count = max(chapter_count, 1)
        self.plot_threads = []
        for line in self.outline.splitlines():
            match = _OUTLINE_THREAD_RE.match(line)
            if match and match.group(1).strip():
                self.plot_threads.append(match.group(1).strip())
            if len(self.plot_threads) >= MAX_PLOT_THREADS:
                break
        self.characters = {
            name: CharacterState(name=name, description=description or "")
            for name, description in (characters or {}).items()
        }
        self.initialized = True
        logger.info(
            "Coherence store initialized: %s plot threads, %s characters, %s chapters planned",
            len(self.plot_threads),
            len(self.characters),
            self.chapter_count,
        )

    def _chapter_role(self, chapter_number: int) -> str:
        position = chapter_number / self.chapter_count
        if chapter_number == 1:
            return "开篇：建立人物与世界"
        if position >= 1:
            return "收尾：回收主要伏笔"
        if position >= 0.75:
            return "高潮：主要冲突爆发"
        return "发展：推进主线并加深冲突"

    @staticmethod
    def _tempo(tension_level: int) -> str:
        if tension_level >= 7:
            return "fast"
        if tension_level <= 3:
            return "slow"
        return "medium"

    async def prepare_chapter_context(
        self, chapter_number: int, plan: ChapterPlan
    ) -> ChapterContext:
        previous_tail = self.tails.get(chapter_number - 1, "")
        earlier = sorted(n for n in self.summaries if n < chapter_number)
        facts = [
            f"第{n}章：{self.summaries[n]}" for n in earlier[-MAX_ESTABLISHED_FACTS:]
        ]
        location = plan.primary_location or next(
            (scene.location for scene in plan.detailed_scenes if scene.location), ""
        )
        forbidden = self.tracker.overused_phrases() if self.tracker is not None else []
        return ChapterContext(
            chapter_number=chapter_number,
            structure=StructureContext(
                outline_excerpt=self.outline[:OUTLINE_EXCERPT_CHARS],
                chapter_role=self._chapter_role(chapter_number),
                tempo=self._tempo(plan.tension_level),
                tension_target=plan.tension_level,
                previous_chapter_tail=previous_tail,
                plot_threads=list(self.plot_threads),
            ),
            character=CharacterContext(characters=list(self.characters.values())),
            scene=SceneContext(
                location=location,
                atmosphere=plan.emotional_tone_tension,
                scene_type=self.current_scene_type,
            ),
            constraints=CoherenceConstraints(
                established_facts=facts,
                active_plot_threads=list(self.plot_threads),
                forbidden_repetitions=forbidden,
            ),
        )

    async def update_from_generated_chapter(
        self, chapter_data: ChapterData, chapter_number: int
    ) -> None:
        content = chapter_data.content
        self.summaries[chapter_number] = chapter_data.summary
        self.tails[chapter_number] = content[-settings.PREVIOUS_CHAPTER_TAIL_CHARS :]
        for name, state in self.characters.items():
            if name in content:
                self.characters[name] = state.model_copy(
                    update={
                        "last_seen_chapter": chapter_number,
                        "recent_development": chapter_data.summary,
                    }
                )
        if self.tracker is not None:
            self.tracker.update_from_text(content)
        logger.info("Coherence store updated with chapter %s", chapter_number)

    async def check_for_repetition(self, text: str, chapter_number: int) -> RepetitionReport:
        report = await self.analyzer.analyze(text)
        if report.issues:
            logger.info(
                "Chapter %s repetition: %s issues, severity %s",
                chapter_number,
                len(report.issues),
                report.severity,
            )
        return report

    async def begin_chapter(self, chapter_number: int, scene_type: str) -> None:
        self.current_chapter = chapter_number
        self.current_scene_type = scene_type
        self.slot_order = []
        self.slot_content = {}

    async def register_agent_output(self, kind: str, slot_map: Mapping[str, str]) -> None:
        """Record slot output for the chapter in progress.

        ``structure`` output registers the skeleton's slot order; specialist
        output registers content.
        """
        if kind == "structure":
            self.slot_order = list(slot_map)
            return
        for slot_id, content in slot_map.items():
            self.slot_content[slot_id] = content

    async def validate_chapter_balance(self) -> BalanceReport:
        issues: list[BalanceIssue] = []
        total = sum(len(content) for content in self.slot_content.values())
        if total:
            by_category: dict[SlotCategory | None, int] = {}
            for slot_id, content in self.slot_content.items():
                category = category_of(slot_id)
                by_category[category] = by_category.get(category, 0) + len(content)
            description_share = by_category.get(SlotCategory.DESCRIPTION, 0) / total
            internal_share = by_category.get(SlotCategory.INTERNAL, 0) / total
            if description_share > settings.DESCRIPTION_SHARE_LIMIT:
                issues.append(
                    BalanceIssue(
                        type="description-overload",
                        detail=f"description share {description_share:.0%}",
                    )
                )
            longest_internal = max(
                (
                    len(content)
                    for slot_id, content in self.slot_content.items()
                    if category_of(slot_id) == SlotCategory.INTERNAL
                ),
                default=0,
            )
            if (
                longest_internal > settings.INTERNAL_BLOCK_OVERLOAD_CHARS
                or internal_share > settings.INTERNAL_SHARE_LIMIT
            ):
                issues.append(
                    BalanceIssue(
                        type="internal-overload",
                        detail=f"internal share {internal_share:.0%}, longest block {longest_internal} chars",
                    )
                )

        run = 0
        for slot_id in self.slot_order:
            run = run + 1 if category_of(slot_id) == SlotCategory.DESCRIPTION else 0
            if run >= 3:
                issues.append(
                    BalanceIssue(
                        type="consecutive-description",
                        detail=f"three description slots in a row ending at {slot_id}",
                    )
                )
                break
        return BalanceReport(issues=issues)

    async def check_content_limits(self, kind: str, text: str) -> LimitCheck:
        if kind != "internal":
            return LimitCheck()
        limit = settings.INTERNAL_SLOT_CHAR_LIMIT
        if len(text) > limit * 2:
            return LimitCheck(
                allowed=False,
                reason=f"internal block of {len(text)} chars exceeds {limit * 2}",
                suggested_action="condense-internal",
            )
        internal_positions = [
            index
            for index, slot_id in enumerate(self.slot_order)
            if category_of(slot_id) == SlotCategory.INTERNAL
        ]
        if any(b - a == 1 for a, b in zip(internal_positions, internal_positions[1:])):
            return LimitCheck(
                allowed=False,
                reason="two internal slots are adjacent in the skeleton",
                suggested_action="add-micro-action",
            )
        return LimitCheck()

    async def get_tone_guidance_for_scene(self) -> ToneGuidance:
        return TONE_BY_SCENE_TYPE.get(self.current_scene_type, TONE_BY_SCENE_TYPE["setup"])
