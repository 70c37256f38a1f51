# orchestration/agent_coordinator.py
"""Sequential phase runner that turns one chapter plan into a committed chapter."""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from config import ModelAssignments, settings

from agents.character_agent import CharacterAgent
from agents.editing_agent import EditingAgent
from agents.scene_agent import SceneAgent
from agents.structure_agent import StructureAgent
from agents.synthesis_agent import SynthesisAgent
from core.errors import PhaseFailure
from core.llm_interface import TextGenerator
from models import (
    AgentTiming,
    ChapterContext,
    ChapterData,
    ChapterGenerationResult,
    ChapterPlan,
    CharacterOutput,
    DialogueRequirement,
    GenerationMetadata,
    GenerationOptions,
    PhaseResult,
    QualityMetrics,
    SceneOutput,
    StructureOutput,
    SynthesisOutput,
    ToneGuidance,
)
from orchestration.coherence_store import CoherenceStore
from processing.balance_corrections import (
    add_micro_actions,
    apply_balance_corrections,
    condense_internal_slots,
)
from processing.repetition_analyzer import replace_repeated_phrases

logger = structlog.get_logger(__name__)

CONTEXT_PREPARATION = "Context Preparation"
SPECIALIST_GENERATION = "Specialist Generation"
SYNTHESIS_WITH_VALIDATION = "Synthesis With Validation"
LIGHT_POLISH = "Light Polish"
REPETITION_CHECK = "Repetition Check"
COHERENCE_COMMIT = "Coherence Commit"
RETRY_SUFFIX = " (retry)"

SCENE_TYPE_KEYWORDS = (
    ("action", ("fight", "battle", "chase", "打脸", "突破", "渡劫")),
    ("revelation", ("reveal", "truth", "discover", "拍卖会")),
    ("emotional", ("emotion", "feel", "remember")),
    ("climax", ("final", "climax", "end")),
)

DebugSink = Callable[[int, str, Any], Awaitable[None]]


def detect_scene_type(plan: ChapterPlan) -> str:
    summary = plan.summary.lower()
    for scene_type, keywords in SCENE_TYPE_KEYWORDS:
        if any(keyword in summary for keyword in keywords):
            return scene_type
    return "setup"


def build_dialogue_requirements(
    plan: ChapterPlan, context: ChapterContext
) -> list[DialogueRequirement]:
    """Derive dialogue goals for the character agent from the plan."""
    characters = [state.name for state in context.character.characters] or ["protagonist"]
    if plan.character_development_focus:
        return [
            DialogueRequirement(
                slot_id="DIALOGUE_CHARACTER_DEVELOPMENT",
                characters=characters[:2],
                purpose="角色发展和关系构建",
                emotional_tone=plan.emotional_tone_tension or "neutral",
                subtext=plan.character_complexity,
            )
        ]
    if plan.conflict_type:
        return [
            DialogueRequirement(
                slot_id="DIALOGUE_CONFLICT",
                characters=characters[:2],
                purpose=f"处理{plan.conflict_type}冲突",
                emotional_tone="tense",
            )
        ]
    if plan.plot_advancement:
        return [
            DialogueRequirement(
                slot_id="DIALOGUE_PLOT",
                characters=characters[:2],
                purpose="推进主要情节",
            )
        ]
    return [
        DialogueRequirement(
            slot_id="DIALOGUE_MAIN",
            characters=characters[:2],
            purpose="推进故事发展",
        )
    ]


@dataclass
class _ChapterRun:
    """Mutable state threaded through the phases of one attempt."""

    chapter_number: int
    plan: ChapterPlan
    outline: str
    characters: Mapping[str, str] | None
    context: ChapterContext | None = None
    tone: ToneGuidance | None = None
    structure: StructureOutput | None = None
    character: CharacterOutput | None = None
    scene: SceneOutput | None = None
    synthesis: SynthesisOutput | None = None
    content: str = ""
    timings: dict[str, AgentTiming] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def reset(self) -> None:
        self.context = self.tone = None
        self.structure = self.character = self.scene = self.synthesis = None
        self.content = ""
        self.timings = {}
        self.warnings = []

    def chapter_data(self) -> ChapterData:
        return ChapterData(
            title=self.plan.title,
            content=self.content,
            plan=self.plan.formatted(),
            summary=self.plan.summary or self.content[:200],
        )


class AgentCoordinator:
    """Runs the six chapter phases in order with uniform failure handling."""

    def __init__(
        self,
        generator: TextGenerator,
        store: CoherenceStore,
        assignments: ModelAssignments | None = None,
        options: GenerationOptions | None = None,
        *,
        debug_sink: DebugSink | None = None,
    ) -> None:
        self.options = options or GenerationOptions(
            enable_light_polish=settings.ENABLE_LIGHT_POLISH,
            enable_consistency_check=settings.ENABLE_CONSISTENCY_CHECK,
            enable_fallback_retry=settings.ENABLE_FALLBACK_RETRY,
            max_retries=settings.COORDINATOR_MAX_RETRIES,
        )
        if self.options.parallel_processing:
            raise ValueError(
                "parallel_processing is not supported: character and scene generation "
                "need the slot inventory produced by the structure agent"
            )
        assignments = assignments or settings.model_assignments()
        self.store = store
        self.structure_agent = StructureAgent(generator, assignments)
        self.character_agent = CharacterAgent(generator, assignments)
        self.scene_agent = SceneAgent(generator, assignments)
        self.synthesis_agent = SynthesisAgent(generator, assignments)
        self.editing_agent = EditingAgent(generator, assignments)
        self.debug_sink = debug_sink

    async def _debug(self, chapter_number: int, stage: str, content: Any) -> None:
        if self.debug_sink is not None:
            await self.debug_sink(chapter_number, stage, content)

    async def _execute_phase(
        self,
        name: str,
        phase_fn: Callable[[_ChapterRun], Awaitable[tuple[Any, list[str]]]],
        run: _ChapterRun,
        phases: list[PhaseResult],
    ) -> bool:
        """Run one phase, append its ``PhaseResult`` and report success."""
        start = time.monotonic()
        try:
            output, warnings = await phase_fn(run)
        except Exception as exc:  # every phase failure becomes a PhaseResult
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Chapter %s phase '%s' failed after %.0f ms: %s",
                run.chapter_number,
                name,
                duration_ms,
                exc,
                exc_info=True,
            )
            phases.append(
                PhaseResult(name=name, duration_ms=duration_ms, success=False, errors=[str(exc)])
            )
            return False
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Chapter %s phase '%s' completed in %.0f ms", run.chapter_number, name, duration_ms
        )
        phases.append(
            PhaseResult(
                name=name,
                duration_ms=duration_ms,
                success=True,
                output=output,
                warnings=warnings,
            )
        )
        run.warnings.extend(warnings)
        return True

    async def _prepare_context(self, run: _ChapterRun) -> tuple[Any, list[str]]:
        scene_type = detect_scene_type(run.plan)
        if run.chapter_number == 1:
            await self.store.initialize_from_outline(
                run.outline, run.characters, settings.DEFAULT_CHAPTER_COUNT
            )
        await self.store.begin_chapter(run.chapter_number, scene_type)
        context = await self.store.prepare_chapter_context(run.chapter_number, run.plan)
        requirements = build_dialogue_requirements(run.plan, context)
        run.context = context.model_copy(
            update={
                "character": context.character.model_copy(
                    update={"dialogue_requirements": requirements}
                )
            }
        )
        run.tone = await self.store.get_tone_guidance_for_scene()
        return {"scene_type": scene_type, "tone": run.tone.tone}, []

    async def _apply_content_limits(
        self, output: CharacterOutput, slot_order: list[str]
    ) -> CharacterOutput:
        actions: set[str] = set()
        for content in output.internal.values():
            check = await self.store.check_content_limits("internal", content)
            if check.suggested_action:
                actions.add(check.suggested_action)
        if not actions:
            return output
        internal = dict(output.internal)
        applied: list[str] = []
        if "condense-internal" in actions:
            internal = condense_internal_slots(internal, settings.INTERNAL_SLOT_CHAR_LIMIT)
            applied.append("condense-internal")
        if "add-micro-action" in actions:
            internal = add_micro_actions(internal, slot_order)
            applied.append("add-micro-action")
        logger.info("Applied character content limits: %s", applied)
        return output.model_copy(
            update={"internal": internal, "limits_applied": output.limits_applied + applied}
        )

    async def _generate_specialists(self, run: _ChapterRun) -> tuple[Any, list[str]]:
        if run.context is None:
            raise PhaseFailure(SPECIALIST_GENERATION, "chapter context was not prepared")
        structure = await self.structure_agent.generate(
            run.chapter_number,
            run.plan,
            run.context,
            outline=run.outline,
            previous_tail=run.context.structure.previous_chapter_tail,
        )
        framework = structure.framework
        await self._debug(run.chapter_number, "structure_skeleton", framework.text)
        await self.store.register_agent_output("structure", {slot_id: "" for slot_id in framework.slot_ids})

        character = await self.character_agent.generate(
            run.chapter_number, run.plan, run.context, framework
        )
        character = await self._apply_content_limits(character, framework.slot_ids)
        await self.store.register_agent_output("character", character.slot_map)

        scene = await self.scene_agent.generate(
            run.chapter_number, run.plan, run.context, framework, tone=run.tone
        )
        await self.store.register_agent_output("scene", scene.slot_map)
        await self._debug(
            run.chapter_number,
            "specialist_slots",
            json.dumps(
                {"character": character.slot_map, "scene": scene.slot_map},
                ensure_ascii=False,
                indent=2,
            ),
        )

        run.structure, run.character, run.scene = structure, character, scene
        for output in (structure, character, scene):
            run.timings[output.metadata.agent_type] = AgentTiming(
                processing_time_ms=output.metadata.processing_time_ms,
                confidence=output.metadata.confidence,
            )
        warnings = structure.warnings + character.warnings + scene.warnings
        summary = {
            "slots": len(framework.slots),
            "character_slots": len(character.slot_map),
            "scene_slots": len(scene.slot_map),
        }
        return summary, warnings

    async def _synthesize(self, run: _ChapterRun) -> tuple[Any, list[str]]:
        if not (run.structure and run.character and run.scene):
            raise PhaseFailure(SYNTHESIS_WITH_VALIDATION, "specialist output is missing")
        synthesis = await self.synthesis_agent.synthesize(
            run.structure.framework,
            run.character,
            run.scene,
            run.chapter_number,
            run.plan.title,
        )
        run.synthesis = synthesis
        run.timings["synthesis"] = AgentTiming(
            processing_time_ms=synthesis.metadata.processing_time_ms,
            confidence=synthesis.confidence,
        )
        text = synthesis.integrated_chapter
        corrections: list[str] = []
        if self.options.enable_consistency_check:
            report = await self.store.validate_chapter_balance()
            if not report.balanced:
                logger.info(
                    "Chapter %s balance issues: %s",
                    run.chapter_number,
                    [issue.type for issue in report.issues],
                )
                text, corrections = apply_balance_corrections(text, report.issues)
        run.content = text
        await self._debug(run.chapter_number, "synthesized_chapter", text)
        return {
            "assembly_mode": synthesis.assembly_mode,
            "confidence": synthesis.confidence,
            "conflicts": [conflict.type for conflict in synthesis.conflicts],
            "balance_corrections": corrections,
        }, list(synthesis.warnings)

    async def _light_polish(self, run: _ChapterRun) -> tuple[Any, list[str]]:
        start = time.monotonic()
        result = await self.editing_agent.refine(
            run.content, run.plan, "", run.chapter_number, polish_biased=True
        )
        run.content = result.content
        run.timings["editing"] = AgentTiming(
            processing_time_ms=(time.monotonic() - start) * 1000,
            confidence=result.decision.confidence if result.decision else 0,
        )
        warnings = [entry.message for entry in result.log if entry.kind == "warning"]
        return {
            "strategy": result.decision.strategy if result.decision else None,
            "quality_score": result.quality_score,
            "iterations": result.iterations,
            "changes_applied": result.changes_applied,
        }, warnings

    async def _check_repetition(self, run: _ChapterRun) -> tuple[Any, list[str]]:
        report = await self.store.check_for_repetition(run.content, run.chapter_number)
        replaced = 0
        if report.severity == "high" or report.total_repetitions > 2:
            run.content, replaced = replace_repeated_phrases(run.content, report)
        return {
            "severity": report.severity,
            "total_repetitions": report.total_repetitions,
            "replaced": replaced,
        }, []

    async def _commit(self, run: _ChapterRun) -> tuple[Any, list[str]]:
        await self.store.update_from_generated_chapter(run.chapter_data(), run.chapter_number)
        return {"chars": len(run.content)}, []

    async def _run_pipeline(self, run: _ChapterRun, phases: list[PhaseResult]) -> bool:
        for name, phase_fn in (
            (CONTEXT_PREPARATION, self._prepare_context),
            (SPECIALIST_GENERATION, self._generate_specialists),
            (SYNTHESIS_WITH_VALIDATION, self._synthesize),
        ):
            if not await self._execute_phase(name, phase_fn, run, phases):
                return False
        if self.options.enable_light_polish:
            unpolished = run.content
            if not await self._execute_phase(LIGHT_POLISH, self._light_polish, run, phases):
                run.content = unpolished
                logger.warning("Light polish failed; keeping the unpolished chapter.")
        if not await self._execute_phase(REPETITION_CHECK, self._check_repetition, run, phases):
            return False
        return await self._execute_phase(COHERENCE_COMMIT, self._commit, run, phases)

    async def _run_retry(self, run: _ChapterRun, phases: list[PhaseResult]) -> bool:
        run.reset()
        for name, phase_fn in (
            (CONTEXT_PREPARATION, self._prepare_context),
            (SPECIALIST_GENERATION, self._generate_specialists),
            (SYNTHESIS_WITH_VALIDATION, self._synthesize),
            (COHERENCE_COMMIT, self._commit),
        ):
            if not await self._execute_phase(name + RETRY_SUFFIX, phase_fn, run, phases):
                return False
        return True

    def _metadata(
        self,
        run: _ChapterRun,
        start: float,
        quality: QualityMetrics,
        retried: bool = False,
    ) -> GenerationMetadata:
        return GenerationMetadata(
            total_time_ms=(time.monotonic() - start) * 1000,
            per_agent_timing=dict(run.timings),
            quality_metrics=quality,
            retried=retried,
            warnings=list(run.warnings),
        )

    def _failure(
        self,
        run: _ChapterRun,
        phases: list[PhaseResult],
        start: float,
        error: str,
        retried: bool = False,
    ) -> ChapterGenerationResult:
        logger.error("Chapter %s generation failed: %s", run.chapter_number, error)
        return ChapterGenerationResult(
            success=False,
            chapter_number=run.chapter_number,
            chapter_data=ChapterData(
                title=run.plan.title,
                content=f"生成章节时出错: {error}",
                plan=run.plan.formatted(),
                summary="",
            ),
            phases=phases,
            metadata=self._metadata(run, start, QualityMetrics(), retried),
            error=error,
        )

    async def generate_chapter(
        self,
        chapter_number: int,
        plan: ChapterPlan,
        outline: str = "",
        characters: Mapping[str, str] | None = None,
    ) -> ChapterGenerationResult:
        """Generate, validate and commit one chapter.

        On a phase failure the coordinator either retries the whole pipeline
        once (when ``enable_fallback_retry`` is set) or returns a failure
        result carrying the phases run so far.
        """
        start = time.monotonic()
        run = _ChapterRun(chapter_number, plan, outline, characters)
        phases: list[PhaseResult] = []
        logger.info("Starting chapter %s: %s", chapter_number, plan.title)

        if await self._run_pipeline(run, phases):
            synthesis_ok = any(p.name == SYNTHESIS_WITH_VALIDATION and p.success for p in phases)
            polish = next((p for p in phases if p.name == LIGHT_POLISH), None)
            quality = QualityMetrics(
                coherence=90 if all(p.success for p in phases) else 60,
                integration=85 if synthesis_ok else 50,
                polish=80 if polish is not None and polish.success else 70,
            )
            logger.info(
                "Chapter %s generated: %s chars in %s phases",
                chapter_number,
                len(run.content),
                len(phases),
            )
            return ChapterGenerationResult(
                success=True,
                chapter_number=chapter_number,
                chapter_data=run.chapter_data(),
                phases=phases,
                metadata=self._metadata(run, start, quality),
            )

        failed = next(p for p in reversed(phases) if not p.success)
        error = failed.errors[0] if failed.errors else f"{failed.name} failed"
        if not self.options.enable_fallback_retry:
            return self._failure(run, phases, start, error)

        logger.warning(
            "Chapter %s: retrying the whole pipeline after '%s' failed.",
            chapter_number,
            failed.name,
        )
        if await self._run_retry(run, phases):
            return ChapterGenerationResult(
                success=True,
                chapter_number=chapter_number,
                chapter_data=run.chapter_data(),
                phases=phases,
                metadata=self._metadata(
                    run,
                    start,
                    QualityMetrics(coherence=75, integration=70, polish=65),
                    retried=True,
                ),
            )
        retry_failed = next(p for p in reversed(phases) if not p.success)
        retry_error = retry_failed.errors[0] if retry_failed.errors else retry_failed.name
        return self._failure(
            run, phases, start, f"协调式中文生成系统完全失败: {retry_error}", retried=True
        )
