# agents/editing_agent.py
"""Decide / Execute / Evaluate refinement loop over an assembled chapter."""

from __future__ import annotations

import json
from typing import Any

import structlog
from config import ModelAssignments, settings
from prompt_renderer import render_prompt
from pydantic import ValidationError

from core.errors import ProviderError
from core.llm_interface import TextGenerator, clean_model_response
from models import (
    ChapterPlan,
    DiffRecord,
    EditingDecision,
    EditingEvaluation,
    EditingLogEntry,
    EditingResult,
)
from models.pipeline_models import EditingStrategy

logger = structlog.get_logger(__name__)

LIGHT_POLISH_NOTES = "仅轻度润色 - 保留专家内容质量"
FORCE_REGENERATE_NOTE = "\n\n前次尝试失败。需要按照计划完全重新生成。"
DEEPER_CHANGES_NOTE = "\n\n针对性编辑不够。需要更深层的结构性修改。"
TRUNCATION_MARKER = "...（已截断）"

DECISION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "strategy": {
            "type": "string",
            "enum": ["skip", "targeted-edit", "regenerate", "polish"],
        },
        "reasoning": {"type": "string"},
        "priority": {"type": "string", "enum": ["high", "medium", "low"]},
        "estimatedChanges": {"type": "string"},
        "confidence": {"type": "number"},
    },
    "required": ["strategy", "reasoning", "priority", "estimatedChanges", "confidence"],
}

EVALUATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "qualityScore": {"type": "number"},
        "changesApplied": {"type": "array", "items": {"type": "string"}},
        "planElementsPresent": {"type": "array", "items": {"type": "string"}},
        "remainingIssues": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["qualityScore", "changesApplied", "planElementsPresent", "remainingIssues"],
}

SKIP_KEYWORDS = ("章节很棒", "章节强劲", "strong chapter", "excellent chapter")
REGENERATE_KEYWORDS = (
    "道德简单", "平淡", "原型化", "刻板印象",
    "morally simple", "flat", "archetypal", "stereotyp",
)
TARGETED_KEYWORDS = (
    "比喻", "形容词", "副词", "过度写作",
    "metaphor", "adjective", "adverb", "overwrit",
)

_EXECUTION_TASKS: dict[str, str] = {
    "targeted-edit": "editing_targeted",
    "regenerate": "editing_regenerate",
    "polish": "editing_polish",
}
_EXECUTION_TEMPLATES: dict[str, str] = {
    "targeted-edit": "targeted",
    "regenerate": "regenerate",
    "polish": "polish",
}


def heuristic_decision(critique_notes: str) -> EditingDecision:
    """Keyword fallback used when the decide call fails or cannot be parsed."""
    notes = (critique_notes or "").strip()
    lowered = notes.lower()
    if not notes or any(keyword in lowered for keyword in SKIP_KEYWORDS):
        return EditingDecision(
            strategy="skip",
            reasoning="批评笔记表明章节已经足够好",
            priority="low",
            estimated_changes="0%",
            confidence=90,
        )
    if any(keyword in lowered for keyword in REGENERATE_KEYWORDS):
        return EditingDecision(
            strategy="regenerate",
            reasoning="批评笔记指出角色或道德层面的结构性问题",
            priority="high",
            estimated_changes="40-60%",
            confidence=75,
        )
    if any(keyword in lowered for keyword in TARGETED_KEYWORDS):
        return EditingDecision(
            strategy="targeted-edit",
            reasoning="批评笔记指出局部的语言问题",
            priority="medium",
            estimated_changes="10-20%",
            confidence=70,
        )
    return EditingDecision(
        strategy="polish",
        reasoning="没有明确的结构问题，做一般润色",
        priority="low",
        estimated_changes="5-10%",
        confidence=65,
    )


def _json_object(text: str) -> dict[str, Any]:
    """Parse the outermost ``{...}`` span of a model response."""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise json.JSONDecodeError("no JSON object found", text, 0)
    data = json.loads(text[start : end + 1])
    if not isinstance(data, dict):
        raise json.JSONDecodeError("JSON value is not an object", text, start)
    return data


def _preview(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class EditingAgent:
    """Iteratively revises a chapter until it clears the quality threshold."""

    def __init__(
        self,
        generator: TextGenerator,
        assignments: ModelAssignments | None = None,
        max_iterations: int = settings.EDITING_MAX_ITERATIONS,
        quality_threshold: int = settings.EDITING_QUALITY_THRESHOLD,
    ) -> None:
        self.generator = generator
        self.assignments = assignments or settings.model_assignments()
        self.max_iterations = max_iterations
        self.quality_threshold = quality_threshold

    async def decide(
        self,
        content: str,
        plan: ChapterPlan,
        critique_notes: str,
        chapter_number: int,
    ) -> EditingDecision:
        profile = self.assignments.editing_decide
        prompt = render_prompt(
            "editing_agent/decide_user.j2",
            {
                "chapter_number": chapter_number,
                "critique_notes": critique_notes,
                "plan_text": plan.formatted(),
                "chapter_length": len(content),
            },
        )
        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt("editing_agent/decide_system.j2", {}),
                response_schema=DECISION_SCHEMA,
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="editing_decide",
            )
            decision = EditingDecision.model_validate(_json_object(raw or ""))
        except ProviderError as exc:
            logger.warning("Editing decision call failed, using heuristic: %s", exc)
            decision = heuristic_decision(critique_notes)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Editing decision unparsable, using heuristic: %s", exc)
            decision = heuristic_decision(critique_notes)

        if decision.confidence < settings.EDITING_LOW_CONFIDENCE_THRESHOLD:
            logger.warning(
                "Low confidence editing decision for chapter %s: %s (%s)",
                chapter_number,
                decision.strategy,
                decision.confidence,
            )
        return decision

    async def execute(
        self,
        strategy: EditingStrategy,
        content: str,
        plan: ChapterPlan,
        critique_notes: str,
    ) -> str:
        """Apply ``strategy``; an empty or failed revision keeps ``content``."""
        if strategy == "skip":
            return content
        task = _EXECUTION_TASKS[strategy]
        template = _EXECUTION_TEMPLATES[strategy]
        profile = self.assignments.for_task(task)
        prompt = render_prompt(
            f"editing_agent/{template}_user.j2",
            {
                "content": content,
                "content_preview": _preview(content, settings.EDITING_REGENERATE_PREVIEW_CHARS),
                "critique_notes": critique_notes,
                "plan": plan,
                "plan_text": plan.formatted(),
            },
        )
        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt(f"editing_agent/{template}_system.j2", {}),
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task=task,
            )
        except ProviderError as exc:
            logger.warning("Editing execution '%s' failed: %s", strategy, exc)
            return content
        revised = clean_model_response(raw or "")
        if not revised.strip():
            logger.warning("Editing execution '%s' returned empty text; keeping previous.", strategy)
            return content
        return revised

    async def evaluate(
        self,
        content: str,
        plan: ChapterPlan,
        strategy: EditingStrategy,
    ) -> EditingEvaluation:
        profile = self.assignments.editing_evaluate
        prompt = render_prompt(
            "editing_agent/evaluate_user.j2",
            {
                "plan_text": plan.formatted(),
                "strategy": strategy,
                "content_preview": _preview(content, settings.EDITING_EVALUATE_PREVIEW_CHARS),
            },
        )
        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt("editing_agent/evaluate_system.j2", {}),
                response_schema=EVALUATION_SCHEMA,
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="editing_evaluate",
            )
            return EditingEvaluation.model_validate(_json_object(raw or ""))
        except (ProviderError, json.JSONDecodeError, ValidationError, TypeError, ValueError) as exc:
            logger.warning("Editing evaluation failed, using default score: %s", exc)
            return EditingEvaluation(
                quality_score=settings.EDITING_DEFAULT_EVALUATION_SCORE,
                changes_applied=["Edits applied"],
            )

    async def refine(
        self,
        content: str,
        plan: ChapterPlan,
        critique_notes: str,
        chapter_number: int,
        polish_biased: bool = False,
    ) -> EditingResult:
        """Run the loop; at most ``max_iterations`` decide calls are made."""
        if polish_biased:
            critique_notes = LIGHT_POLISH_NOTES
        current = content
        notes = critique_notes
        log: list[EditingLogEntry] = []
        diffs: list[DiffRecord] = []
        changes: list[str] = []
        decision: EditingDecision | None = None
        quality_score: int | None = None
        decide_calls = 0
        iteration = 0

        while iteration < self.max_iterations:
            iteration += 1
            decision = await self.decide(current, plan, notes, chapter_number)
            decide_calls += 1
            if polish_biased and decision.strategy == "regenerate":
                logger.info("Polish-biased mode: downgrading regenerate to polish.")
                decision = decision.model_copy(update={"strategy": "polish"})
            log.append(
                EditingLogEntry(
                    kind="decision",
                    message=f"{decision.strategy}: {decision.reasoning}",
                    iteration=iteration,
                    details={"confidence": decision.confidence, "priority": decision.priority},
                )
            )
            if decision.strategy == "skip":
                log.append(EditingLogEntry(kind="success", message="no edits needed", iteration=iteration))
                break

            revised = await self.execute(decision.strategy, current, plan, notes)
            if revised != current:
                diffs.append(
                    DiffRecord(
                        before=current,
                        after=revised,
                        strategy=decision.strategy,
                        iteration=iteration,
                    )
                )
            log.append(
                EditingLogEntry(
                    kind="execution",
                    message=f"{decision.strategy} {'changed' if revised != current else 'kept'} the text",
                    iteration=iteration,
                    details={"before_chars": len(current), "after_chars": len(revised)},
                )
            )
            current = revised

            evaluation = await self.evaluate(current, plan, decision.strategy)
            quality_score = evaluation.quality_score
            changes.extend(evaluation.changes_applied)
            log.append(
                EditingLogEntry(
                    kind="evaluation",
                    message=f"quality {quality_score}",
                    iteration=iteration,
                    details={"remaining_issues": evaluation.remaining_issues},
                )
            )
            if quality_score >= self.quality_threshold:
                log.append(EditingLogEntry(kind="success", message="quality threshold met", iteration=iteration))
                break
            if iteration >= self.max_iterations:
                break

            kind = "iteration"
            low_confidence = decision.confidence < settings.EDITING_LOW_CONFIDENCE_THRESHOLD
            if low_confidence and decision.strategy != "regenerate":
                notes += FORCE_REGENERATE_NOTE
                message = "low confidence; escalating to regenerate"
            elif decision.strategy == "targeted-edit":
                notes += DEEPER_CHANGES_NOTE
                message = "targeted edit insufficient; escalating to regenerate"
            else:
                message = f"quality {quality_score} below {self.quality_threshold}; retrying"
                kind = "warning"
                logger.warning("Chapter %s editing: %s", chapter_number, message)
            log.append(EditingLogEntry(kind=kind, message=message, iteration=iteration))

        if quality_score is None:
            quality_score = decision.confidence if decision else settings.EDITING_DEFAULT_EVALUATION_SCORE
        logger.info(
            "Editing loop finished for chapter %s after %s iterations (quality %s).",
            chapter_number,
            iteration,
            quality_score,
        )
        return EditingResult(
            content=current,
            decision=decision,
            changes_applied=changes,
            quality_score=quality_score,
            decide_calls=decide_calls,
            iterations=iteration,
            log=log,
            diffs=diffs,
        )
