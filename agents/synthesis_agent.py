# agents/synthesis_agent.py
"""Merge specialist slot maps into the skeleton and close the chapter on a hook."""

from __future__ import annotations

import re
import time
from collections import Counter
from collections.abc import Mapping

import structlog
from config import ModelAssignments, settings
from prompt_renderer import render_prompt

from core.errors import PhaseFailure, ProviderError
from core.llm_interface import TextGenerator, clean_model_response
from models import (
    AgentMetadata,
    CharacterOutput,
    SceneOutput,
    SlotCategory,
    SlotMapping,
    StructureFramework,
    SynthesisOutput,
)
from processing.conflict_detection import ConflictContext, detect_conflicts
from processing.slot_assembly import (
    AssemblyResult,
    MergeResult,
    append_hook,
    assemble,
    build_mappings,
    find_unresolved,
    merge_mappings,
)
from processing.slot_markers import category_of, find_slot_ids
from processing.slot_parser import SlotParser

logger = structlog.get_logger(__name__)

PHASE_NAME = "Synthesis With Validation"

STATIC_HOOK_POOL = (
    "一盏茶的功夫过去了。",
    "半晌无人言语。",
    "与此同时，千里之外……",
    "画面一转。",
    "须臾之间。",
    "转眼已是黄昏。",
    "就在这时。",
    "另一边。",
)

_HOOK_BULLET_RE = re.compile(r"^\s*(?:[-*•·]+|\d+\s*[.、)）:：]|[（(]\d+[)）])\s*")
_HOOK_QUOTES = "\"'“”「」"
_HOOK_KEY_RE = re.compile(r"[\W_]+")
_END_MARK_RE = re.compile(r"^[（(【\[]?\s*(?:本章完|全章完|未完待续|待续)\s*[）)】\]]?$")
_BRIDGE_ANCHOR_CHARS = 4


def _hook_key(text: str) -> str:
    return _HOOK_KEY_RE.sub("", text)


def strip_end_marks(text: str) -> str:
    """Drop trailing blank lines and end-of-chapter lines such as ``（本章完）``."""
    lines = text.rstrip().splitlines()
    while lines and (not lines[-1].strip() or _END_MARK_RE.match(lines[-1].strip())):
        lines.pop()
    return "\n".join(lines)


def find_closing_hook(text: str, hooks: list[str]) -> str | None:
    """The hook the last non-empty line carries, ignoring punctuation and spacing."""
    last = next((line for line in reversed(text.splitlines()) if line.strip()), "")
    key = _hook_key(last)
    if not key:
        return None
    for hook in hooks:
        hook_key = _hook_key(hook)
        if not hook_key:
            continue
        if hook_key in key or (len(key) >= settings.HOOK_MIN_CHARS and key in hook_key):
            return hook
    return None


def marker_context(text: str, slot_id: str, width: int) -> dict[str, str]:
    """Up to ``width`` characters either side of the first ``[slot_id]`` in ``text``."""
    marker = f"[{slot_id}]"
    index = text.find(marker)
    if index < 0:
        return {"before": "", "after": ""}
    return {
        "before": text[:index].rstrip()[-width:],
        "after": text[index + len(marker) :].lstrip()[:width],
    }


def is_bridged(draft: str, assisted: str, slot_id: str) -> bool:
    """Whether ``assisted`` put text where ``draft`` still shows ``[slot_id]``."""
    anchors = marker_context(draft, slot_id, _BRIDGE_ANCHOR_CHARS)
    # Anchors stay on one line; the model may reflow paragraph breaks.
    before = anchors["before"].splitlines()[-1].strip() if anchors["before"] else ""
    after = anchors["after"].splitlines()[0].strip() if anchors["after"] else ""
    start, end = 0, len(assisted)
    if before:
        found = assisted.find(before)
        if found < 0:
            return False
        start = found + len(before)
    if after:
        end = assisted.find(after, start)
        if end < 0:
            return False
    return bool(assisted[start:end].strip())


def parse_hook_candidates(
    text: str,
    min_chars: int = settings.HOOK_MIN_CHARS,
    max_chars: int = settings.HOOK_MAX_CHARS,
    limit: int = settings.HOOK_MAX_CANDIDATES,
) -> list[str]:
    """One candidate per non-empty line with bullets, numbering and quotes stripped."""
    hooks: list[str] = []
    for line in (text or "").splitlines():
        candidate = _HOOK_BULLET_RE.sub("", line).strip().strip(_HOOK_QUOTES).strip()
        if min_chars < len(candidate) < max_chars and candidate not in hooks:
            hooks.append(candidate)
        if len(hooks) >= limit:
            break
    return hooks


def static_hooks(chapter_number: int) -> list[str]:
    """The generic pool, rotated so consecutive chapters open on different lines."""
    offset = chapter_number % len(STATIC_HOOK_POOL)
    return list(STATIC_HOOK_POOL[offset:] + STATIC_HOOK_POOL[:offset])


def synthesis_confidence(conflict_count: int, slot_count: int) -> int:
    score = 90 - 5 * conflict_count + min(2 * slot_count, 10)
    return max(60, min(100, score))


class SynthesisAgent:
    """Stateless merge, conflict detection, hook generation and assembly."""

    def __init__(
        self,
        generator: TextGenerator,
        assignments: ModelAssignments | None = None,
    ) -> None:
        self.generator = generator
        self.assignments = assignments or settings.model_assignments()

    def assemble(
        self,
        skeleton: str,
        winners: Mapping[str, SlotMapping],
        hooks: list[str] | None = None,
    ) -> AssemblyResult:
        """Deterministic marker substitution; see ``processing.slot_assembly.assemble``."""
        return assemble(skeleton, winners, hooks)

    async def generate_hooks(
        self,
        merged: list[SlotMapping],
        chapter_number: int,
        chapter_title: str,
    ) -> tuple[list[str], bool]:
        """Return hook candidates and whether they came from the model."""
        digest = merged[: settings.HOOK_DIGEST_MAPPINGS]
        profile = self.assignments.hook
        prompt = render_prompt(
            "synthesis_agent/hooks_user.j2",
            {
                "chapter_number": chapter_number,
                "chapter_title": chapter_title,
                "digest": digest,
                "digest_chars": settings.HOOK_DIGEST_CHARS,
            },
        )
        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt("synthesis_agent/hooks_system.j2", {}),
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="hook",
            )
        except ProviderError as exc:
            logger.warning(
                "Hook generation failed for chapter %s, using static pool: %s",
                chapter_number,
                exc,
            )
            return static_hooks(chapter_number), False

        hooks = parse_hook_candidates(clean_model_response(raw or ""))
        if not hooks:
            logger.warning(
                "Hook response for chapter %s had no usable lines, using static pool.",
                chapter_number,
            )
            return static_hooks(chapter_number), False
        logger.info("Generated %s hook candidates for chapter %s", len(hooks), chapter_number)
        return hooks, True

    async def generate_transitions(
        self,
        framework: StructureFramework,
        winners: Mapping[str, SlotMapping],
        chapter_number: int,
    ) -> dict[str, str]:
        """Bridging sentences for ``[TRANSITION_*]`` markers no source filled.

        Only ids with usable text are returned; the others stay as visible
        markers and are reported as unresolved after assembly.
        """
        wanted = [
            slot_id
            for slot_id in dict.fromkeys(framework.slot_ids)
            if category_of(slot_id) == SlotCategory.TRANSITION and slot_id not in winners
        ]
        if not wanted:
            return {}
        draft = assemble(framework.text, winners).text
        contexts = [
            {"slot_id": slot_id, **marker_context(draft, slot_id, settings.TRANSITION_CONTEXT_CHARS)}
            for slot_id in wanted
        ]
        profile = self.assignments.transition
        prompt = render_prompt(
            "synthesis_agent/transitions_user.j2",
            {"chapter_number": chapter_number, "contexts": contexts},
        )
        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt("synthesis_agent/transitions_system.j2", {}),
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="transition",
            )
        except ProviderError as exc:
            logger.warning(
                "Transition generation failed for chapter %s: %s", chapter_number, exc
            )
            return {}

        parsed = SlotParser().extract(clean_model_response(raw or ""))
        transitions: dict[str, str] = {}
        for slot_id in wanted:
            content = parsed.get(slot_id, "").strip()
            if content and len(content) <= settings.TRANSITION_MAX_CHARS and not find_slot_ids(content):
                transitions[slot_id] = content
        missing = [slot_id for slot_id in wanted if slot_id not in transitions]
        if missing:
            logger.warning("No usable transition text for %s in chapter %s", missing, chapter_number)
        return transitions

    async def _assisted_assembly(
        self,
        framework: StructureFramework,
        merge: MergeResult,
        hooks: list[str],
    ) -> str | None:
        """Ask the integration model to substitute markers; ``None`` when rejected.

        Unfilled markers must survive verbatim, except transitions the model
        replaced with bridging text.
        """
        unfilled = [slot_id for slot_id in framework.slot_ids if slot_id not in merge.winners]
        profile = self.assignments.integration
        prompt = render_prompt(
            "synthesis_agent/integrate_user.j2",
            {
                "skeleton": framework.text,
                "mappings": merge.ordered(),
                "unfilled": unfilled,
                "hooks": hooks,
            },
        )
        try:
            raw = await self.generator.generate(
                prompt,
                system_instruction=render_prompt("synthesis_agent/integrate_system.j2", {}),
                temperature=profile.temperature,
                top_p=profile.top_p,
                top_k=profile.top_k,
                task="integration",
            )
        except ProviderError as exc:
            logger.warning("Assisted assembly failed, falling back to deterministic: %s", exc)
            return None

        text = clean_model_response(raw or "")
        if not text.strip():
            logger.warning("Assisted assembly returned empty text; falling back.")
            return None
        remaining = set(find_slot_ids(text))
        draft = assemble(framework.text, merge.winners).text
        dropped = [
            slot_id
            for slot_id in unfilled
            if slot_id not in remaining
            and not (
                category_of(slot_id) == SlotCategory.TRANSITION
                and is_bridged(draft, text, slot_id)
            )
        ]
        if dropped:
            logger.warning(
                "Assisted assembly dropped unfilled markers %s; falling back.", dropped
            )
            return None
        return text

    async def synthesize(
        self,
        framework: StructureFramework,
        character_output: CharacterOutput,
        scene_output: SceneOutput,
        chapter_number: int,
        chapter_title: str,
        structure_slots: Mapping[str, str] | None = None,
    ) -> SynthesisOutput:
        start = time.monotonic()
        if not framework.text.strip():
            raise PhaseFailure(PHASE_NAME, "cannot synthesize an empty skeleton")

        specialist_slots = [
            ("character", character_output.slot_map),
            ("scene", scene_output.slot_map),
        ]
        structure_slots = dict(structure_slots or {})
        transitions = await self.generate_transitions(
            framework,
            merge_mappings(build_mappings([("structure", structure_slots), *specialist_slots])).winners,
            chapter_number,
        )
        structure_slots.update(transitions)
        merge = merge_mappings(build_mappings([("structure", structure_slots), *specialist_slots]))
        for kept, dropped in merge.overridden:
            logger.info(
                "Slot %s: %s content overrides %s content",
                kept.slot_id,
                kept.source_agent,
                dropped.source_agent,
            )

        conflicts = detect_conflicts(
            ConflictContext(
                framework=framework,
                winners=merge.winners,
                foreign_slots={
                    source: slots
                    for source, slots in (
                        ("character", character_output.foreign_slots),
                        ("scene", scene_output.foreign_slots),
                    )
                    if slots
                },
            )
        )

        ordered = merge.ordered()
        hooks, hooks_from_model = await self.generate_hooks(ordered, chapter_number, chapter_title)

        warnings: list[str] = []
        assisted = await self._assisted_assembly(framework, merge, hooks)
        if assisted is not None:
            mode = "assisted"
            # Any filled marker the model left behind still gets its content.
            result = assemble(assisted, merge.winners)
            text = strip_end_marks(result.text)
            hook_used = find_closing_hook(text, hooks)
            if hook_used is None:
                hook_used = hooks[0]
                text = append_hook(text, hook_used)
            unresolved = find_unresolved(text, framework.slot_ids)
        else:
            mode = "deterministic"
            result = assemble(framework.text, merge.winners, hooks)
            text = result.text
            hook_used = result.hook_appended
            unresolved = result.unresolved

        for slot in unresolved:
            warnings.append(slot.warning)
        if unresolved:
            logger.warning(
                "Chapter %s assembled with %s unresolved slots: %s",
                chapter_number,
                len(unresolved),
                [slot.slot_id for slot in unresolved],
            )

        by_source = Counter(mapping.source_agent for mapping in merge.winners.values())
        notes = [f"{source}: {by_source.get(source, 0)} slots" for source in ("structure", "character", "scene")]
        notes.append(f"assembly: {mode}")
        notes.append(f"hooks: {'generated' if hooks_from_model else 'static pool'}")
        if transitions:
            notes.append(f"transitions: {len(transitions)} generated")
        unknown = [slot_id for slot_id in merge.winners if slot_id not in framework.slot_ids]
        if unknown:
            notes.append(f"content without a skeleton marker: {', '.join(sorted(unknown))}")

        confidence = synthesis_confidence(len(conflicts), len(merge.winners))
        logger.info(
            "Synthesis complete for chapter %s: %s slots, %s conflicts, confidence %s (%s)",
            chapter_number,
            len(merge.winners),
            len(conflicts),
            confidence,
            mode,
        )
        return SynthesisOutput(
            integrated_chapter=text,
            hooks_added=[hook_used] if hook_used else [],
            conflicts=conflicts,
            confidence=confidence,
            unresolved_slots=unresolved,
            integration_notes=notes,
            assembly_mode=mode,
            warnings=warnings,
            metadata=AgentMetadata(
                agent_type="synthesis",
                processing_time_ms=(time.monotonic() - start) * 1000,
                confidence=confidence,
            ),
        )
