# processing/slot_assembly.py
"""Priority merge of slot maps and literal marker substitution."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import structlog

from models import SlotMapping, UnresolvedSlot
from models.slot_models import SourceAgent
from processing.slot_markers import SLOT_MARKER_RE, category_of, find_slot_ids

logger = structlog.get_logger(__name__)


@dataclass
class MergeResult:
    winners: dict[str, SlotMapping]
    overridden: list[tuple[SlotMapping, SlotMapping]] = field(default_factory=list)

    def ordered(self) -> list[SlotMapping]:
        return sorted(self.winners.values(), key=SlotMapping.sort_key)


@dataclass
class AssemblyResult:
    text: str
    substituted: list[str]
    unresolved: list[UnresolvedSlot]
    hook_appended: str | None = None

    @property
    def warnings(self) -> list[str]:
        return [slot.warning for slot in self.unresolved]


def build_mappings(
    sources: Iterable[tuple[SourceAgent, Mapping[str, str]]],
) -> list[SlotMapping]:
    mappings = []
    for source, slot_map in sources:
        for slot_id, content in slot_map.items():
            if isinstance(content, str) and content.strip():
                mappings.append(SlotMapping.from_source(slot_id, content.strip(), source))
    return mappings


def merge_mappings(mappings: Iterable[SlotMapping]) -> MergeResult:
    """Keep one record per slot id; the higher priority source wins.

    Records are visited in (priority desc, id, source) order so the outcome
    does not depend on dict iteration order.
    """
    ordered = sorted(mappings, key=lambda m: (-m.priority, m.slot_id, m.source_agent))
    winners: dict[str, SlotMapping] = {}
    overridden: list[tuple[SlotMapping, SlotMapping]] = []
    for mapping in ordered:
        current = winners.get(mapping.slot_id)
        if current is None:
            winners[mapping.slot_id] = mapping
        else:
            overridden.append((current, mapping))
    return MergeResult(winners=winners, overridden=overridden)


def find_unresolved(text: str, expected_ids: Iterable[str]) -> list[UnresolvedSlot]:
    """Skeleton slot ids whose literal marker is still present in ``text``."""
    present = set(find_slot_ids(text))
    unresolved = []
    seen: set[str] = set()
    for slot_id in expected_ids:
        if slot_id in present and slot_id not in seen:
            seen.add(slot_id)
            unresolved.append(UnresolvedSlot(slot_id=slot_id, category=category_of(slot_id)))
    return unresolved


def append_hook(text: str, hook: str) -> str:
    return f"{text.rstrip()}\n\n{hook.strip()}"


def assemble(
    skeleton: str,
    winners: Mapping[str, SlotMapping],
    hooks: list[str] | None = None,
) -> AssemblyResult:
    """Replace every marker that has content; leave the rest visible.

    Substitution is a single pass over the skeleton, so content that happens
    to contain bracket text is never substituted again. With no markers and no
    hooks the input is returned unchanged.
    """
    substituted: list[str] = []

    def _replace(match) -> str:
        slot_id = match.group(1)
        mapping = winners.get(slot_id)
        if mapping is None:
            return match.group(0)
        substituted.append(slot_id)
        return mapping.content

    text = SLOT_MARKER_RE.sub(_replace, skeleton)
    unresolved = find_unresolved(text, find_slot_ids(skeleton))
    for slot in unresolved:
        logger.warning("Slot left unresolved after assembly: %s", slot.slot_id)

    hook_appended = None
    if hooks:
        hook_appended = hooks[0]
        text = append_hook(text, hook_appended)
    return AssemblyResult(
        text=text,
        substituted=substituted,
        unresolved=unresolved,
        hook_appended=hook_appended,
    )
