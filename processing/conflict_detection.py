# processing/conflict_detection.py
"""Detect-only checks run over merged slot content.

Every checker returns ``ConflictRecord`` entries and never touches content.
Resolution is limited to the priority override already applied by the merge.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import structlog

from models import ConflictRecord, SlotCategory, SlotMapping, StructureFramework

logger = structlog.get_logger(__name__)

LOW_REALMS = ("练气期", "筑基初期", "筑基中期", "筑基后期", "筑基期")
MEDIUM_REALMS = ("金丹初期", "金丹中期", "金丹后期", "金丹期", "元婴初期")
HIGH_REALMS = ("元婴后期", "化神期", "炼虚期", "合体期", "大乘期", "渡劫期")

SYSTEM_REWARD_PATTERNS = (
    re.compile(r"系统奖励.*(?:灵石|丹药|功法|法宝)"),
    re.compile(r"恭喜宿主.*获得"),
    re.compile(r"任务完成.*奖励"),
    re.compile(r"升级.*获得.*属性点"),
)

LIGHT_TONE_WORDS = ("欢快", "轻松", "笑声", "愉快", "开心", "嬉笑", "俏皮", "cheerful", "laughter", "playful")
GRIM_TONE_WORDS = ("绝望", "阴森", "血腥", "恐惧", "死寂", "悲痛", "压抑", "despair", "dread", "grim")
TONE_MIN_HITS = 2
PACING_INTERNAL_MAX_CHARS = 300
DUPLICATE_MIN_CHARS = 10


@dataclass
class ConflictContext:
    framework: StructureFramework
    winners: Mapping[str, SlotMapping]
    foreign_slots: dict[str, dict[str, str]] = field(default_factory=dict)

    def content(self, slot_id: str) -> str:
        mapping = self.winners.get(slot_id)
        return mapping.content if mapping else ""

    def all_content(self) -> str:
        return "\n".join(m.content for m in sorted(self.winners.values(), key=SlotMapping.sort_key))


Checker = Callable[[ConflictContext], list[ConflictRecord]]


def check_tone(ctx: ConflictContext) -> list[ConflictRecord]:
    text = ctx.all_content().lower()
    light = sum(text.count(word) for word in LIGHT_TONE_WORDS)
    grim = sum(text.count(word) for word in GRIM_TONE_WORDS)
    if light >= TONE_MIN_HITS and grim >= TONE_MIN_HITS:
        return [
            ConflictRecord(
                type="tone",
                description=f"基调漂移：轻快词汇{light}处与阴郁词汇{grim}处混杂",
                resolution="按优先级保留结构内容，建议润色时统一基调",
            )
        ]
    return []


def check_pacing(ctx: ConflictContext) -> list[ConflictRecord]:
    conflicts = []
    slots = ctx.framework.slots
    for current, following in zip(slots, slots[1:]):
        if (
            current.category == SlotCategory.ACTION
            and following.category == SlotCategory.INTERNAL
            and len(ctx.content(following.id)) > PACING_INTERNAL_MAX_CHARS
        ):
            conflicts.append(
                ConflictRecord(
                    type="pacing",
                    description=f"动作段{current.id}之后紧跟过长的内心独白{following.id}",
                    resolution="节奏不匹配仅记录，内心独白长度由内容限制处理",
                    slot_ids=[current.id, following.id],
                )
            )
    return conflicts


def check_content(ctx: ConflictContext) -> list[ConflictRecord]:
    """Flag the same text filled into two different slots."""
    by_text: dict[str, list[str]] = {}
    for slot_id, mapping in sorted(ctx.winners.items()):
        normalized = re.sub(r"\s+", "", mapping.content)
        if len(normalized) >= DUPLICATE_MIN_CHARS:
            by_text.setdefault(normalized, []).append(slot_id)
    return [
        ConflictRecord(
            type="content",
            description=f"多个槽位内容完全相同：{', '.join(ids)}",
            resolution="保留全部槽位内容，建议编辑阶段改写重复段落",
            slot_ids=ids,
        )
        for ids in by_text.values()
        if len(ids) > 1
    ]


def check_power_scaling(ctx: ConflictContext) -> list[ConflictRecord]:
    text = ctx.all_content()
    low = [realm for realm in LOW_REALMS if realm in text]
    high = [realm for realm in HIGH_REALMS if realm in text]
    if low and high:
        return [
            ConflictRecord(
                type="power_scaling",
                description="检测到可能的战力崩坏：内容中同时出现低阶和极高阶修仙境界",
                resolution="建议检查主角战力是否合理，避免突然的境界跳跃",
            )
        ]
    return []


def check_system_logic(ctx: ConflictContext) -> list[ConflictRecord]:
    conflicts = []
    text = ctx.all_content()
    for pattern in SYSTEM_REWARD_PATTERNS:
        for match in pattern.finditer(text):
            conflicts.append(
                ConflictRecord(
                    type="system_logic",
                    description=f"检测到系统奖励：{match.group(0)}，请确认奖励是否与设定和难度匹配",
                    resolution="验证系统奖励的合理性，避免与世界观设定冲突",
                )
            )
    return conflicts


def check_ownership(ctx: ConflictContext) -> list[ConflictRecord]:
    conflicts = []
    for source, slots in sorted(ctx.foreign_slots.items()):
        for slot_id in sorted(slots):
            owner = ctx.winners.get(slot_id)
            winner = owner.source_agent if owner else "none"
            conflicts.append(
                ConflictRecord(
                    type="content",
                    description=f"ownership: {source} emitted content for {slot_id}, which it does not own",
                    resolution=f"discarded; slot kept from {winner}",
                    slot_ids=[slot_id],
                )
            )
    return conflicts


DEFAULT_CHECKERS: tuple[Checker, ...] = (
    check_ownership,
    check_tone,
    check_pacing,
    check_content,
    check_power_scaling,
    check_system_logic,
)


def detect_conflicts(
    ctx: ConflictContext, checkers: tuple[Checker, ...] = DEFAULT_CHECKERS
) -> list[ConflictRecord]:
    conflicts: list[ConflictRecord] = []
    for checker in checkers:
        found = checker(ctx)
        for conflict in found:
            logger.info(
                "Conflict detected (%s): %s", conflict.type, conflict.description
            )
        conflicts.extend(found)
    return conflicts
