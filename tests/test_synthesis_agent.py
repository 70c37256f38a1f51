import pytest
from agents.synthesis_agent import (
    STATIC_HOOK_POOL,
    SynthesisAgent,
    find_closing_hook,
    is_bridged,
    parse_hook_candidates,
    static_hooks,
    strip_end_marks,
    synthesis_confidence,
)
from core.errors import PhaseFailure, ProviderError
from models import AgentMetadata, CharacterOutput, SceneOutput
from processing.slot_markers import build_framework

SKELETON = "林墨推门而入。[DESCRIPTION_HALL]\n[DIALOGUE_CALL]\n他停下脚步。[ACTION_DRAW]"
HOOK = "就在此时，身后的门无声地关上了……"
TRANSITION_SKELETON = (
    "林墨推门而入。[DESCRIPTION_HALL]\n[DIALOGUE_CALL]\n[TRANSITION_NIGHT]\n他停下脚步。[ACTION_DRAW]"
)
BRIDGE = "夜色渐深，四下寂静。"
BODY = "林墨推门而入。大厅里积满灰尘。\n“有人吗？”\n他停下脚步，缓缓拔出长剑。"


def _character(**slots):
    dialogue = {k: v for k, v in slots.items() if k.startswith("DIALOGUE_")}
    internal = {k: v for k, v in slots.items() if k.startswith("INTERNAL_")}
    return CharacterOutput(
        dialogue=dialogue,
        internal=internal,
        metadata=AgentMetadata(agent_type="character"),
    )


def _scene(foreign=None, **slots):
    return SceneOutput(
        descriptions={k: v for k, v in slots.items() if k.startswith("DESCRIPTION_")},
        actions={k: v for k, v in slots.items() if k.startswith("ACTION_")},
        foreign_slots=foreign or {},
        metadata=AgentMetadata(agent_type="scene"),
    )


def test_parse_hook_candidates_strips_bullets_and_quotes():
    text = "1. “门外忽然传来急促的敲门声。”\n- 太短\n2、门外忽然传来急促的敲门声。\n* 她终于明白，那封信根本不是师兄写的。"
    assert parse_hook_candidates(text) == [
        "门外忽然传来急促的敲门声。",
        "她终于明白，那封信根本不是师兄写的。",
    ]


def test_parse_hook_candidates_respects_limit_and_bounds():
    lines = "\n".join(f"第{i}个钩子，悬念在最后一刻揭晓" for i in range(8))
    assert len(parse_hook_candidates(lines, limit=3)) == 3
    assert parse_hook_candidates("字" * 100) == []
    assert parse_hook_candidates("字" * 10) == []


def test_static_hooks_rotate_by_chapter():
    assert static_hooks(0) == list(STATIC_HOOK_POOL)
    assert static_hooks(1)[0] == STATIC_HOOK_POOL[1]
    assert static_hooks(9) == static_hooks(1)


def test_synthesis_confidence_is_clamped():
    assert synthesis_confidence(0, 3) == 96
    assert synthesis_confidence(0, 20) == 100
    assert synthesis_confidence(10, 0) == 60


@pytest.mark.asyncio
async def test_deterministic_assembly_when_integration_fails(make_generator):
    generator = make_generator({"hook": HOOK, "integration": ProviderError("down")})
    agent = SynthesisAgent(generator)
    output = await agent.synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。", ACTION_DRAW="他缓缓拔出长剑。"),
        1,
        "夜探古宅",
    )
    assert output.assembly_mode == "deterministic"
    assert output.integrated_chapter == (
        "林墨推门而入。大厅里积满灰尘。\n“有人吗？”\n他停下脚步。他缓缓拔出长剑。\n\n" + HOOK
    )
    assert output.hooks_added == [HOOK]
    assert output.unresolved_slots == []
    assert "assembly: deterministic" in output.integration_notes
    assert "hooks: generated" in output.integration_notes


@pytest.mark.asyncio
async def test_missing_slot_stays_visible_and_is_warned(make_generator):
    generator = make_generator({"hook": ProviderError("down"), "integration": ""})
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。"),
        3,
        "夜探古宅",
    )
    assert "[ACTION_DRAW]" in output.integrated_chapter
    assert [slot.slot_id for slot in output.unresolved_slots] == ["ACTION_DRAW"]
    assert output.warnings == ["unresolved slot: ACTION_DRAW"]
    assert output.hooks_added == [static_hooks(3)[0]]
    assert "hooks: static pool" in output.integration_notes


@pytest.mark.asyncio
async def test_assisted_assembly_is_accepted(make_generator):
    assisted = "林墨推门而入，大厅里积满灰尘。\n“有人吗？”他喊道。\n他停下脚步，缓缓拔出长剑。\n\n" + HOOK
    generator = make_generator({"hook": HOOK, "integration": assisted})
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。", ACTION_DRAW="他缓缓拔出长剑。"),
        1,
        "夜探古宅",
    )
    assert output.assembly_mode == "assisted"
    assert output.integrated_chapter == assisted
    assert output.hooks_added == [HOOK]


@pytest.mark.asyncio
async def test_assisted_text_dropping_unfilled_marker_is_rejected(make_generator):
    generator = make_generator({"hook": HOOK, "integration": "模型把所有标记都删掉了。"})
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。"),
        1,
        "夜探古宅",
    )
    assert output.assembly_mode == "deterministic"
    assert "[ACTION_DRAW]" in output.integrated_chapter


@pytest.mark.asyncio
async def test_assisted_leftover_markers_are_substituted(make_generator):
    generator = make_generator(
        {"hook": HOOK, "integration": "林墨推门而入。[DESCRIPTION_HALL]“有人吗？”他拔剑。"}
    )
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。", ACTION_DRAW="他拔剑。"),
        1,
        "夜探古宅",
    )
    assert output.assembly_mode == "assisted"
    assert output.integrated_chapter.startswith("林墨推门而入。大厅里积满灰尘。")
    assert output.integrated_chapter.endswith(HOOK)


@pytest.mark.asyncio
async def test_foreign_slots_become_content_conflicts(make_generator):
    generator = make_generator({"hook": HOOK, "integration": ProviderError("down")})
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(
            foreign={"DIALOGUE_CALL": "“谁在那里？”"},
            DESCRIPTION_HALL="大厅里积满灰尘。",
            ACTION_DRAW="他缓缓拔出长剑。",
        ),
        1,
        "夜探古宅",
    )
    assert "“有人吗？”" in output.integrated_chapter
    assert "“谁在那里？”" not in output.integrated_chapter
    assert [c.type for c in output.conflicts] == ["content"]
    assert output.conflicts[0].description.startswith("ownership: scene")
    assert output.confidence == synthesis_confidence(1, 3)


@pytest.mark.asyncio
async def test_empty_skeleton_fails(make_generator):
    with pytest.raises(PhaseFailure):
        await SynthesisAgent(make_generator()).synthesize(
            build_framework("  "), _character(), _scene(), 1, "空"
        )


async def _synthesize_with_transition(generator, chapter_number=1):
    return await SynthesisAgent(generator).synthesize(
        build_framework(TRANSITION_SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。", ACTION_DRAW="他缓缓拔出长剑。"),
        chapter_number,
        "夜探古宅",
    )


@pytest.mark.asyncio
async def test_transition_marker_filled_as_structure_slot(make_generator):
    generator = make_generator(
        {
            "hook": HOOK,
            "transition": f"[TRANSITION_NIGHT]: {BRIDGE}",
            "integration": ProviderError("down"),
        }
    )
    output = await _synthesize_with_transition(generator)

    assert output.integrated_chapter == (
        "林墨推门而入。大厅里积满灰尘。\n“有人吗？”\n"
        + BRIDGE
        + "\n他停下脚步。他缓缓拔出长剑。\n\n"
        + HOOK
    )
    assert output.unresolved_slots == []
    assert output.warnings == []
    assert "structure: 1 slots" in output.integration_notes
    assert "transitions: 1 generated" in output.integration_notes
    prompt = generator.calls_for("transition")[0]["prompt"]
    assert "[TRANSITION_NIGHT]" in prompt
    assert "“有人吗？”" in prompt and "他停下脚步。" in prompt


@pytest.mark.asyncio
async def test_transition_without_source_stays_visible_and_warns_once(make_generator):
    generator = make_generator(
        {"hook": HOOK, "transition": ProviderError("down"), "integration": ProviderError("down")}
    )
    output = await _synthesize_with_transition(generator)

    assert output.assembly_mode == "deterministic"
    assert output.integrated_chapter.count("[TRANSITION_NIGHT]") == 1
    assert output.warnings == ["unresolved slot: TRANSITION_NIGHT"]


@pytest.mark.asyncio
async def test_transition_text_must_be_short_and_requested(make_generator):
    reply = "[TRANSITION_NIGHT]: " + "夜" * 80 + "\n[ACTION_DRAW]: 他转身就跑。"
    generator = make_generator(
        {"hook": HOOK, "transition": reply, "integration": ProviderError("down")}
    )
    output = await _synthesize_with_transition(generator)

    assert "他缓缓拔出长剑。" in output.integrated_chapter
    assert "他转身就跑。" not in output.integrated_chapter
    assert [slot.slot_id for slot in output.unresolved_slots] == ["TRANSITION_NIGHT"]


@pytest.mark.asyncio
async def test_assisted_assembly_may_bridge_unfilled_transition(make_generator):
    assisted = (
        "林墨推门而入。大厅里积满灰尘。\n“有人吗？”\n"
        + BRIDGE
        + "\n他停下脚步。他缓缓拔出长剑。\n\n"
        + HOOK
    )
    generator = make_generator(
        {"hook": HOOK, "transition": ProviderError("down"), "integration": assisted}
    )
    output = await _synthesize_with_transition(generator)

    assert output.assembly_mode == "assisted"
    assert output.integrated_chapter == assisted
    assert output.unresolved_slots == []
    assert output.warnings == []


@pytest.mark.asyncio
async def test_assisted_assembly_deleting_transition_is_rejected(make_generator):
    deleted = "林墨推门而入。大厅里积满灰尘。\n“有人吗？”\n他停下脚步。他缓缓拔出长剑。\n\n" + HOOK
    generator = make_generator(
        {"hook": HOOK, "transition": ProviderError("down"), "integration": deleted}
    )
    output = await _synthesize_with_transition(generator)

    assert output.assembly_mode == "deterministic"
    assert output.warnings == ["unresolved slot: TRANSITION_NIGHT"]


def test_is_bridged_needs_text_between_neighbours():
    draft = "“有人吗？”\n[TRANSITION_NIGHT]\n他停下脚步。"
    assert is_bridged(draft, "“有人吗？”" + BRIDGE + "他停下脚步。", "TRANSITION_NIGHT")
    assert not is_bridged(draft, "“有人吗？”\n他停下脚步。", "TRANSITION_NIGHT")
    assert not is_bridged(draft, "全都改写了。", "TRANSITION_NIGHT")


def test_strip_end_marks_and_find_closing_hook():
    assert strip_end_marks("正文。\n\n【未完待续】\n") == "正文。"
    assert strip_end_marks("正文。\n（本章完）") == "正文。"
    assert find_closing_hook(BODY + "\n\n就在此时 身后的门无声地关上了！", [HOOK]) == HOOK
    assert find_closing_hook(BODY, [HOOK]) is None


@pytest.mark.asyncio
async def test_assisted_altered_hook_is_not_duplicated(make_generator):
    assisted = BODY + "\n\n就在此时，身后的门无声地关上了！"
    generator = make_generator({"hook": HOOK, "integration": assisted})
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。", ACTION_DRAW="他缓缓拔出长剑。"),
        1,
        "夜探古宅",
    )
    assert output.assembly_mode == "assisted"
    assert output.integrated_chapter == assisted
    assert output.hooks_added == [HOOK]


@pytest.mark.asyncio
async def test_assisted_end_mark_is_dropped_before_hook_check(make_generator):
    generator = make_generator({"hook": HOOK, "integration": BODY + "\n\n" + HOOK + "\n\n（本章完）"})
    output = await SynthesisAgent(generator).synthesize(
        build_framework(SKELETON),
        _character(DIALOGUE_CALL="“有人吗？”"),
        _scene(DESCRIPTION_HALL="大厅里积满灰尘。", ACTION_DRAW="他缓缓拔出长剑。"),
        1,
        "夜探古宅",
    )
    assert output.integrated_chapter == BODY + "\n\n" + HOOK
    assert output.integrated_chapter.count("身后的门") == 1
