import pytest
from agents.character_agent import CharacterAgent, slot_purpose
from agents.scene_agent import SceneAgent, detect_scene_type, slot_type
from core.errors import PhaseFailure, ProviderError
from models import ChapterContext, ChapterPlan, ToneGuidance
from processing.slot_markers import build_framework

FRAMEWORK = build_framework(
    "[DESCRIPTION_OPENING] [DIALOGUE_GREETING] [INTERNAL_SUSPICION] [ACTION_CONFRONTATION]"
)
CONTEXT = ChapterContext(chapter_number=1)


def test_slot_purpose_and_type_tables():
    assert slot_purpose("DIALOGUE_CONFLICT_1") == "对抗，紧张升级"
    assert slot_purpose("INTERNAL_HERO") == "角色情感状态和想法"
    assert slot_type("ACTION_ESCAPE") == "移动与追逐序列"
    assert slot_type("DESCRIPTION_ROOM") == "环境描写与感官细节"


@pytest.mark.parametrize(
    ("summary", "expected"),
    [
        ("两派弟子在山门前战斗", "动作"),
        ("他终于发现了师父的秘密", "揭示"),
        ("她回忆起童年", "情感"),
        ("众人启程前往京城", "铺垫"),
    ],
)
def test_detect_scene_type(summary, expected):
    assert detect_scene_type(ChapterPlan(title="章", summary=summary)) == expected


@pytest.mark.asyncio
async def test_character_agent_keeps_only_owned_slots(make_generator, chapter_plan):
    generator = make_generator(
        {
            "character": (
                "[DIALOGUE_GREETING]: “有人吗？”\n"
                "[INTERNAL_SUSPICION]: 这里太安静了。\n"
                "[ACTION_CONFRONTATION]: 他一脚踹开门。"
            )
        }
    )
    output = await CharacterAgent(generator).generate(1, chapter_plan, CONTEXT, FRAMEWORK)
    assert output.dialogue == {"DIALOGUE_GREETING": "“有人吗？”"}
    assert output.internal == {"INTERNAL_SUSPICION": "这里太安静了。"}
    assert output.foreign_slots == {"ACTION_CONFRONTATION": "他一脚踹开门。"}
    assert output.warnings == []
    assert output.metadata.confidence == 80
    prompt = generator.calls[0]["prompt"]
    assert "[DIALOGUE_GREETING]" in prompt
    assert "[DESCRIPTION_OPENING]" not in prompt


@pytest.mark.asyncio
async def test_character_agent_warns_about_missing_slots(make_generator, chapter_plan):
    generator = make_generator({"character": "[DIALOGUE_GREETING]: “有人吗？”"})
    output = await CharacterAgent(generator).generate(1, chapter_plan, CONTEXT, FRAMEWORK)
    assert output.warnings == ["character slots left empty: INTERNAL_SUSPICION"]


@pytest.mark.asyncio
async def test_character_agent_unparsable_response_yields_empty_map(make_generator, chapter_plan):
    generator = make_generator({"character": "我不知道该写什么。"})
    output = await CharacterAgent(generator).generate(1, chapter_plan, CONTEXT, FRAMEWORK)
    assert output.slot_map == {}
    assert output.warnings == ["character response could not be parsed into slots"]


@pytest.mark.asyncio
async def test_character_agent_skips_call_without_owned_slots(make_generator, chapter_plan):
    generator = make_generator()
    output = await CharacterAgent(generator).generate(
        1, chapter_plan, CONTEXT, build_framework("[ACTION_A] [DESCRIPTION_B]")
    )
    assert generator.calls == []
    assert output.warnings == ["no character slots in skeleton"]


@pytest.mark.asyncio
async def test_character_agent_provider_error_is_phase_failure(make_generator, chapter_plan):
    generator = make_generator({"character": ProviderError("down")})
    with pytest.raises(PhaseFailure):
        await CharacterAgent(generator).generate(1, chapter_plan, CONTEXT, FRAMEWORK)


@pytest.mark.asyncio
async def test_scene_agent_fills_descriptions_and_actions(make_generator, chapter_plan):
    generator = make_generator(
        {
            "scene": (
                "[DESCRIPTION_OPENING]: 古宅的屋檐下挂满蛛网。\n"
                "[ACTION_CONFRONTATION]: 黑影从梁上扑下。\n"
                "[DIALOGUE_GREETING]: “谁？”"
            )
        }
    )
    tone = ToneGuidance(tone="tense", description_length="short")
    output = await SceneAgent(generator).generate(
        1, chapter_plan, CONTEXT, FRAMEWORK, tone=tone
    )
    assert output.descriptions == {"DESCRIPTION_OPENING": "古宅的屋檐下挂满蛛网。"}
    assert output.actions == {"ACTION_CONFRONTATION": "黑影从梁上扑下。"}
    assert output.foreign_slots == {"DIALOGUE_GREETING": "“谁？”"}
    assert output.tone_adaptation == "铺垫"
    assert "tense" in generator.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_scene_agent_skips_call_without_owned_slots(make_generator, chapter_plan):
    generator = make_generator()
    output = await SceneAgent(generator).generate(
        1, chapter_plan, CONTEXT, build_framework("[DIALOGUE_A]")
    )
    assert generator.calls == []
    assert output.slot_map == {}
