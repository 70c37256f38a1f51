import json

import pytest
from agents.editing_agent import (
    FORCE_REGENERATE_NOTE,
    LIGHT_POLISH_NOTES,
    EditingAgent,
    heuristic_decision,
)
from core.errors import ProviderError

CHAPTER = "林墨推开门。“有人吗？”[DIALOGUE_LATER]"


def _decision(strategy, confidence=80):
    return json.dumps(
        {
            "strategy": strategy,
            "reasoning": "测试",
            "priority": "medium",
            "estimatedChanges": "10%",
            "confidence": confidence,
        },
        ensure_ascii=False,
    )


def _evaluation(score):
    return json.dumps(
        {
            "qualityScore": score,
            "changesApplied": ["收紧句子"],
            "planElementsPresent": [],
            "remainingIssues": [],
        },
        ensure_ascii=False,
    )


@pytest.mark.parametrize(
    ("notes", "strategy", "confidence"),
    [
        ("", "skip", 90),
        ("这是一个strong chapter", "skip", 90),
        ("反派过于平淡", "regenerate", 75),
        ("比喻太多", "targeted-edit", 70),
        ("整体还行", "polish", 65),
    ],
)
def test_heuristic_decision(notes, strategy, confidence):
    decision = heuristic_decision(notes)
    assert (decision.strategy, decision.confidence) == (strategy, confidence)


@pytest.mark.asyncio
async def test_skip_makes_exactly_one_decide_call(make_generator, chapter_plan):
    generator = make_generator({"editing_decide": _decision("skip", 95)})
    result = await EditingAgent(generator).refine(CHAPTER, chapter_plan, "章节很棒", 1)
    assert result.content == CHAPTER
    assert result.decide_calls == 1
    assert result.quality_score == 95
    assert [call["task"] for call in generator.calls] == ["editing_decide"]
    assert generator.calls[0]["response_schema"]["required"][0] == "strategy"


@pytest.mark.asyncio
async def test_quality_threshold_stops_the_loop(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": _decision("targeted-edit"),
            "editing_targeted": "林墨推开门。“谁在那儿？”[DIALOGUE_LATER]",
            "editing_evaluate": _evaluation(82),
        }
    )
    result = await EditingAgent(generator, max_iterations=3).refine(
        CHAPTER, chapter_plan, "比喻太多", 1
    )
    assert result.decide_calls == 1
    assert result.quality_score == 82
    assert result.changes_applied == ["收紧句子"]
    assert len(result.diffs) == 1
    assert result.diffs[0].strategy == "targeted-edit"
    assert "[DIALOGUE_LATER]" in result.content


@pytest.mark.asyncio
async def test_loop_is_bounded_by_max_iterations(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": _decision("targeted-edit"),
            "editing_targeted": lambda prompt: prompt[-10:] + "改",
            "editing_evaluate": _evaluation(40),
        }
    )
    result = await EditingAgent(generator, max_iterations=2).refine(
        CHAPTER, chapter_plan, "比喻太多", 1
    )
    assert result.decide_calls == 2
    assert result.iterations == 2
    assert len(generator.calls_for("editing_decide")) == 2
    assert [entry.kind for entry in result.log].count("iteration") == 1
    second_decide_prompt = generator.calls_for("editing_decide")[1]["prompt"]
    assert "更深层的结构性修改" in second_decide_prompt


@pytest.mark.asyncio
async def test_low_confidence_escalates_to_regenerate(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": _decision("polish", confidence=40),
            "editing_polish": "润色后的文本",
            "editing_evaluate": _evaluation(50),
        }
    )
    await EditingAgent(generator, max_iterations=2).refine(CHAPTER, chapter_plan, "整体还行", 1)
    second_decide_prompt = generator.calls_for("editing_decide")[1]["prompt"]
    assert FORCE_REGENERATE_NOTE.strip() in second_decide_prompt


@pytest.mark.asyncio
async def test_decide_failure_falls_back_to_heuristic(make_generator, chapter_plan):
    generator = make_generator({"editing_decide": ProviderError("down")})
    result = await EditingAgent(generator).refine(CHAPTER, chapter_plan, "", 1)
    assert result.decision.strategy == "skip"
    assert result.content == CHAPTER


@pytest.mark.asyncio
async def test_unparsable_decision_falls_back_to_heuristic(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": "我觉得应该润色一下",
            "editing_polish": "",
            "editing_evaluate": _evaluation(90),
        }
    )
    result = await EditingAgent(generator).refine(CHAPTER, chapter_plan, "整体还行", 1)
    assert result.decision.strategy == "polish"
    assert result.content == CHAPTER
    assert result.diffs == []


@pytest.mark.asyncio
async def test_evaluation_failure_uses_default_score(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": _decision("polish"),
            "editing_polish": "润色后的文本",
            "editing_evaluate": ProviderError("down"),
        }
    )
    result = await EditingAgent(generator).refine(CHAPTER, chapter_plan, "整体还行", 1)
    assert result.quality_score == 75
    assert result.changes_applied == ["Edits applied"]
    assert result.content == "润色后的文本"


@pytest.mark.asyncio
async def test_polish_biased_mode_downgrades_regenerate(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": _decision("regenerate"),
            "editing_polish": "轻度润色版本",
            "editing_evaluate": _evaluation(85),
        }
    )
    result = await EditingAgent(generator).refine(
        CHAPTER, chapter_plan, "反派过于平淡", 1, polish_biased=True
    )
    assert result.decision.strategy == "polish"
    assert generator.calls_for("editing_regenerate") == []
    assert LIGHT_POLISH_NOTES in generator.calls_for("editing_decide")[0]["prompt"]
    assert result.content == "轻度润色版本"


@pytest.mark.asyncio
async def test_regenerate_prompt_preserves_plan(make_generator, chapter_plan):
    generator = make_generator(
        {
            "editing_decide": _decision("regenerate"),
            "editing_regenerate": "全新的章节",
            "editing_evaluate": _evaluation(90),
        }
    )
    result = await EditingAgent(generator).refine(CHAPTER, chapter_plan, "反派过于平淡", 1)
    assert result.content == "全新的章节"
    assert chapter_plan.title in generator.calls_for("editing_regenerate")[0]["prompt"]
