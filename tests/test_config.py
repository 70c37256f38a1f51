# tests/test_config.py

import pytest
from config import ModelAssignments, SlotweaveSettings


def test_dynamic_model_defaults_follow_base_models():
    cfg = SlotweaveSettings(
        NARRATOR_MODEL="narrator",
        SMALL_MODEL="small",
        MEDIUM_MODEL="medium",
        LARGE_MODEL="large",
    )
    assert cfg.STRUCTURE_MODEL == "narrator"
    assert cfg.HOOK_MODEL == "small"
    assert cfg.TRANSITION_MODEL == "small"
    assert cfg.INTEGRATION_MODEL == "medium"
    assert cfg.EVALUATION_MODEL == "large"


def test_explicit_model_wins_over_default():
    cfg = SlotweaveSettings(NARRATOR_MODEL="narrator", SCENE_MODEL="scene-model")
    assert cfg.SCENE_MODEL == "scene-model"
    assert cfg.model_assignments().scene.model == "scene-model"


def test_model_assignments_cover_every_task():
    assignments = SlotweaveSettings(TEMPERATURE_INTEGRATION=0.1).model_assignments()
    assert ModelAssignments.task_names() == [
        "structure",
        "character",
        "scene",
        "hook",
        "transition",
        "integration",
        "editing_decide",
        "editing_targeted",
        "editing_regenerate",
        "editing_polish",
        "editing_evaluate",
    ]
    assert assignments.for_task("integration").temperature == 0.1
    assert assignments.for_task("hook").max_tokens == 1024
    assert assignments.for_task("transition").max_tokens == 512


def test_unknown_task_raises_key_error():
    with pytest.raises(KeyError):
        SlotweaveSettings().model_assignments().for_task("drafting")
