# tests/conftest.py
import os
import sys

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Test defaults: a dummy API key and no live Rich panel
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("ENABLE_RICH_PROGRESS", "false")

import pytest  # noqa: E402


class ScriptedGenerator:
    """``TextGenerator`` double answering each task from a script.

    A task's script entry may be a string, an exception instance to raise, a
    callable taking the prompt, or a list of those consumed in order (the last
    entry repeats).
    """

    def __init__(self, script=None, default=""):
        self.script = dict(script or {})
        self.default = default
        self.calls = []

    def calls_for(self, task):
        return [call for call in self.calls if call["task"] == task]

    async def generate(
        self,
        prompt,
        *,
        system_instruction=None,
        response_schema=None,
        temperature=None,
        top_p=None,
        top_k=None,
        task=None,
    ):
        self.calls.append(
            {
                "prompt": prompt,
                "system_instruction": system_instruction,
                "response_schema": response_schema,
                "temperature": temperature,
                "top_p": top_p,
                "top_k": top_k,
                "task": task,
            }
        )
        entry = self.script.get(task, self.default)
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return entry(prompt)
        return entry


@pytest.fixture
def make_generator():
    return ScriptedGenerator


@pytest.fixture
def chapter_plan():
    from models import ChapterPlan

    return ChapterPlan(
        title="夜探古宅",
        summary="林墨潜入古宅寻找失踪的师兄",
        characterDevelopmentFocus="林墨从犹豫走向坚定",
        conflictType="人与未知",
        tensionLevel=6,
        primaryLocation="城郊古宅",
        emotionalToneTension="压抑而紧张",
    )
