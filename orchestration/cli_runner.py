# orchestration/cli_runner.py
"""Command-line runner: load inputs, wire the pipeline and generate chapters."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import structlog
from config import settings
from pydantic import TypeAdapter, ValidationError
from storage.file_manager import FileManager
from ui.rich_display import RichDisplayManager
from utils.logging import setup_logging

from core.llm_interface import OpenAICompatibleGenerator
from models import ChapterGenerationResult, ChapterPlan, GenerationOptions
from orchestration.agent_coordinator import AgentCoordinator
from orchestration.chapter_generation_runner import ChapterGenerationRunner
from orchestration.coherence_store import InMemoryCoherenceStore
from orchestration.output_service import OutputService
from processing.repetition_tracker import RepetitionTracker

logger = structlog.get_logger(__name__)

_PLAN_LIST = TypeAdapter(list[ChapterPlan])


@dataclass(frozen=True)
class RunRequest:
    plans_path: str
    outline_path: str | None = None
    characters_path: str | None = None
    start_chapter: int = 1
    enable_light_polish: bool = settings.ENABLE_LIGHT_POLISH
    enable_fallback_retry: bool = settings.ENABLE_FALLBACK_RETRY


def parse_plans(raw: str) -> list[ChapterPlan]:
    """Accept either a JSON list of plans or an object with a ``chapters`` list."""
    data: Any = json.loads(raw)
    if isinstance(data, dict):
        data = data.get("chapters", [])
    return _PLAN_LIST.validate_python(data)


def parse_characters(raw: str) -> dict[str, str]:
    """Accept ``{name: description}`` or a list of ``{"name", "description"}`` objects."""
    data: Any = json.loads(raw)
    if isinstance(data, dict):
        return {str(name): str(description or "") for name, description in data.items()}
    characters: dict[str, str] = {}
    for entry in data:
        if isinstance(entry, dict) and entry.get("name"):
            characters[str(entry["name"])] = str(entry.get("description", ""))
    return characters


async def _run(request: RunRequest) -> list[ChapterGenerationResult]:
    file_manager = FileManager()
    plans = parse_plans(await file_manager.read_text(request.plans_path))
    outline = (
        await file_manager.read_text(request.outline_path) if request.outline_path else ""
    )
    characters = (
        parse_characters(await file_manager.read_text(request.characters_path))
        if request.characters_path
        else None
    )

    assignments = settings.model_assignments()
    generator = OpenAICompatibleGenerator(assignments)
    output_service = OutputService(file_manager)
    coordinator = AgentCoordinator(
        generator,
        InMemoryCoherenceStore(tracker=RepetitionTracker()),
        assignments,
        GenerationOptions(
            enable_light_polish=request.enable_light_polish,
            enable_consistency_check=settings.ENABLE_CONSISTENCY_CHECK,
            enable_fallback_retry=request.enable_fallback_retry,
            max_retries=settings.COORDINATOR_MAX_RETRIES,
        ),
        debug_sink=output_service.save_debug_output,
    )
    display = RichDisplayManager(usage_provider=lambda: generator.usage.total.total_tokens)
    runner = ChapterGenerationRunner(
        coordinator=coordinator,
        plans=plans,
        outline=outline,
        characters=characters,
        start_chapter=request.start_chapter,
        output_service=output_service,
        display=display,
    )
    display.start()
    try:
        return await runner.run()
    finally:
        await display.stop()
        await generator.aclose()
        logger.info("Token usage by task: %s", generator.usage.snapshot())


def run(request: RunRequest) -> int:
    """Run the pipeline; returns a process exit code."""
    setup_logging()
    try:
        results = asyncio.run(_run(request))
    except KeyboardInterrupt:
        logger.info("Slotweave shutting down gracefully due to KeyboardInterrupt...")
        return 130
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        logger.critical("Could not load run inputs: %s", exc)
        return 2
    failed = [result.chapter_number for result in results if not result.success]
    if failed:
        logger.error("Chapters failed: %s", failed)
        return 1
    logger.info("Generated %s chapters.", len(results))
    return 0
