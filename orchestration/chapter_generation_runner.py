from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING

import structlog
from config import settings

from models import ChapterGenerationResult, ChapterPlan
from orchestration.agent_coordinator import AgentCoordinator
from orchestration.output_service import OutputService

if TYPE_CHECKING:  # pragma: no cover - type hints
    from ui.rich_display import RichDisplayManager

logger = structlog.get_logger(__name__)


class RunnerState(Enum):
    """States for the chapter generation runner."""

    INIT = auto()
    GENERATE_CHAPTER = auto()
    HANDLE_ERROR = auto()
    FINISH = auto()


@dataclass
class ChapterGenerationRunner:
    """Generate a sequence of planned chapters one at a time using a state machine.

    Chapters run strictly one after another so the coherence store only ever
    sees a single pipeline.
    """

    coordinator: AgentCoordinator
    plans: list[ChapterPlan]
    outline: str = ""
    characters: dict[str, str] | None = None
    start_chapter: int = 1
    output_service: OutputService | None = None
    display: RichDisplayManager | None = None
    results: list[ChapterGenerationResult] = field(default_factory=list)
    chapters_written: int = 0
    state: RunnerState = RunnerState.INIT
    current_chapter_number: int = 0
    error: Exception | None = None

    async def run(self) -> list[ChapterGenerationResult]:
        """Execute the chapter generation loop."""
        while self.state != RunnerState.FINISH:
            if self.state == RunnerState.INIT:
                await self._init()
            elif self.state == RunnerState.GENERATE_CHAPTER:
                await self._generate_chapter()
            elif self.state == RunnerState.HANDLE_ERROR:
                await self._handle_error()
        return self.results

    def _update_display(self, step: str) -> None:
        if self.display is not None:
            self.display.update(chapter_num=self.current_chapter_number, step=step)

    async def _init(self) -> None:
        if not self.plans:
            logger.info("No chapter plans supplied. Nothing to generate.")
            self.state = RunnerState.FINISH
            return
        if self.start_chapter > 1:
            # The coordinator initializes the store only for chapter 1.
            await self.coordinator.store.initialize_from_outline(
                self.outline, self.characters, settings.DEFAULT_CHAPTER_COUNT
            )
        logger.info(
            "Generating %s chapters starting at chapter %s.",
            len(self.plans),
            self.start_chapter,
        )
        self.state = RunnerState.GENERATE_CHAPTER

    async def _generate_chapter(self) -> None:
        index = len(self.results)
        if index >= len(self.plans):
            self.state = RunnerState.FINISH
            return

        plan = self.plans[index]
        self.current_chapter_number = self.start_chapter + index
        logger.info(
            "--- Attempting Chapter %s (%s/%s): %s ---",
            self.current_chapter_number,
            index + 1,
            len(self.plans),
            plan.title,
        )
        self._update_display("Generating")

        try:
            result = await self.coordinator.generate_chapter(
                self.current_chapter_number, plan, self.outline, self.characters
            )
            self.results.append(result)
            if self.output_service is not None:
                await self.output_service.save_chapter_result(result)
        except Exception as e:
            self.error = e
            logger.critical(
                "Critical unhandled error during Chapter %s: %s",
                self.current_chapter_number,
                e,
                exc_info=True,
            )
            self._update_display("Critical Error - Halting Run")
            self.state = RunnerState.HANDLE_ERROR
            return

        if self.display is not None:
            self.display.show_result(result)
        if result.success:
            self.chapters_written += 1
            logger.info(
                "Chapter %s: processed. Final text length: %s chars.",
                self.current_chapter_number,
                len(result.chapter_data.content),
            )
            self._update_display("Done")
            self.state = RunnerState.GENERATE_CHAPTER
            return

        logger.error(
            "Chapter %s: generation failed (%s). Halting run.",
            self.current_chapter_number,
            result.error,
        )
        self._update_display("Failed - Halting Run")
        self.state = RunnerState.FINISH

    async def _handle_error(self) -> None:
        logger.critical("Error encountered in run: %s", self.error)
        self.state = RunnerState.FINISH
