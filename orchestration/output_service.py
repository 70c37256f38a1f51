# orchestration/output_service.py
"""Service for persisting chapter results and debug outputs."""

from __future__ import annotations

from typing import Any

import structlog
from storage.file_manager import FileManager

from models import ChapterGenerationResult

logger = structlog.get_logger(__name__)


class OutputService:
    """Write generated chapters, their result records and debug artifacts."""

    def __init__(self, file_manager: FileManager | None = None) -> None:
        self.file_manager = file_manager or FileManager()

    async def save_chapter_result(self, result: ChapterGenerationResult) -> bool:
        """Persist a chapter result; the chapter body is written only on success."""
        chapter_number = result.chapter_number
        result_json = result.model_dump_json(indent=2)
        try:
            if result.success:
                await self.file_manager.save_chapter_and_result(
                    chapter_number, result.chapter_data.content, result_json
                )
                logger.info("Saved chapter text and result record for ch %s.", chapter_number)
            else:
                await self.file_manager.save_result(chapter_number, result_json)
                logger.info("Saved failure record for ch %s.", chapter_number)
        except OSError as exc:
            logger.error(
                "Failed writing chapter files for ch %s: %s",
                chapter_number,
                exc,
                exc_info=True,
            )
            return False
        return True

    async def save_debug_output(
        self, chapter_number: int, stage_description: str, content: Any
    ) -> None:
        """Write debug data to disk; failures are logged and never raised."""
        try:
            await self.file_manager.save_debug_output(
                chapter_number, stage_description, content
            )
        except OSError as exc:
            logger.error(
                "Failed to save debug output (Ch %s, Stage '%s'): %s",
                chapter_number,
                stage_description,
                exc,
                exc_info=True,
            )
            return
        logger.debug(
            "Saved debug output for Ch %s, Stage '%s'", chapter_number, stage_description
        )
