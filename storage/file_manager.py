# storage/file_manager.py
"""Asynchronous persistence for chapter text, result records and debug artifacts.

Blocking file I/O runs in the default executor so the pipeline's event loop
keeps serving LLM calls while a chapter is written.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from typing import Any, TypeVar

from config import CHAPTER_LOGS_DIR, CHAPTERS_DIR, DEBUG_OUTPUTS_DIR

T = TypeVar("T")


def safe_stage_name(stage_description: str) -> str:
    """Reduce a free-form stage label to characters safe for a file name."""
    return "".join(ch if ch.isalnum() or ch in "_-" else "_" for ch in stage_description)


def _write(file_path: str, content: str) -> None:
    os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)
    with open(file_path, "w", encoding="utf-8") as f:
        f.write(content)


def _read(file_path: str) -> str:
    with open(file_path, encoding="utf-8") as f:
        return f.read()


class FileManager:
    """Owns the output directory layout of a run."""

    def __init__(
        self,
        chapters_dir: str = CHAPTERS_DIR,
        logs_dir: str = CHAPTER_LOGS_DIR,
        debug_dir: str = DEBUG_OUTPUTS_DIR,
    ) -> None:
        self.chapters_dir = chapters_dir
        self.logs_dir = logs_dir
        self.debug_dir = debug_dir
        for directory in (chapters_dir, logs_dir, debug_dir):
            os.makedirs(directory, exist_ok=True)

    def chapter_path(self, chapter_number: int) -> str:
        return os.path.join(self.chapters_dir, f"chapter_{chapter_number:04d}.md")

    def result_path(self, chapter_number: int) -> str:
        return os.path.join(self.logs_dir, f"chapter_{chapter_number:04d}_result.json")

    def debug_path(self, chapter_number: int, stage_description: str) -> str:
        name = f"chapter_{chapter_number:04d}_{safe_stage_name(stage_description)}.txt"
        return os.path.join(self.debug_dir, name)

    async def _offload(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def save_chapter_and_result(
        self, chapter_number: int, text: str, result_json: str
    ) -> None:
        """Write the chapter body, then its result record."""
        await self._offload(_write, self.chapter_path(chapter_number), text)
        await self._offload(_write, self.result_path(chapter_number), result_json)

    async def save_result(self, chapter_number: int, result_json: str) -> None:
        await self._offload(_write, self.result_path(chapter_number), result_json)

    async def save_debug_output(
        self, chapter_number: int, stage_description: str, content: Any
    ) -> None:
        """Write one pipeline stage's intermediate output; blank content is skipped."""
        if content is None:
            return
        text = content if isinstance(content, str) else str(content)
        if not text.strip():
            return
        await self._offload(_write, self.debug_path(chapter_number, stage_description), text)

    async def read_text(self, file_path: str) -> str:
        return await self._offload(_read, file_path)
