"""Live progress panel and per-chapter phase tables rendered with Rich."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Optional

from config import settings
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from models import ChapterGenerationResult

_STATUS_LINES = {
    "chapter": "Current Chapter: N/A",
    "step": "Current Step: Initializing...",
    "chapters": "Chapters: 0 ok / 0 failed",
    "tokens": "Tokens Generated (this run): 0",
    "elapsed": "Elapsed Time: 00:00:00",
}


def phase_table(result: ChapterGenerationResult) -> Table:
    """Per-phase outcome table for one chapter result."""
    table = Table(title=f"Chapter {result.chapter_number}: {result.chapter_data.title}")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Notes")
    for phase in result.phases:
        status = "[green]ok[/green]" if phase.success else "[red]failed[/red]"
        notes = "; ".join(phase.errors or phase.warnings)
        table.add_row(phase.name, status, f"{phase.duration_ms:.0f}", notes[:120])
    metrics = result.metadata.quality_metrics
    table.caption = (
        f"coherence {metrics.coherence} / integration {metrics.integration} / "
        f"polish {metrics.polish}"
    )
    return table


class RichDisplayManager:
    """Progress panel for a chapter run.

    Without ``ENABLE_RICH_PROGRESS`` every method is a no-op so the runner can
    call it unconditionally.
    """

    def __init__(
        self,
        usage_provider: Callable[[], int] | None = None,
        console: Console | None = None,
    ) -> None:
        self.console = console or Console()
        self.usage_provider = usage_provider
        self.lines: dict[str, Text] = {key: Text(text) for key, text in _STATUS_LINES.items()}
        self.succeeded = 0
        self.failed = 0
        self.run_start_time = 0.0
        self.live: Optional[Live] = None
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        if settings.ENABLE_RICH_PROGRESS:
            panel = Panel(
                Group(*self.lines.values()),
                title="Slotweave Progress",
                border_style="blue",
                expand=True,
            )
            self.live = Live(
                panel,
                console=self.console,
                refresh_per_second=4,
                transient=False,
                redirect_stdout=False,
                redirect_stderr=False,
            )

    @property
    def enabled(self) -> bool:
        return self.live is not None

    def start(self) -> None:
        if not self.enabled:
            return
        self.run_start_time = time.time()
        self.live.start()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._auto_refresh())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self.live and self.live.is_started:
            self.live.stop()

    async def _auto_refresh(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            await asyncio.sleep(1)

    def update(self, chapter_num: Optional[int] = None, step: Optional[str] = None) -> None:
        if not self.enabled:
            return
        if chapter_num is not None:
            self.lines["chapter"].plain = f"Current Chapter: {chapter_num}"
        if step is not None:
            self.lines["step"].plain = f"Current Step: {step}"
        tokens = self.usage_provider() if self.usage_provider else 0
        self.lines["tokens"].plain = f"Tokens Generated (this run): {tokens:,}"
        elapsed = time.gmtime(time.time() - self.run_start_time)
        self.lines["elapsed"].plain = f"Elapsed Time: {time.strftime('%H:%M:%S', elapsed)}"

    def show_result(self, result: ChapterGenerationResult) -> None:
        if result.success:
            self.succeeded += 1
        else:
            self.failed += 1
        self.lines["chapters"].plain = f"Chapters: {self.succeeded} ok / {self.failed} failed"
        if self.enabled:
            self.console.print(phase_table(result))
