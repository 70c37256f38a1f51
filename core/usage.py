# core/usage.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field


@dataclass
class TokenUsage:
    """LLM token usage metrics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    calls: int = 0

    def add(self, usage: TokenUsage | dict[str, int] | None) -> None:
        """Accumulate usage values from another instance or a provider ``usage`` dict."""
        if not usage:
            return
        if isinstance(usage, TokenUsage):
            self.prompt_tokens += usage.prompt_tokens
            self.completion_tokens += usage.completion_tokens
            self.total_tokens += usage.total_tokens
            self.calls += usage.calls
            return
        self.prompt_tokens += usage.get("prompt_tokens", 0) or 0
        self.completion_tokens += usage.get("completion_tokens", 0) or 0
        self.total_tokens += usage.get("total_tokens", 0) or 0
        self.calls += 1

    def get_if_used(self) -> dict[str, int] | None:
        if self.prompt_tokens or self.completion_tokens or self.total_tokens:
            return {
                "prompt_tokens": self.prompt_tokens,
                "completion_tokens": self.completion_tokens,
                "total_tokens": self.total_tokens,
            }
        return None


@dataclass
class UsageLedger:
    """Token usage grouped by pipeline task."""

    by_task: dict[str, TokenUsage] = field(
        default_factory=lambda: defaultdict(TokenUsage)
    )

    def record(self, task: str, usage: dict[str, int] | None) -> None:
        if usage:
            self.by_task[task].add(usage)

    @property
    def total(self) -> TokenUsage:
        total = TokenUsage()
        for usage in self.by_task.values():
            total.add(usage)
        return total

    def snapshot(self) -> dict[str, dict[str, int]]:
        return {
            task: used
            for task, usage in sorted(self.by_task.items())
            if (used := usage.get_if_used()) is not None
        }
