# processing/repetition_tracker.py
"""Cross-chapter phrase statistics.

Counts survive between runs as a flat ``{phrase: count}`` JSON object so a
resumed run still knows which phrases earlier chapters leaned on.
"""

from __future__ import annotations

import json
import os
import re
from collections import Counter

import structlog
from config import REPETITION_STATS_FILE_PATH, settings

logger = structlog.get_logger(__name__)

_CJK_RUN_RE = re.compile(r"[一-鿿]+")
_WORD_RE = re.compile(r"[A-Za-z0-9']+")


def is_mostly_cjk(text: str) -> bool:
    stripped = text.strip()
    if not stripped:
        return False
    return sum(len(run) for run in _CJK_RUN_RE.findall(text)) >= len(stripped) * 0.3


def phrase_ngrams(text: str, n: int) -> list[str]:
    """Character n-grams inside CJK runs, or word n-grams for spaced text."""
    if is_mostly_cjk(text):
        return [
            run[i : i + n]
            for run in _CJK_RUN_RE.findall(text)
            for i in range(len(run) - n + 1)
        ]
    tokens = _WORD_RE.findall(text.lower())
    return [" ".join(tokens[i : i + n]) for i in range(len(tokens) - n + 1)]


def load_phrase_counts(file_path: str) -> Counter[str]:
    """Read saved counts; a missing or unreadable file yields an empty counter."""
    if not os.path.exists(file_path):
        return Counter()
    try:
        with open(file_path, encoding="utf-8") as f:
            data = json.load(f)
        return Counter({str(phrase): int(count) for phrase, count in data.items()})
    except (OSError, json.JSONDecodeError, ValueError, AttributeError) as exc:
        logger.error("Failed loading repetition stats from %s", file_path, exc_info=exc)
        return Counter()


class RepetitionTracker:
    """Running n-gram counts over every chapter committed so far.

    With ``file_path=None`` counts live in memory only.
    """

    def __init__(
        self,
        file_path: str | None = REPETITION_STATS_FILE_PATH,
        n: int = settings.REPETITION_TRACKER_NGRAM_SIZE,
    ) -> None:
        self.file_path = file_path
        self.n = n
        self.phrase_counts: Counter[str] = (
            load_phrase_counts(file_path) if file_path else Counter()
        )

    def save(self) -> None:
        if not self.file_path:
            return
        try:
            with open(self.file_path, "w", encoding="utf-8") as f:
                json.dump(self.phrase_counts, f, ensure_ascii=False)
        except OSError as exc:
            logger.error("Failed saving repetition stats", exc_info=exc)

    def update_from_text(self, text: str) -> None:
        self.phrase_counts.update(phrase_ngrams(text, self.n))
        self.save()

    def _threshold(self, threshold: int | None) -> int:
        return settings.REPETITION_TRACKER_THRESHOLD if threshold is None else threshold

    def find_overused(self, text: str, threshold: int | None = None) -> set[str]:
        """Phrases of ``text`` already used at least ``threshold`` times."""
        limit = self._threshold(threshold)
        return {
            phrase
            for phrase in set(phrase_ngrams(text, self.n))
            if self.phrase_counts[phrase] >= limit
        }

    def overused_phrases(self, limit: int = 10, threshold: int | None = None) -> list[str]:
        """Most frequent phrases at or above ``threshold``, most used first."""
        floor = self._threshold(threshold)
        return [
            phrase
            for phrase, count in self.phrase_counts.most_common(limit)
            if count >= floor
        ]
