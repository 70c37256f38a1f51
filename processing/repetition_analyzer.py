# processing/repetition_analyzer.py
"""Analyze chapter text for repeated phrases and substitute alternatives."""

from __future__ import annotations

from collections import Counter

import structlog
from config import settings

from models import RepetitionIssue, RepetitionReport
from processing.repetition_tracker import RepetitionTracker, phrase_ngrams

logger = structlog.get_logger(__name__)

ALTERNATIVE_PHRASES: dict[str, dict[str, str]] = {
    "metaphors": {
        "心中一紧": "心脏猛地收缩",
        "倒吸一口凉气": "呼吸一滞",
        "心脏猛地收缩": "心跳如擂鼓",
        "呼吸一滞": "呼吸困难",
        "心跳加速": "脉搏狂跳",
    },
    "sensoryDescriptions": {
        "刺鼻的血腥味": "令人作呕的铁锈味",
        "铁锈味弥漫": "金属气息扑鼻",
        "血腥气味": "腥甜的味道",
        "寒意袭来": "冷风拂面",
        "震耳欲聋": "轰鸣声响起",
    },
    "emotionalPhrases": {
        "恐惧笼罩": "焦虑蔓延",
        "惊恐万分": "心生畏惧",
        "紧张不安": "忐忑不安",
    },
}

_SEVERITY_RANK = {"none": 0, "low": 1, "medium": 2, "high": 3}


def alternative_phrase(phrase: str, category: str) -> str:
    table = ALTERNATIVE_PHRASES.get(category, {})
    if phrase in table:
        return table[phrase]
    for other in ALTERNATIVE_PHRASES.values():
        if phrase in other:
            return other[phrase]
    return f"{phrase} [已变体]"


def replace_repeated_phrases(text: str, report: RepetitionReport) -> tuple[str, int]:
    """Keep the first occurrence of each high-severity phrase and vary the rest."""
    replaced = 0
    for issue in report.issues:
        if issue.severity != "high" or not issue.phrase or issue.phrase not in text:
            continue
        first = text.index(issue.phrase) + len(issue.phrase)
        head, tail = text[:first], text[first:]
        occurrences = tail.count(issue.phrase)
        if not occurrences:
            continue
        tail = tail.replace(issue.phrase, alternative_phrase(issue.phrase, issue.category))
        text = head + tail
        replaced += occurrences
        logger.info(
            "Replaced %s repeated occurrences of '%s'", occurrences, issue.phrase
        )
    return text, replaced


class RepetitionAnalyzer:
    """Detect repeated phrases within a chapter and against earlier chapters."""

    def __init__(
        self,
        min_chars: int = settings.REPETITION_PHRASE_MIN_CHARS,
        max_chars: int = settings.REPETITION_PHRASE_MAX_CHARS,
        threshold: int = settings.REPETITION_IN_CHAPTER_THRESHOLD,
        high_count: int = settings.REPETITION_HIGH_SEVERITY_COUNT,
        tracker: RepetitionTracker | None = None,
        cross_threshold: int | None = None,
    ) -> None:
        self.min_chars = min_chars
        self.max_chars = max_chars
        self.threshold = threshold
        self.high_count = high_count
        self.tracker = tracker
        self.cross_threshold = (
            cross_threshold
            if cross_threshold is not None
            else settings.REPETITION_TRACKER_THRESHOLD
        )

    def _known_phrase_issues(self, text: str) -> list[RepetitionIssue]:
        issues = []
        for category, table in ALTERNATIVE_PHRASES.items():
            for phrase in table:
                count = text.count(phrase)
                if count >= 2:
                    issues.append(
                        RepetitionIssue(
                            phrase=phrase,
                            count=count,
                            category=category,
                            severity="high" if count >= 3 else "medium",
                        )
                    )
        return issues

    def _generic_issues(self, text: str, skip: set[str]) -> list[RepetitionIssue]:
        frequent: dict[str, int] = {}
        for n in range(self.min_chars, self.max_chars + 1):
            counts = Counter(phrase_ngrams(text, n))
            frequent.update(
                (phrase, count)
                for phrase, count in counts.items()
                if count >= self.threshold
            )
        # Drop phrases contained in a longer phrase repeated just as often.
        maximal = {
            phrase: count
            for phrase, count in frequent.items()
            if not any(
                phrase != other and phrase in other and other_count >= count
                for other, other_count in frequent.items()
            )
            and not any(phrase in known or known in phrase for known in skip)
        }
        return [
            RepetitionIssue(
                phrase=phrase,
                count=count,
                category="phrases",
                severity="high" if count >= self.high_count else "medium",
            )
            for phrase, count in sorted(maximal.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

    def _cross_chapter_issues(self, text: str, skip: set[str]) -> list[RepetitionIssue]:
        if not self.tracker:
            return []
        return [
            RepetitionIssue(
                phrase=phrase,
                count=self.tracker.phrase_counts.get(phrase, 0),
                category="phrases",
                severity="low",
            )
            for phrase in sorted(self.tracker.find_overused(text, self.cross_threshold))
            if phrase not in skip
        ]

    async def analyze(self, text: str) -> RepetitionReport:
        """Return a repetition report for ``text``."""
        if not text.strip():
            return RepetitionReport()

        issues = self._known_phrase_issues(text)
        known = {issue.phrase for issue in issues}
        issues.extend(self._generic_issues(text, known))
        seen = {issue.phrase for issue in issues}
        issues.extend(self._cross_chapter_issues(text, seen))

        if not issues:
            return RepetitionReport()

        severity = max((issue.severity for issue in issues), key=_SEVERITY_RANK.__getitem__)
        total = sum(max(issue.count - 1, 0) for issue in issues if issue.severity != "low")
        logger.info(
            "RepetitionAnalyzer found %s repeated phrases (severity %s).",
            len(issues),
            severity,
        )
        return RepetitionReport(issues=issues, severity=severity, total_repetitions=total)
