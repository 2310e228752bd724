"""Decision memory: learning from past tool sequences.

Every task records the tools the model called and whether each one
worked. When the task ends the sequence is stored as a pattern keyed by
the keywords of the request. A later request that shares enough
keywords gets the proven tool sequences as suggestions, and sequences
that failed as warnings.

Patterns live in a `KeyValueStore` under a single key, so they survive
across sessions.

Example:
    >>> decisions = DecisionMemory(MemoryStore())
    >>> decisions.start_sequence("Add a spawn point to the lobby")
    >>> decisions.record_tool("create_instance", True)
    >>> decisions.end_sequence(True, "Spawn point added")
    >>> decisions.format_for_prompt("Add another spawn point in the lobby")
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from luxloop.memory.store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_KEY = "decision-memory"

_DAY = 86400.0

# Words too common to tell two requests apart
_STOP_WORDS = frozenset({
    "this", "that", "these", "those", "with", "from", "into", "have", "been",
    "will", "would", "could", "should", "about", "your", "their", "there",
    "what", "when", "where", "which", "while", "some", "more", "also", "just",
    "very", "each", "other", "than", "then", "only", "over", "such", "make",
    "made", "like", "want", "need", "please", "help", "sure", "okay", "yeah",
    "code", "file", "thing", "stuff", "work", "something", "anything",
})

_WORD_RE = re.compile(r"[a-z0-9]+")


def extract_keywords(text: str) -> set[str]:
    """Words of four or more letters that are neither numbers nor stop words."""
    return {
        word
        for word in _WORD_RE.findall(text.lower())
        if len(word) >= 4 and not word.isdigit() and word not in _STOP_WORDS
    }


# =============================================================================
# Types
# =============================================================================


@dataclass(slots=True)
class ToolStep:
    name: str
    success: bool
    summary: str = ""


@dataclass(slots=True)
class ToolSequence:
    """Tool calls recorded for the task in progress."""

    id: str
    task: str
    started: float
    steps: list[ToolStep] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if not self.steps:
            return 0.0
        return sum(1 for s in self.steps if s.success) / len(self.steps)


@dataclass(slots=True)
class DecisionPattern:
    """A finished tool sequence, stored for matching against later requests."""

    id: str
    keywords: tuple[str, ...]
    tools: tuple[str, ...]
    tool_success_rate: float
    duration: float
    summary: str
    created: float
    last_used: float
    use_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "keywords": list(self.keywords),
            "tools": list(self.tools),
            "tool_success_rate": self.tool_success_rate,
            "duration": self.duration,
            "summary": self.summary,
            "created": self.created,
            "last_used": self.last_used,
            "use_count": self.use_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecisionPattern:
        created = data.get("created", 0.0)
        return cls(
            id=data["id"],
            keywords=tuple(data.get("keywords", ())),
            tools=tuple(data.get("tools", ())),
            tool_success_rate=data.get("tool_success_rate", 0.0),
            duration=data.get("duration", 0.0),
            summary=data.get("summary", ""),
            created=created,
            last_used=data.get("last_used", created),
            use_count=data.get("use_count", 1),
        )


@dataclass(frozen=True, slots=True)
class PatternMatch:
    pattern: DecisionPattern
    score: float
    keyword_matches: int


@dataclass(frozen=True, slots=True)
class Suggestion:
    message: str
    confidence: float
    tools: tuple[str, ...]


# =============================================================================
# Memory
# =============================================================================


class DecisionMemory:
    """Successful and failed tool sequences persisted through a key-value store.

    Args:
        store: Where patterns are saved
        key: Store key for this memory
        max_patterns: Per outcome; least recently used successes and the
            oldest failures are dropped above this
        decay_days: Patterns unused for longer are dropped on load
        min_keyword_matches: Shared keywords needed before a pattern matches
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = DEFAULT_KEY,
        *,
        max_patterns: int = 50,
        decay_days: float = 30.0,
        min_keyword_matches: int = 2,
    ) -> None:
        self._store = store
        self._key = key
        self.max_patterns = max_patterns
        self.decay_days = decay_days
        self.min_keyword_matches = min_keyword_matches
        self._successful: list[DecisionPattern] | None = None
        self._failed: list[DecisionPattern] = []
        self._current: ToolSequence | None = None

    def _load(self) -> list[DecisionPattern]:
        if self._successful is None:
            data = self._store.load(self._key) or {}
            patterns = data.get("patterns", {})
            self._successful = self._parse(patterns.get("successful", []))
            self._failed = self._parse(patterns.get("failed", []))
            self.decay()
        return self._successful

    @staticmethod
    def _parse(raw: list[dict[str, Any]]) -> list[DecisionPattern]:
        parsed: list[DecisionPattern] = []
        for item in raw:
            try:
                parsed.append(DecisionPattern.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.warning("Skipping malformed decision pattern: %s", e)
        return parsed

    def _save(self) -> None:
        successful = self._load()
        while len(successful) > self.max_patterns:
            successful.remove(min(successful, key=lambda p: p.last_used))
        while len(self._failed) > self.max_patterns:
            self._failed.pop(0)

        self._store.save(
            self._key,
            {
                "version": 1,
                "patterns": {
                    "successful": [p.to_dict() for p in successful],
                    "failed": [p.to_dict() for p in self._failed],
                },
                "metadata": {"last_modified": time.time()},
            },
        )

    # =========================================================================
    # Recording
    # =========================================================================

    @property
    def recording(self) -> bool:
        return self._current is not None

    def start_sequence(self, task: str) -> None:
        """Start recording tool calls for `task`, dropping any unfinished sequence."""
        self._current = ToolSequence(id=uuid.uuid4().hex, task=task[:200], started=time.time())

    def record_tool(self, tool_name: str, success: bool, summary: str = "") -> None:
        if self._current is None:
            return
        self._current.steps.append(ToolStep(tool_name, success, summary[:100]))

    def end_sequence(self, success: bool, summary: str = "") -> DecisionPattern | None:
        """Store the current sequence as a successful or failed pattern.

        Returns:
            The stored pattern, or None when nothing was recording or the
            task used no tools.
        """
        sequence, self._current = self._current, None
        if sequence is None or not sequence.steps:
            return None

        now = time.time()
        pattern = DecisionPattern(
            id=sequence.id,
            keywords=tuple(sorted(extract_keywords(sequence.task))),
            tools=tuple(s.name for s in sequence.steps),
            tool_success_rate=sequence.success_rate,
            duration=now - sequence.started,
            summary=summary[:200],
            created=now,
            last_used=now,
        )
        successful = self._load()
        (successful if success else self._failed).append(pattern)
        self._save()
        logger.info(
            "Decision sequence stored",
            extra={"success": success, "tools": len(pattern.tools)},
        )
        return pattern

    # =========================================================================
    # Matching
    # =========================================================================

    def _score(self, pattern: DecisionPattern, keywords: set[str], now: float) -> tuple[float, int]:
        matches = len(keywords.intersection(pattern.keywords))
        if matches < self.min_keyword_matches:
            return 0.0, matches

        score = matches * 10.0
        days = (now - pattern.last_used) / _DAY
        if days < 1:
            score += 15
        elif days < 3:
            score += 10
        elif days < 7:
            score += 5
        score += min(pattern.use_count * 2, 10)
        score += pattern.tool_success_rate * 10
        if days > 14:
            score -= 10
        elif days > 7:
            score -= 5
        return max(score, 0.0), matches

    def find_matches(self, task: str) -> tuple[list[PatternMatch], list[PatternMatch]]:
        """(successful, failed) patterns scoring above 20, best first."""
        keywords = extract_keywords(task)
        now = time.time()

        def ranked(patterns: list[DecisionPattern]) -> list[PatternMatch]:
            found = []
            for pattern in patterns:
                score, matches = self._score(pattern, keywords, now)
                if score > 20:
                    found.append(PatternMatch(pattern, score, matches))
            return sorted(found, key=lambda m: m.score, reverse=True)

        return ranked(self._load()), ranked(self._failed)

    @staticmethod
    def confidence(match: PatternMatch, now: float | None = None) -> float:
        """How far to trust a match, between 0.1 and 1.0."""
        pattern = match.pattern
        days = ((now or time.time()) - pattern.last_used) / _DAY

        value = 0.5 + match.keyword_matches / 10 * 0.2
        if days < 1:
            value += 0.1
        elif days < 3:
            value += 0.05
        value += pattern.tool_success_rate * 0.15
        if pattern.use_count > 5:
            value += 0.1
        elif pattern.use_count > 2:
            value += 0.05
        if days > 14:
            value -= 0.1
        elif days > 7:
            value -= 0.05
        return max(0.1, min(1.0, value))

    def suggestions(self, task: str) -> tuple[list[Suggestion], list[str]]:
        """Proven approaches and warnings for a new request.

        The best successful match counts as used, which keeps it ahead of
        older patterns next time.
        """
        successful, failed = self.find_matches(task)
        now = time.time()

        suggestions: list[Suggestion] = []
        for rank, match in enumerate(successful[:3]):
            confidence = self.confidence(match, now)
            if confidence < 0.5:
                continue
            label = "high" if confidence >= 0.8 else "medium" if confidence >= 0.6 else "low"
            suggestions.append(Suggestion(
                message=(
                    f"[{label} confidence: {confidence:.0%}] Similar task succeeded using: "
                    + " -> ".join(match.pattern.tools)
                ),
                confidence=confidence,
                tools=match.pattern.tools,
            ))
            if rank == 0:
                match.pattern.last_used = now
                match.pattern.use_count += 1
                self._save()

        warnings = [
            f"A similar approach failed before ({self.confidence(m, now):.0%} match). "
            f"Avoid: {' -> '.join(m.pattern.tools)}"
            for m in failed
            if m.score > 30
        ]
        return suggestions, warnings

    def format_for_prompt(self, task: str) -> str:
        """Markdown block of past experience for `task`, or "" when none applies."""
        suggestions, warnings = self.suggestions(task)
        if not suggestions and not warnings:
            return ""

        lines = ["## Past Experience", ""]
        if suggestions:
            lines.append("**What worked before:**")
            lines.extend(f"- {s.message}" for s in suggestions)
            lines.append("")
        if warnings:
            lines.append("**What to avoid:**")
            lines.extend(f"- {w}" for w in warnings)
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    # =========================================================================
    # Maintenance
    # =========================================================================

    def decay(self) -> int:
        """Drop patterns unused for `decay_days`. Returns how many went."""
        successful = self._load()
        cutoff = time.time() - self.decay_days * _DAY
        kept = [p for p in successful if p.last_used > cutoff]
        kept_failed = [p for p in self._failed if p.last_used > cutoff]
        removed = len(successful) + len(self._failed) - len(kept) - len(kept_failed)
        if removed:
            self._successful, self._failed = kept, kept_failed
            self._save()
            logger.info("Decayed %d old decision patterns", removed)
        return removed

    def clear(self) -> None:
        self._successful, self._failed, self._current = [], [], None
        self._store.delete(self._key)

    def statistics(self) -> dict[str, Any]:
        successful = self._load()
        counts = Counter(tool for p in successful for tool in p.tools)
        total = sum(counts.values())
        return {
            "successful_patterns": len(successful),
            "failed_patterns": len(self._failed),
            "total_patterns": len(successful) + len(self._failed),
            "most_used_tools": [
                {"tool": tool, "count": count} for tool, count in counts.most_common(5)
            ],
            "average_tools_per_task": total / len(successful) if successful else 0.0,
        }
