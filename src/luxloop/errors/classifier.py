"""Error classification, recovery suggestions and loop detection.

Turns a failed tool call into something the model can act on:

1. Classify the failure into an `ErrorCategory` (structured kind first,
   string patterns only for opaque errors)
2. Attach ranked recovery suggestions plus tool-specific hints
3. Keep a bounded, task-scoped history to spot repeating failures
4. Pick the next recovery strategy, skipping ones already exhausted

Example:
    >>> classifier = ErrorClassifier()
    >>> classifier.on_new_task("task-1")
    >>> result = classifier.classify("Search content not found", "patch_script")
    >>> result.category
    <ErrorCategory.SEARCH_FAILED: 'search_failed'>
    >>> classifier.detect_loop() is None
    True
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from luxloop.errors.patterns import (
    PATTERNS_BY_CATEGORY,
    RECOVERY_STRATEGIES,
    RecoveryStrategy,
    match_category,
)
from luxloop.errors.types import ErrorCategory, ErrorRecord, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    """A classified tool failure."""

    category: ErrorCategory
    severity: Severity
    message: str
    """Original error message."""

    tool_name: str
    timestamp: float
    suggestions: tuple[str, ...] = ()
    """Generic recovery suggestions for the category, best first."""

    contextual: tuple[str, ...] = ()
    """Suggestions specific to this tool and its arguments."""

    @property
    def top_suggestion(self) -> str | None:
        if self.contextual:
            return self.contextual[0]
        return self.suggestions[0] if self.suggestions else None

    def enhanced_message(self, max_suggestions: int = 3) -> str:
        """Error message annotated with recovery guidance."""
        lines = [f"[{self.category.label}] {self.message}"]
        if self.suggestions:
            lines.append("")
            lines.append("Recovery suggestions:")
            for i, suggestion in enumerate(self.suggestions[:max_suggestions], 1):
                lines.append(f"  {i}. {suggestion}")
        if self.contextual:
            lines.append("For this specific case:")
            lines.extend(f"  - {s}" for s in self.contextual)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "tool_name": self.tool_name,
            "timestamp": self.timestamp,
            "suggestions": list(self.suggestions),
            "contextual": list(self.contextual),
        }


@dataclass(frozen=True, slots=True)
class LoopDetection:
    """A repeating failure pattern in the current task."""

    count: int
    message: str
    category: ErrorCategory | None = None
    tool_name: str | None = None


@dataclass(frozen=True, slots=True)
class RecoveryPlan:
    """Next recovery steps for a failure."""

    escalated: bool
    message: str
    strategies: tuple[RecoveryStrategy, ...] = ()
    requires_user_input: bool = False

    @property
    def recommended(self) -> RecoveryStrategy | None:
        return self.strategies[0] if self.strategies else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "escalated": self.escalated,
            "message": self.message,
            "strategies": [
                {"strategy": s.name, "tool": s.tool, "message": s.message}
                for s in self.strategies
            ],
            "requires_user_input": self.requires_user_input,
        }


@dataclass(slots=True)
class ErrorClassifier:
    """Classifies tool failures and tracks them per task.

    Attributes:
        max_history: Records kept across tasks (oldest dropped first)
        loop_window: Recent task errors inspected for loops
        loop_threshold: Repeats within the window that count as a loop
        max_error_age_seconds: Records older than this are ignored and pruned
        strategy_attempt_limit: Attempts after which a strategy is exhausted
    """

    max_history: int = 50
    loop_window: int = 5
    loop_threshold: int = 3
    max_error_age_seconds: float = 120.0
    strategy_attempt_limit: int = 2

    _history: list[ErrorRecord] = field(default_factory=list, init=False)
    _task_id: str | None = field(default=None, init=False)
    _recovery_attempts: dict[ErrorCategory, Counter[str]] = field(
        default_factory=dict, init=False
    )
    _last_category: ErrorCategory | None = field(default=None, init=False)

    @property
    def task_id(self) -> str | None:
        return self._task_id

    @property
    def history(self) -> tuple[ErrorRecord, ...]:
        return tuple(self._history)

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(
        self,
        message: str,
        tool_name: str,
        args: dict[str, Any] | None = None,
        kind: ErrorCategory | None = None,
    ) -> ErrorClassification:
        """Classify a failure and record it in the task history.

        Args:
            message: Error message from the tool
            tool_name: Tool that failed
            args: Arguments of the failed call (for contextual hints)
            kind: Structured category reported by the handler, if any

        Returns:
            The classification, already recorded for loop detection.
        """
        if kind is not None and kind is not ErrorCategory.UNKNOWN:
            pattern = PATTERNS_BY_CATEGORY.get(kind)
            category = kind
        else:
            pattern = match_category(message)
            category = pattern.category if pattern else ErrorCategory.UNKNOWN

        classification = ErrorClassification(
            category=category,
            severity=pattern.severity if pattern else Severity.MEDIUM,
            message=message,
            tool_name=tool_name,
            timestamp=time.time(),
            suggestions=pattern.suggestions if pattern else (),
            contextual=tuple(self.contextual_suggestions(tool_name, args or {}, category)),
        )
        self._record(classification)

        logger.debug(
            "Classified tool error",
            extra={"tool": tool_name, "category": category.value},
        )
        return classification

    def contextual_suggestions(
        self, tool_name: str, args: dict[str, Any], category: ErrorCategory
    ) -> list[str]:
        """Hints that depend on which tool failed and how it was called."""
        suggestions: list[str] = []
        path = args.get("path")

        if tool_name == "patch_script":
            if category in (ErrorCategory.SEARCH_FAILED, ErrorCategory.AMBIGUOUS_MATCH):
                suggestions.append(
                    f"For {path or 'this script'}, use get_script first to see the exact current content"
                )
        elif tool_name in ("create_script", "create_instance"):
            if category is ErrorCategory.PARENT_ERROR:
                parent = args.get("parent") or _parent_of(path)
                if parent:
                    suggestions.append(
                        f"First verify {parent} exists using list_children on its parent"
                    )
            elif category is ErrorCategory.ALREADY_EXISTS:
                target = path or ".".join(
                    str(p) for p in (args.get("parent"), args.get("name")) if p
                )
                suggestions.append(f"Use get_instance('{target}') to inspect the existing item")
        elif tool_name == "set_instance_properties":
            if category in (ErrorCategory.PROPERTY_ERROR, ErrorCategory.TYPE_ERROR):
                suggestions.append(
                    f"Use get_instance('{path or 'target'}') to see all available properties "
                    "and their current values"
                )
        return suggestions

    # =========================================================================
    # History
    # =========================================================================

    def _record(self, classification: ErrorClassification) -> None:
        self._history.append(
            ErrorRecord(
                category=classification.category,
                tool_name=classification.tool_name,
                timestamp=classification.timestamp,
                task_id=self._task_id,
            )
        )
        del self._history[: max(0, len(self._history) - self.max_history)]
        self._last_category = classification.category

    def on_new_task(self, task_id: str) -> None:
        """Start a task boundary: scope loop detection and reset strategies."""
        self._task_id = task_id
        self._recovery_attempts.clear()
        self._last_category = None
        self.prune_stale_errors()
        logger.debug("Error history scoped to new task", extra={"task_id": task_id})

    def prune_stale_errors(self) -> None:
        cutoff = time.time() - self.max_error_age_seconds
        self._history = [r for r in self._history if r.timestamp >= cutoff]

    def clear_history(self) -> None:
        self._history.clear()
        self._recovery_attempts.clear()
        self._last_category = None

    def _task_errors(self) -> list[ErrorRecord]:
        cutoff = time.time() - self.max_error_age_seconds
        return [
            r
            for r in self._history
            if (self._task_id is None or r.task_id == self._task_id) and r.timestamp >= cutoff
        ]

    def detect_loop(self) -> LoopDetection | None:
        """Detect the same category or tool failing repeatedly in this task."""
        relevant = self._task_errors()
        if len(relevant) < self.loop_threshold:
            return None

        window = relevant[-self.loop_window :]
        for category, count in Counter(r.category for r in window).items():
            if count >= self.loop_threshold:
                return LoopDetection(
                    count=count,
                    category=category,
                    message=(
                        f"ERROR LOOP DETECTED: {count} '{category.value}' errors in a row. "
                        "The current approach is not working. Consider: 1) Re-reading the "
                        "target first, 2) Trying a completely different approach, 3) Asking "
                        "the user for clarification."
                    ),
                )
        for tool_name, count in Counter(r.tool_name for r in window).items():
            if count >= self.loop_threshold:
                return LoopDetection(
                    count=count,
                    tool_name=tool_name,
                    message=(
                        f"TOOL LOOP DETECTED: {tool_name} has failed {count} times recently. "
                        "Stop using this tool and try an alternative approach."
                    ),
                )
        return None

    def preflight(self, tool_name: str) -> str | None:
        """Warning to attach before running a tool caught in an error loop."""
        loop = self.detect_loop()
        if loop is None:
            return None
        if loop.tool_name == tool_name or any(
            r.tool_name == tool_name and r.category == loop.category
            for r in self._task_errors()[-self.loop_window :]
        ):
            return loop.message
        return None

    # =========================================================================
    # Adaptive Recovery
    # =========================================================================

    def record_recovery_attempt(self, category: ErrorCategory, strategy: str) -> None:
        self._recovery_attempts.setdefault(category, Counter())[strategy] += 1

    def adaptive_recovery(self, classification: ErrorClassification) -> RecoveryPlan:
        """Pick recovery strategies that have not been exhausted yet.

        A detected loop or a category with every strategy exhausted
        escalates: no strategies are offered and the model is told to
        change approach or ask the user.
        """
        loop = self.detect_loop()
        if loop is not None:
            logger.warning("Error loop detected", extra={"count": loop.count})
            return RecoveryPlan(escalated=True, message=loop.message)

        category = classification.category
        strategies = RECOVERY_STRATEGIES.get(category, ())
        attempts = self._recovery_attempts.get(category, Counter())

        available = sorted(
            (s for s in strategies if attempts[s.name] < self.strategy_attempt_limit),
            key=lambda s: attempts[s.name],
        )
        if strategies and not available:
            return RecoveryPlan(
                escalated=True,
                requires_user_input=True,
                message=(
                    f"ESCALATION: All {len(strategies)} recovery strategies for "
                    f"'{category.value}' have been attempted.\n"
                    "Consider:\n"
                    "  1. Ask the user for clarification\n"
                    "  2. Try a completely different approach\n"
                    "  3. Skip this step and continue with other tasks"
                ),
            )

        return RecoveryPlan(
            escalated=False,
            strategies=tuple(available),
            message=f"Recovery options ({len(available)}/{len(strategies)} available):",
        )

    def recovery_exhausted(self) -> bool:
        """Whether the current task has run out of recovery options."""
        if self.detect_loop() is not None:
            return True
        if self._last_category is None:
            return False
        strategies = RECOVERY_STRATEGIES.get(self._last_category, ())
        attempts = self._recovery_attempts.get(self._last_category, Counter())
        return bool(strategies) and all(
            attempts[s.name] >= self.strategy_attempt_limit for s in strategies
        )

    def format_for_llm(self, classification: ErrorClassification, plan: RecoveryPlan) -> str:
        """Error text fed back to the model."""
        if plan.escalated:
            return f"[{classification.category.label}] {classification.message}\n\n{plan.message}"
        text = classification.enhanced_message()
        if plan.recommended is not None:
            rec = plan.recommended
            via = f" (use {rec.tool})" if rec.tool else ""
            text += f"\nRecommended next step: {rec.message}{via}"
        return text

    def statistics(self) -> dict[str, Any]:
        return {
            "total_errors": len(self._history),
            "by_category": dict(Counter(r.category.value for r in self._history)),
            "by_tool": dict(Counter(r.tool_name for r in self._history)),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self._task_id,
            "history": [r.to_dict() for r in self._history],
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        self._task_id = data.get("task_id")
        self._history = [
            ErrorRecord(
                category=ErrorCategory(r["category"]),
                tool_name=r["tool_name"],
                timestamp=r["timestamp"],
                task_id=r.get("task_id"),
            )
            for r in data.get("history", [])
        ]


def _parent_of(path: str | None) -> str | None:
    if not path or "." not in path:
        return None
    return path.rsplit(".", 1)[0]
