"""Rolling health metrics for tool calls.

Keeps a fixed-size window of recent outcomes plus cumulative and
per-tool counters. When the recent error rate crosses a threshold the
monitor reports itself unhealthy and error results carry a warning.

Example:
    >>> monitor = HealthMonitor(window_size=20, error_rate_threshold=0.3)
    >>> monitor.record("get_script", success=False)
    >>> status = monitor.check()
    >>> if not status.healthy:
    ...     print(status.warnings[0])
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class CallOutcome:
    """One entry of the rolling window."""

    tool_name: str
    success: bool
    recovered: bool = False


@dataclass(slots=True)
class ToolStats:
    """Cumulative counters for one tool."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    recovered: int = 0

    @property
    def error_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "recovered": self.recovered,
        }


@dataclass(frozen=True, slots=True)
class HealthStatus:
    """Snapshot of tool-layer health.

    Attributes:
        error_rate: Failure ratio over the rolling window
        window_size: Outcomes currently in the window
        warnings: Human-readable problems, global rate first
    """

    healthy: bool
    error_rate: float
    window_size: int
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "healthy": self.healthy,
            "error_rate": self.error_rate,
            "window_size": self.window_size,
            "warnings": list(self.warnings),
        }


@dataclass(slots=True)
class HealthMonitor:
    """Tracks recent and cumulative tool outcomes.

    Attributes:
        window_size: Outcomes kept in the rolling window (default 20)
        error_rate_threshold: Window error rate that marks the layer unhealthy
        tool_failure_rate_threshold: Per-tool failure rate that adds a warning
        tool_min_samples: Calls needed before a tool's rate is judged
    """

    window_size: int = 20
    error_rate_threshold: float = 0.3
    tool_failure_rate_threshold: float = 0.5
    tool_min_samples: int = 5

    total_calls: int = field(default=0, init=False)
    successful_calls: int = field(default=0, init=False)
    failed_calls: int = field(default=0, init=False)
    retried_calls: int = field(default=0, init=False)
    recovered_calls: int = field(default=0, init=False)
    _window: deque[CallOutcome] = field(init=False)
    _tools: dict[str, ToolStats] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self._window = deque(maxlen=self.window_size)

    def record(
        self, tool_name: str, success: bool, *, recovered: bool = False, retried: bool = False
    ) -> None:
        self.total_calls += 1
        if success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
        if recovered:
            self.recovered_calls += 1
        if retried:
            self.retried_calls += 1

        self._window.append(CallOutcome(tool_name, success, recovered))

        stats = self._tools.setdefault(tool_name, ToolStats())
        stats.total += 1
        if success:
            stats.successful += 1
        else:
            stats.failed += 1
        if recovered:
            stats.recovered += 1

    def check(self) -> HealthStatus:
        """Evaluate the rolling window and per-tool rates."""
        warnings: list[str] = []
        recent_errors = sum(1 for o in self._window if not o.success)
        size = len(self._window)
        error_rate = recent_errors / size if size else 0.0

        healthy = error_rate <= self.error_rate_threshold
        if not healthy:
            warnings.append(
                f"High error rate: {error_rate * 100:.1f}% "
                f"({recent_errors}/{size} recent calls failed)"
            )

        for name, stats in self._tools.items():
            if stats.total >= self.tool_min_samples and (
                stats.error_rate > self.tool_failure_rate_threshold
            ):
                warnings.append(
                    f"Tool '{name}' has high failure rate: {stats.error_rate * 100:.1f}% "
                    f"({stats.failed}/{stats.total})"
                )

        return HealthStatus(
            healthy=healthy,
            error_rate=error_rate,
            window_size=size,
            warnings=tuple(warnings),
        )

    def metrics(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "retried_calls": self.retried_calls,
            "auto_recovered_calls": self.recovered_calls,
            "success_rate": self.successful_calls / self.total_calls if self.total_calls else 0.0,
            "recovery_rate": self.recovered_calls / self.failed_calls if self.failed_calls else 0.0,
            "tool_stats": {name: s.to_dict() for name, s in self._tools.items()},
        }

    def reset(self) -> None:
        self.total_calls = 0
        self.successful_calls = 0
        self.failed_calls = 0
        self.retried_calls = 0
        self.recovered_calls = 0
        self._window.clear()
        self._tools.clear()
