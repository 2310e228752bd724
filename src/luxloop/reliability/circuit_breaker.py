"""Circuit breaker for tool execution.

Stops tool execution after a run of consecutive failures so a confused
model cannot hammer a broken environment. This is a hard gate: while the
circuit is open, tool handlers are not invoked at all.

States:
- CLOSED: Normal operation, failures are counted
- OPEN: Circuit tripped, every call blocked until the cooldown elapses
- HALF_OPEN: Cooldown elapsed, the next call decides (success closes,
  failure re-opens)

Example:
    >>> breaker = CircuitBreaker(failure_threshold=5, cooldown_seconds=30)
    >>> decision = breaker.can_proceed()
    >>> if decision.allowed:
    ...     outcome = breaker.record_failure("patch_script", "Search content not found")
    ...     if outcome.halted:
    ...         print(outcome.message)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    """Normal operation - failures are counted."""

    OPEN = "open"
    """Circuit tripped - execution blocked."""

    HALF_OPEN = "half_open"
    """Cooldown elapsed - next call tests recovery."""


@dataclass(frozen=True, slots=True)
class GateDecision:
    """Answer to "may the next tool call run?"."""

    allowed: bool
    message: str | None = None
    """Block reason when not allowed, advisory warning otherwise."""


@dataclass(frozen=True, slots=True)
class FailureOutcome:
    """Result of recording one failure."""

    halted: bool
    """Whether this failure opened the circuit."""

    message: str | None = None
    requires_user_action: bool = False


@dataclass
class CircuitBreaker:
    """Blocks tool execution after consecutive failures.

    Attributes:
        failure_threshold: Consecutive failures before opening (default 5)
        cooldown_seconds: Time before an open circuit goes half-open (default 30)
        warning_threshold: Consecutive failures that produce a warning (default 3)
        reset_on_success: Whether a success clears the failure count
    """

    failure_threshold: int = 5
    """Number of consecutive failures before opening circuit."""

    cooldown_seconds: float = 30.0
    """Seconds to wait before testing recovery."""

    warning_threshold: int = 3
    """Consecutive failures that trigger an advisory warning."""

    reset_on_success: bool = True
    """Clear the consecutive failure count on success."""

    # Private state (not in __init__)
    _consecutive_failures: int = field(default=0, init=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _last_failure_time: float = field(default=0.0, init=False)
    _last_failed_tool: str | None = field(default=None, init=False)
    _last_error: str | None = field(default=None, init=False)
    _task_failures: int = field(default=0, init=False)
    _task_times_opened: int = field(default=0, init=False)
    _total_failures: int = field(default=0, init=False)
    _total_successes: int = field(default=0, init=False)
    _times_opened: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    @property
    def consecutive_failures(self) -> int:
        """Current consecutive failure count."""
        return self._consecutive_failures

    @property
    def task_failures(self) -> int:
        """Failures recorded since the last task boundary."""
        return self._task_failures

    @property
    def is_open(self) -> bool:
        """Whether circuit is currently open (blocking execution)."""
        return self._state == CircuitState.OPEN

    def _cooldown_remaining(self) -> float:
        return max(0.0, self.cooldown_seconds - (time.time() - self._last_failure_time))

    def can_proceed(self) -> GateDecision:
        """Check whether the next tool call may run.

        An open circuit whose cooldown has elapsed moves to HALF_OPEN and
        lets the call through.
        """
        if self._state == CircuitState.OPEN:
            remaining = self._cooldown_remaining()
            if remaining > 0:
                return GateDecision(
                    allowed=False,
                    message=(
                        f"Circuit breaker OPEN: {self._consecutive_failures} consecutive "
                        f"tool failures (last: {self._last_failed_tool}: {self._last_error}). "
                        f"Tool execution is blocked for {remaining:.0f}s. Stop and explain "
                        "the problem to the user or try a completely different approach."
                    ),
                )
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker half-open after cooldown")
            return GateDecision(
                allowed=True,
                message="Circuit breaker is testing recovery; the next failure re-opens it.",
            )

        if self._consecutive_failures >= self.warning_threshold:
            return GateDecision(
                allowed=True,
                message=(
                    f"Warning: {self._consecutive_failures} consecutive tool failures. "
                    f"{self.failure_threshold - self._consecutive_failures} more will block "
                    "tool execution."
                ),
            )
        return GateDecision(allowed=True)

    def record_success(self) -> None:
        """Record successful execution.

        Resets the consecutive failure count (when configured). A success
        in HALF_OPEN closes the circuit.
        """
        self._total_successes += 1
        if self.reset_on_success:
            self._consecutive_failures = 0

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            logger.info("Circuit breaker closed after successful call")

    def record_failure(self, tool_name: str, error: str) -> FailureOutcome:
        """Record failed execution.

        Returns:
            Outcome telling the caller whether the circuit opened.
        """
        self._consecutive_failures += 1
        self._task_failures += 1
        self._total_failures += 1
        self._last_failure_time = time.time()
        self._last_failed_tool = tool_name
        self._last_error = error[:200]

        if self._state == CircuitState.HALF_OPEN or (
            self._consecutive_failures >= self.failure_threshold
        ):
            if self._state != CircuitState.OPEN:
                self._state = CircuitState.OPEN
                self._times_opened += 1
                self._task_times_opened += 1
                logger.warning(
                    "Circuit breaker opened",
                    extra={"tool": tool_name, "failures": self._consecutive_failures},
                )
            return FailureOutcome(
                halted=True,
                requires_user_action=True,
                message=(
                    f"Circuit breaker tripped after {self._consecutive_failures} consecutive "
                    f"failures. Tool execution paused for {self.cooldown_seconds:.0f}s."
                ),
            )

        if self._consecutive_failures >= self.warning_threshold:
            return FailureOutcome(
                halted=False,
                message=(
                    f"{self._consecutive_failures} consecutive failures "
                    f"({self.failure_threshold} trips the circuit breaker)."
                ),
            )
        return FailureOutcome(halted=False)

    def on_new_task(self) -> None:
        """Start a task boundary: a new task does not inherit a near-tripped circuit."""
        self._task_failures = 0
        self._task_times_opened = 0
        self.force_reset()

    def force_reset(self) -> None:
        """Reset circuit breaker to closed with no failures."""
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED
        self._last_failure_time = 0.0

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "cooldown_remaining": self._cooldown_remaining() if self.is_open else 0.0,
            "last_failed_tool": self._last_failed_tool,
        }

    def format_for_prompt(self) -> str | None:
        """Short status line for the model, or None when healthy."""
        if self._state == CircuitState.OPEN:
            return (
                f"[CIRCUIT OPEN] Tool execution blocked for another "
                f"{self._cooldown_remaining():.0f}s after {self._consecutive_failures} failures."
            )
        if self._consecutive_failures >= self.warning_threshold:
            return (
                f"[CAUTION] {self._consecutive_failures}/{self.failure_threshold} consecutive "
                "tool failures. Re-read state before trying again."
            )
        return None

    def statistics(self) -> dict[str, Any]:
        total = self._total_failures + self._total_successes
        return {
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
            "times_opened": self._times_opened,
            "task_failures": self._task_failures,
            "task_times_opened": self._task_times_opened,
            "failure_rate": self._total_failures / total if total else 0.0,
        }

    def to_dict(self) -> dict[str, Any]:
        """Export state for persistence."""
        return {
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "last_failure_time": self._last_failure_time,
            "last_failed_tool": self._last_failed_tool,
            "last_error": self._last_error,
            "task_failures": self._task_failures,
            "task_times_opened": self._task_times_opened,
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
            "times_opened": self._times_opened,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Restore state exported by `to_dict`."""
        self._state = CircuitState(data.get("state", "closed"))
        self._consecutive_failures = data.get("consecutive_failures", 0)
        self._last_failure_time = data.get("last_failure_time", 0.0)
        self._last_failed_tool = data.get("last_failed_tool")
        self._last_error = data.get("last_error")
        self._task_failures = data.get("task_failures", 0)
        self._task_times_opened = data.get("task_times_opened", 0)
        self._total_failures = data.get("total_failures", 0)
        self._total_successes = data.get("total_successes", 0)
        self._times_opened = data.get("times_opened", 0)

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(state={self._state.value}, "
            f"failures={self._consecutive_failures}/{self.failure_threshold})"
        )
