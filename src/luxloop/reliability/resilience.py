"""Self-healing wrapper around tool dispatch.

Sits between the executor's routing and the actual handler:

1. Retries transient failures (timeouts, connection drops, rate limits)
   with fixed backoff steps
2. Detects stale state (path or search content no longer matches) and
   returns immediately with a re-read suggestion, since retrying without
   re-reading cannot succeed
3. Returns permanent failures (property/permission errors) immediately
4. Sanitizes every output and tags recovered results
5. Feeds a rolling health window; unhealthy windows annotate errors
6. Remembers when scripts were last read so script changes made from an
   old or missing read get a pre-flight warning

Example:
    >>> resilience = ResilientExecutor(max_retries=2)
    >>> result = await resilience.execute(call, "get_script", {"path": "Workspace.Main"})
    >>> result.data.get("resilience", {}).get("recovered")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from luxloop.errors.types import ErrorCategory
from luxloop.reliability.backoff import RetryBackoff
from luxloop.reliability.health import HealthMonitor
from luxloop.reliability.sanitizer import OutputSanitizer
from luxloop.types import ToolResult

logger = logging.getLogger(__name__)

ToolCall = Callable[[], Awaitable[ToolResult]]

# Opaque error text that means "try the same call again"
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "rate limit",
    "try again",
)

# Opaque error text that means "your view of the environment is out of date"
_STALE_PATTERNS: tuple[str, ...] = (
    "script not found",
    "instance not found",
    "path not found",
    "search content not found",
    "exact match",
)

_STALE_KINDS = frozenset({ErrorCategory.MISSING_RESOURCE, ErrorCategory.SEARCH_FAILED})

_READ_TOOLS_THAT_SYNC = frozenset({"get_script", "get_instance", "list_children"})

# Tools whose arguments assume the model knows the current script source
_SCRIPT_CHANGE_TOOLS = frozenset({"patch_script", "edit_script"})


class FailureKind(Enum):
    """How the retry loop treats a failure."""

    TRANSIENT = "transient"
    """Retry after backoff."""

    STALE_STATE = "stale_state"
    """Return now and ask the model to re-read."""

    PERMANENT = "permanent"
    """Return now."""


def classify_failure(result: ToolResult) -> FailureKind:
    """Decide whether a failed result is worth retrying.

    Structured kinds from handlers win; message patterns are only used
    when the handler gave no kind.
    """
    if result.transient or result.kind is ErrorCategory.RATE_LIMITED:
        return FailureKind.TRANSIENT
    if result.kind in _STALE_KINDS:
        return FailureKind.STALE_STATE
    if result.kind is not None and result.kind is not ErrorCategory.UNKNOWN:
        return FailureKind.PERMANENT

    message = (result.error or "").lower()
    if any(p in message for p in _TRANSIENT_PATTERNS):
        return FailureKind.TRANSIENT
    if any(p in message for p in _STALE_PATTERNS):
        return FailureKind.STALE_STATE
    return FailureKind.PERMANENT


@dataclass(slots=True)
class ResilientExecutor:
    """Retry, stale-state detection, sanitization and health tracking.

    Attributes:
        max_retries: Retries after the first attempt (default 2)
        backoff: Delay table between attempts
        sanitizer: Output cleaner applied to every result
        health: Rolling health window
        stale_path_seconds: How long a path stays flagged as stale
        freshness_seconds: Age after which a script read counts as old
    """

    max_retries: int = 2
    backoff: RetryBackoff = field(default_factory=RetryBackoff)
    sanitizer: OutputSanitizer = field(default_factory=OutputSanitizer)
    health: HealthMonitor = field(default_factory=HealthMonitor)
    stale_path_seconds: float = 300.0
    freshness_seconds: float = 120.0

    _stale_paths: dict[str, float] = field(default_factory=dict, init=False)
    _read_times: dict[str, float] = field(default_factory=dict, init=False)
    _change_times: dict[str, float] = field(default_factory=dict, init=False)

    async def execute(self, call: ToolCall, tool_name: str, args: dict[str, Any]) -> ToolResult:
        """Run a tool call with the full resilience layer.

        Args:
            call: Zero-argument coroutine factory performing one attempt.
                Exceptions it raises are treated as opaque transport errors
                and retried.
            tool_name: Tool being called (for stats and sanitizer checks)
            args: Call arguments (for stale-path tracking)

        Returns:
            Sanitized result, tagged with resilience metadata when relevant.
        """
        start = time.monotonic()
        result, attempts = await self._attempt(call, tool_name, args)
        duration = time.monotonic() - start
        recovered = result.success and attempts > 1

        if result.success:
            cleaned = self.sanitizer.sanitize(tool_name, result.data)
            if cleaned.data.get("error"):
                error = cleaned.data.pop("error")
                result = ToolResult(data=cleaned.data, error=error)
            else:
                result = ToolResult(data=cleaned.data)
            if cleaned.issues:
                result = result.with_data(
                    resilience={
                        **result.data.get("resilience", {}),
                        "validation_issues": list(cleaned.issues),
                    }
                )
        else:
            cleaned = self.sanitizer.sanitize(tool_name, result.data, succeeded=False)
            result = ToolResult(
                data=cleaned.data, error=result.error, kind=result.kind, transient=result.transient
            )

        if recovered:
            result = result.with_data(
                resilience={
                    **result.data.get("resilience", {}),
                    "recovered": True,
                    "attempts": attempts,
                    "duration": round(duration, 3),
                }
            )

        if result.success:
            self._mark_synced(tool_name, args)

        self.health.record(
            tool_name, result.success, recovered=recovered, retried=attempts > 1
        )

        if not result.success:
            status = self.health.check()
            if not status.healthy:
                result = result.with_data(health_warning=status.warnings[0])

        logger.debug(
            "Tool call finished",
            extra={
                "tool": tool_name,
                "attempts": attempts,
                "success": result.success,
                "recovered": recovered,
            },
        )
        return result

    async def _attempt(
        self, call: ToolCall, tool_name: str, args: dict[str, Any]
    ) -> tuple[ToolResult, int]:
        last_error: str | None = None
        total = self.max_retries + 1

        for attempt in range(1, total + 1):
            try:
                result = await call()
            except Exception as e:
                # Raised (not reported) errors come from the transport; retry them
                last_error = str(e) or type(e).__name__
                logger.warning(
                    "Tool attempt %d/%d raised: %s", attempt, total, last_error,
                    extra={"tool": tool_name},
                )
                if attempt < total:
                    await self.backoff.sleep(attempt)
                continue

            if result.success:
                if attempt > 1:
                    logger.info("Tool %s recovered after %d attempts", tool_name, attempt)
                return result, attempt

            last_error = result.error
            kind = classify_failure(result)

            if kind is FailureKind.STALE_STATE:
                return self._stale_result(result, args), attempt

            if kind is FailureKind.PERMANENT or attempt >= total:
                if attempt > 1:
                    logger.warning(
                        "Giving up on %s after %d attempts: %s", tool_name, attempt, last_error
                    )
                return result, attempt

            logger.debug(
                "Tool attempt %d/%d failed, retrying: %s", attempt, total, last_error,
                extra={"tool": tool_name},
            )
            await self.backoff.sleep(attempt)

        return (
            ToolResult.failed(last_error or "Tool execution failed after retries"),
            total,
        )

    # =========================================================================
    # Stale State
    # =========================================================================

    def _stale_result(self, result: ToolResult, args: dict[str, Any]) -> ToolResult:
        path = args.get("path")
        if isinstance(path, str) and path:
            self._stale_paths[path] = time.time()
            suggestion = (
                f"'{path}' may have changed. Re-read it with get_script or get_instance "
                "before retrying."
            )
        else:
            suggestion = "The target may have changed. Re-read it before retrying."
        logger.debug("Stale state detected", extra={"path": path})
        return ToolResult(
            data={**result.data, "stale_suggestion": suggestion},
            error=f"{result.error}\n\n{suggestion}",
            kind=result.kind,
        )

    def _mark_synced(self, tool_name: str, args: dict[str, Any]) -> None:
        path = args.get("path")
        if tool_name in _READ_TOOLS_THAT_SYNC and path in self._stale_paths:
            del self._stale_paths[path]
        if tool_name == "get_script" and isinstance(path, str):
            self._read_times[path] = time.time()

    def is_stale(self, path: str) -> bool:
        flagged = self._stale_paths.get(path)
        return flagged is not None and time.time() - flagged < self.stale_path_seconds

    def stale_paths(self) -> list[str]:
        return [p for p in self._stale_paths if self.is_stale(p)]

    # =========================================================================
    # Script Freshness
    # =========================================================================

    def record_script_change(self, tool_name: str, path: str | None) -> None:
        """Note that an applied write changed the script at `path`."""
        if tool_name in _SCRIPT_CHANGE_TOOLS and path:
            self._change_times[path] = time.time()

    def age_script_reads(self) -> None:
        """Make every remembered read count as old (a new task starts)."""
        aged = time.time() - self.freshness_seconds - 60
        for path in self._read_times:
            self._read_times[path] = aged

    def forget_script_reads(self) -> None:
        self._read_times.clear()
        self._change_times.clear()

    def freshness_warning(self, tool_name: str, args: dict[str, Any]) -> str | None:
        """Pre-flight warning for a script change based on an old view.

        Returns:
            None when the call does not change a script or the last read
            of its target is recent, unflagged and newer than any change.
        """
        path = args.get("path")
        if tool_name not in _SCRIPT_CHANGE_TOOLS or not isinstance(path, str) or not path:
            return None

        risks: list[str] = []
        if self.is_stale(path):
            risks.append(
                f"'{path}' failed as out of date earlier. "
                "Re-read it with get_script before changing it."
            )

        last_read = self._read_times.get(path)
        if last_read is None:
            if tool_name == "edit_script":
                risks.append(
                    "Replacing the entire script without reading it first. "
                    "Use get_script to see the current content."
                )
            else:
                risks.append(
                    "Script not read in this conversation. "
                    "Use get_script first to see the current content."
                )
        else:
            age = time.time() - last_read
            if age > self.freshness_seconds:
                risks.append(
                    f"Script read {age:.0f} seconds ago and may have changed. "
                    "Consider re-reading it with get_script."
                )
            changed = self._change_times.get(path)
            if tool_name == "patch_script" and changed is not None and changed > last_read:
                risks.append(
                    "Script was changed after you last read it. "
                    "Re-read it; search_content may be outdated."
                )

        if not risks:
            return None
        logger.debug("Pre-flight freshness warning", extra={"tool": tool_name, "path": path})
        return "PRE-FLIGHT CHECK:\n" + "\n".join(f"- {risk}" for risk in risks)

    def metrics(self) -> dict[str, Any]:
        return self.health.metrics()

    def reset(self) -> None:
        self.health.reset()
        self._stale_paths.clear()
        self.forget_script_reads()
