"""Tool execution engine.

ToolExecutor routes a named call to its registered handler by category:
- READ → handler runs immediately, result is final
- WRITE → handler validates preconditions and returns operation data,
  which is queued for approval; nothing in the environment changes yet
- PROJECT → handler reads/writes persisted project memory

Every call goes through the resilience layer. A per-identity failure
counter (tool name + argument fingerprint) stops the model from
repeating the exact same failing call: after 3 failures within 30
seconds the call short-circuits without reaching the handler.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from luxloop.errors.types import ErrorCategory, ToolFailure
from luxloop.reliability.resilience import ResilientExecutor
from luxloop.tools.approval import ApprovalQueue, OperationStatus
from luxloop.tools.registry import ToolRegistry
from luxloop.types import ToolCategory, ToolContext, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

FEEDBACK_OPERATION = "user_feedback"

# Argument keys that identify what a call targets, in priority order
_IDENTITY_KEYS: tuple[str, ...] = ("path", "code", "query", "url")


@dataclass(slots=True)
class _FailureEntry:
    timestamps: deque[float] = field(default_factory=deque)
    last_error: str = ""


@dataclass(slots=True)
class ToolExecutor:
    """Dispatch tool calls to registered handlers.

    Args:
        registry: Registered tools
        approval_queue: Where write tools queue operations
        resilience: Retry/sanitize/health wrapper around each call
        context: Extra collaborators handed to handlers
        repeat_failure_limit: Failures of one identity that block it (default 3)
        repeat_failure_window_seconds: Window for counting those failures
        identity_max_chars: Longer fingerprints are shortened
    """

    registry: ToolRegistry
    approval_queue: ApprovalQueue = field(default_factory=ApprovalQueue)
    resilience: ResilientExecutor = field(default_factory=ResilientExecutor)
    context: ToolContext | None = None
    repeat_failure_limit: int = 3
    repeat_failure_window_seconds: float = 30.0
    identity_max_chars: int = 50

    _failures: dict[str, _FailureEntry] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = ToolContext(approval_queue=self.approval_queue)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Execute one tool call.

        Returns:
            The tool result. Write tools return ``pending`` with an
            ``operation_id``; the feedback tool returns ``awaiting_feedback``.
        """
        key = self.identity(name, args)
        repeated = self._repeated_failure(key)
        if repeated is not None:
            count, last_error = repeated
            logger.warning("Blocking repeated failing call %s (%d failures)", key, count)
            return ToolResult.failed(
                f"This operation has failed {count} times recently. Last error: {last_error}",
                details={
                    "hint": (
                        "Try a different approach or ask the user for help. "
                        "Don't repeat the same failing operation."
                    ),
                    "repeated_failure": True,
                },
            )

        spec = self.registry.get(name)
        if spec is None:
            result = ToolResult.failed(f"Unknown tool: {name}")
        else:
            logger.debug(format_intent(name, args))
            result = await self.resilience.execute(
                lambda: self._dispatch(spec, args), name, args
            )

        if result.success:
            self._failures.pop(key, None)
        else:
            self._record_failure(key, result.error or "")
        logger.debug(format_result(name, result))
        return result

    async def _dispatch(self, spec: ToolSpec, args: dict[str, Any]) -> ToolResult:
        """One attempt. ToolFailure becomes a structured failed result."""
        try:
            data = await spec.handler(args, self.context)
        except ToolFailure as e:
            return ToolResult.failed(e.message, e.kind, transient=e.transient, details=e.details)

        if data.get("error"):
            return ToolResult.from_mapping(data)
        if spec.category is not ToolCategory.WRITE:
            return ToolResult.ok(data)
        return self._enqueue(spec, data)

    def _enqueue(self, spec: ToolSpec, data: dict[str, Any]) -> ToolResult:
        if spec.awaits_feedback:
            operation_id = self.approval_queue.queue(FEEDBACK_OPERATION, data)
            return ToolResult.ok({
                "awaiting_feedback": True,
                "operation_id": operation_id,
                "feedback_request": data,
                "message": "Awaiting user verification",
            })

        operation_id = self.approval_queue.queue(spec.name, data)
        description = data.get("description") or spec.name
        return ToolResult.ok({
            "pending": True,
            "operation_id": operation_id,
            "message": f"Queued for approval (#{operation_id}): {description}",
        })

    # =========================================================================
    # Pending Operations
    # =========================================================================

    async def apply_operation(self, operation_id: int) -> ToolResult:
        """Approve and apply a queued operation.

        Fails without side effects when the operation is missing, already
        resolved, or older than the queue TTL (which marks it expired).
        """
        operation = self.approval_queue.get(operation_id)
        if operation is None:
            return ToolResult.failed(f"Operation not found: {operation_id}")
        if not operation.is_pending:
            return ToolResult.failed(
                f"Operation already processed (status: {operation.status.value})"
            )
        if self.approval_queue.is_expired(operation):
            self.approval_queue.expire(operation_id)
            return ToolResult.failed(
                f"Operation expired ({operation.age():.0f} seconds old). Please retry the operation."
            )

        spec = self.registry.get(operation.type)
        if spec is None or spec.applier is None:
            return ToolResult.failed(f"Unknown operation type: {operation.type}")

        self.approval_queue.approve(operation_id)
        try:
            data = await spec.applier(operation.data)
        except ToolFailure as e:
            result = ToolResult.failed(e.message, e.kind, details=e.details)
        else:
            result = ToolResult.from_mapping(data)

        if result.success:
            self.resilience.record_script_change(operation.type, operation.data.get("path"))
            logger.info("Applied operation #%d: %s", operation_id, operation.type)
        else:
            logger.warning(
                "Failed to apply operation #%d: %s", operation_id, result.error
            )
        return result

    def reject_operation(self, operation_id: int) -> ToolResult:
        if not self.approval_queue.reject(operation_id):
            return ToolResult.failed(f"Operation not found: {operation_id}")
        return ToolResult.failed("User denied this operation", ErrorCategory.USER_DENIED)

    def resolve_feedback(self, operation_id: int | None) -> None:
        operation = self.approval_queue.get(operation_id) if operation_id is not None else None
        if operation is not None and operation.status is OperationStatus.PENDING:
            self.approval_queue.approve(operation_id)

    # =========================================================================
    # Repeated Failure Tracking
    # =========================================================================

    def identity(self, name: str, args: dict[str, Any]) -> str:
        """Fingerprint used to spot the same call being repeated.

        The first identifying argument (path, code, query, url) names the
        call. Calls without one are keyed by a digest of all their arguments.
        """
        identifier = next((str(args[k]) for k in _IDENTITY_KEYS if args.get(k)), "")
        if not identifier and args:
            canonical = json.dumps(args, sort_keys=True, default=str)
            return f"{name}:#{hashlib.sha1(canonical.encode()).hexdigest()[:12]}"
        if len(identifier) > self.identity_max_chars:
            identifier = f"{identifier[:20]}...{identifier[-20:]}"
        return f"{name}:{identifier}"

    def _prune(self, entry: _FailureEntry, now: float) -> None:
        cutoff = now - self.repeat_failure_window_seconds
        while entry.timestamps and entry.timestamps[0] < cutoff:
            entry.timestamps.popleft()

    def _repeated_failure(self, key: str) -> tuple[int, str] | None:
        entry = self._failures.get(key)
        if entry is None:
            return None
        self._prune(entry, time.time())
        if not entry.timestamps:
            del self._failures[key]
            return None
        if len(entry.timestamps) >= self.repeat_failure_limit:
            return len(entry.timestamps), entry.last_error
        return None

    def _record_failure(self, key: str, error: str) -> None:
        now = time.time()
        entry = self._failures.setdefault(key, _FailureEntry())
        entry.timestamps.append(now)
        entry.last_error = error.split("\n", 1)[0]
        self._prune(entry, now)

    def reset_failures(self) -> None:
        self._failures.clear()


# =============================================================================
# Display Helpers
# =============================================================================


def format_intent(name: str, args: dict[str, Any]) -> str:
    """One-line description of what a call is about to do."""
    target = args.get("path") or args.get("query") or args.get("parent") or ""
    if name == "create_instance":
        target = f"{args.get('parent', '?')}.{args.get('name', '?')} ({args.get('class_name', '?')})"
    elif name == "request_user_feedback":
        target = args.get("question", "")
    return f"{name} {target}".strip()


def format_result(name: str, result: ToolResult) -> str:
    """One-line summary of a call outcome."""
    if not result.success:
        return f"{name} failed: {(result.error or '').splitlines()[0] if result.error else ''}"
    if result.pending:
        return f"{name} awaiting approval (#{result.operation_id})"
    if result.awaiting_feedback:
        return f"{name} awaiting user feedback (#{result.operation_id})"
    return f"{name} ok"
