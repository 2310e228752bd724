"""Per-conversation state owner.

`AgentSession` holds everything one conversation mutates: history,
approval queue, circuit breaker, error classifier, resilience metrics,
the pause snapshot and the task id. The loop receives a session instead
of reaching for module-level state, so several conversations can run
side by side and each can be snapshotted and restored.

A session runs one turn at a time; `lock` enforces that.

Example:
    >>> tree = InstanceTree()
    >>> session = create_session("conv-1", tree)
    >>> loop = AgenticLoop(model, session)
    >>> result = await loop.start("Add a folder called Enemies to Workspace")
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from luxloop.agent.state import PausedState
from luxloop.config import LuxloopConfig
from luxloop.errors.classifier import ErrorClassification, ErrorClassifier
from luxloop.history.compression import HistoryCompressor
from luxloop.history.conversation import ConversationHistory
from luxloop.memory.decisions import DecisionMemory
from luxloop.memory.project_context import ProjectContext
from luxloop.memory.store import KeyValueStore
from luxloop.models.protocol import FunctionResponse, Message, Role
from luxloop.reliability.backoff import RetryBackoff
from luxloop.reliability.circuit_breaker import CircuitBreaker
from luxloop.reliability.health import HealthMonitor
from luxloop.reliability.resilience import ResilientExecutor
from luxloop.reliability.sanitizer import OutputSanitizer
from luxloop.tools.approval import ApprovalQueue
from luxloop.tools.builtin import InstanceTree, create_default_registry, will_exist
from luxloop.tools.executor import ToolExecutor, format_intent
from luxloop.tools.registry import ToolRegistry
from luxloop.tools.validation import ToolCallValidator
from luxloop.types import ToolContext

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

ABANDONED_RESPONSE = {
    "error": "Operation was not resolved before a new request started",
    "abandoned": True,
}


class AgentSession:
    """All mutable state of one conversation.

    Args:
        conversation_id: Key used when the session is persisted
        registry: Tools available to the model
        config: Limits and thresholds (defaults when omitted)
        project: Project memory handed to project tools
        validator: Pre-execution call checks (structural only when omitted)
        decisions: Tool sequences from earlier tasks (nothing learned when omitted)
    """

    def __init__(
        self,
        conversation_id: str,
        registry: ToolRegistry,
        config: LuxloopConfig | None = None,
        *,
        project: ProjectContext | None = None,
        validator: ToolCallValidator | None = None,
        decisions: DecisionMemory | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.registry = registry
        self.config = config or LuxloopConfig()
        self.project = project
        self.decisions = decisions
        cfg = self.config

        self.history = ConversationHistory()
        self.compressor = HistoryCompressor(
            token_threshold=cfg.history.compression_token_threshold,
            preserve=cfg.history.messages_to_preserve,
            min_summary_chars=cfg.history.min_summary_chars,
        )
        self.approval_queue = ApprovalQueue(
            ttl_seconds=cfg.approval.ttl_seconds,
            max_operations=cfg.approval.max_operations,
            resolved_retention_seconds=cfg.approval.resolved_retention_seconds,
        )
        self.circuit = CircuitBreaker(
            failure_threshold=cfg.circuit.failure_threshold,
            cooldown_seconds=cfg.circuit.cooldown_seconds,
            warning_threshold=cfg.circuit.warning_threshold,
            reset_on_success=cfg.circuit.reset_on_success,
        )
        self.classifier = ErrorClassifier(
            max_history=cfg.errors.max_history,
            loop_window=cfg.errors.loop_window,
            loop_threshold=cfg.errors.loop_threshold,
            max_error_age_seconds=cfg.errors.max_error_age_seconds,
            strategy_attempt_limit=cfg.errors.strategy_attempt_limit,
        )
        self.resilience = ResilientExecutor(
            max_retries=cfg.resilience.max_retries,
            backoff=RetryBackoff(steps_ms=tuple(cfg.resilience.retry_backoff_ms)),
            sanitizer=OutputSanitizer(
                max_output_chars=cfg.resilience.max_output_chars,
                max_field_chars=cfg.resilience.max_field_chars,
            ),
            health=HealthMonitor(
                window_size=cfg.resilience.health_window,
                error_rate_threshold=cfg.resilience.error_rate_threshold,
                tool_failure_rate_threshold=cfg.resilience.tool_failure_rate_threshold,
                tool_min_samples=cfg.resilience.tool_min_samples,
            ),
            stale_path_seconds=cfg.resilience.stale_path_seconds,
            freshness_seconds=cfg.resilience.script_freshness_seconds,
        )
        self.executor = ToolExecutor(
            registry=registry,
            approval_queue=self.approval_queue,
            resilience=self.resilience,
            context=ToolContext(approval_queue=self.approval_queue, project=project),
            repeat_failure_limit=cfg.executor.repeat_failure_limit,
            repeat_failure_window_seconds=cfg.executor.repeat_failure_window_seconds,
            identity_max_chars=cfg.executor.identity_max_chars,
        )
        self.validator = validator or ToolCallValidator()

        self.dangerous_operations = frozenset(cfg.loop.dangerous_operations)
        self.feedback_operations = frozenset(cfg.loop.feedback_operations)

        self.paused: PausedState | None = None
        self.task_id: str | None = None
        self._task_counter = 0
        self.circuit_blocks = 0
        """Calls blocked by an open circuit in the current task."""

        self.last_error: ErrorClassification | None = None
        self.lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    @property
    def task_count(self) -> int:
        return self._task_counter

    # =========================================================================
    # Task Boundaries
    # =========================================================================

    def begin_conversation(self) -> str:
        """Fresh conversation: clear history and error state.

        A pause from the previous conversation is kept so a late resume is
        rejected as expired rather than silently ignored.
        """
        self.history.reset()
        self.classifier.clear_history()
        self.executor.reset_failures()
        self.resilience.forget_script_reads()
        return self._new_task()

    def begin_task(self) -> str:
        """Close the current task and start the next one in the same conversation."""
        self.settle_abandoned_batch()
        self.complete_task()
        return self._new_task()

    def complete_task(self) -> None:
        if self.task_id is None:
            return
        self.classifier.prune_stale_errors()
        summary = self.history.tool_log_summary()
        self.history.reset_tool_log()
        logger.info(
            "Task completed",
            extra={
                "task_id": self.task_id,
                "tools": summary["total"],
                "failed": summary["failed"],
            },
        )

    def _new_task(self) -> str:
        self._task_counter += 1
        self.task_id = f"task-{self._task_counter}-{uuid.uuid4().hex[:8]}"
        self.circuit_blocks = 0
        self.last_error = None
        self.classifier.on_new_task(self.task_id)
        self.circuit.on_new_task()
        self.resilience.age_script_reads()
        logger.info("Task started", extra={"task_id": self.task_id})
        return self.task_id

    def record_tool_outcome(self, name: str, args: dict[str, Any], success: bool) -> None:
        intent = format_intent(name, args)
        self.history.record_tool_execution(name, intent, success)
        if self.decisions is not None:
            self.decisions.record_tool(name, success, intent)

    def settle_abandoned_batch(self) -> None:
        """Answer a paused batch left unanswered in history.

        Starting a new request while paused would leave the paused model
        message without its tool message. The unresolved calls get an
        "abandoned" response; the pause itself is kept so a late approval
        is rejected as expired.
        """
        paused = self.paused
        last = self.history.last()
        if paused is None or last is None or last.role is not Role.MODEL:
            return
        if tuple(last.function_calls) != paused.batch:
            return

        responses = list(paused.responses[: paused.cursor])
        responses.extend(
            FunctionResponse(call.name, dict(ABANDONED_RESPONSE))
            for call in paused.batch[paused.cursor :]
        )
        self.history.append(Message.tool(responses))
        logger.warning(
            "Abandoned paused batch",
            extra={"task_id": paused.task_id, "operation_id": paused.operation_id},
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    def snapshot(self) -> dict[str, Any]:
        """Everything needed to resume this conversation in another process."""
        return {
            "version": SNAPSHOT_VERSION,
            "conversation_id": self.conversation_id,
            "saved_at": time.time(),
            "task_id": self.task_id,
            "task_counter": self._task_counter,
            "circuit_blocks": self.circuit_blocks,
            "history": self.history.to_dict(),
            "approval_queue": self.approval_queue.to_dict(),
            "circuit": self.circuit.to_dict(),
            "errors": self.classifier.to_dict(),
            "paused": self.paused.to_dict() if self.paused else None,
        }

    def restore(self, data: dict[str, Any]) -> None:
        """Load a snapshot produced by `snapshot`.

        Raises:
            ValueError: Unsupported snapshot version or malformed content.
        """
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported session snapshot version: {version}")

        self.task_id = data.get("task_id")
        self._task_counter = data.get("task_counter", 0)
        self.circuit_blocks = data.get("circuit_blocks", 0)
        self.history = ConversationHistory.from_dict(data.get("history", {}))
        self.approval_queue.load_dict(data.get("approval_queue", {}))
        self.circuit.load_dict(data.get("circuit", {}))
        self.classifier.load_dict(data.get("errors", {}))
        paused = data.get("paused")
        self.paused = PausedState.from_dict(paused) if paused else None
        logger.info(
            "Session restored",
            extra={"conversation_id": self.conversation_id, "messages": len(self.history)},
        )

    def summary(self) -> dict[str, Any]:
        """Short status used by the CLI."""
        return {
            "conversation_id": self.conversation_id,
            "task_id": self.task_id,
            "messages": len(self.history),
            "tokens": self.history.estimate_tokens(),
            "pending_operations": len(self.approval_queue.pending()),
            "paused": self.paused.kind.value if self.paused else None,
            "circuit": self.circuit.status(),
        }


def create_session(
    conversation_id: str,
    tree: InstanceTree,
    config: LuxloopConfig | None = None,
    *,
    project_store: KeyValueStore | None = None,
    decision_store: KeyValueStore | None = None,
    path_resolver: Callable[[str], bool] | None = None,
) -> AgentSession:
    """Session wired to the built-in tools over `tree`.

    The validator resolves paths against the tree and the session's own
    approval queue, so paths created earlier in a batch count as present.
    """
    project = ProjectContext(project_store) if project_store is not None else None
    decisions = DecisionMemory(decision_store) if decision_store is not None else None
    session = AgentSession(
        conversation_id,
        create_default_registry(tree),
        config,
        project=project,
        decisions=decisions,
    )
    session.validator = ToolCallValidator(
        path_exists=path_resolver
        or (lambda path: will_exist(tree, session.approval_queue, path)),
        list_paths=tree.paths,
    )
    return session
