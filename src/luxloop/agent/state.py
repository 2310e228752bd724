"""Loop results and the serializable pause snapshot.

A paused turn is not a suspended coroutine: everything needed to resume
lives in `PausedState`, so a pause can be saved, the process restarted,
and the batch finished later from the saved snapshot plus the human's
decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from luxloop.models.protocol import FunctionCall, FunctionResponse, part_from_dict, part_to_dict


class PauseKind(Enum):
    """Why the loop is waiting on a human."""

    BATCH = "batch"
    """A dangerous operation is queued and needs approve/deny."""

    FEEDBACK = "feedback"
    """The model asked the user to verify something."""


@dataclass(slots=True)
class PausedState:
    """Snapshot of an interrupted batch.

    `responses` holds one response per call up to and including `cursor`;
    the one at `cursor` is the placeholder rewritten on resume.
    """

    kind: PauseKind
    task_id: str
    iteration: int
    batch: tuple[FunctionCall, ...]
    cursor: int
    responses: list[FunctionResponse] = field(default_factory=list)
    operation_id: int | None = None
    thinking: str = ""
    feedback_request: dict[str, Any] | None = None

    @property
    def call(self) -> FunctionCall:
        """The call the loop stopped on."""
        return self.batch[self.cursor]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "task_id": self.task_id,
            "iteration": self.iteration,
            "batch": [part_to_dict(c) for c in self.batch],
            "cursor": self.cursor,
            "responses": [part_to_dict(r) for r in self.responses],
            "operation_id": self.operation_id,
            "thinking": self.thinking,
            "feedback_request": self.feedback_request,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PausedState:
        batch = tuple(part_from_dict(c) for c in data["batch"])
        responses = [part_from_dict(r) for r in data.get("responses", [])]
        if not all(isinstance(c, FunctionCall) for c in batch) or not all(
            isinstance(r, FunctionResponse) for r in responses
        ):
            raise ValueError("Malformed paused batch")
        cursor = data["cursor"]
        if not 0 <= cursor < len(batch):
            raise ValueError(f"Pause cursor {cursor} outside batch of {len(batch)}")
        return cls(
            kind=PauseKind(data["kind"]),
            task_id=data["task_id"],
            iteration=data["iteration"],
            batch=batch,  # type: ignore[arg-type]
            cursor=cursor,
            responses=responses,  # type: ignore[arg-type]
            operation_id=data.get("operation_id"),
            thinking=data.get("thinking", ""),
            feedback_request=data.get("feedback_request"),
        )


class LoopStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_FEEDBACK = "awaiting_feedback"


@dataclass(frozen=True, slots=True)
class LoopResult:
    """Outcome of one turn.

    Pauses are successful results; only FAILED is a failure.
    """

    status: LoopStatus
    iteration: int
    text: str = ""
    error: str | None = None
    suggestion: str | None = None
    operation: dict[str, Any] | None = None
    """The operation awaiting approval."""

    feedback_request: dict[str, Any] | None = None

    @property
    def success(self) -> bool:
        return self.status is not LoopStatus.FAILED

    @property
    def paused(self) -> bool:
        return self.status in (LoopStatus.AWAITING_APPROVAL, LoopStatus.AWAITING_FEEDBACK)

    @classmethod
    def completed(cls, text: str, iteration: int) -> LoopResult:
        return cls(LoopStatus.COMPLETED, iteration, text=text)

    @classmethod
    def failed(cls, error: str, iteration: int, suggestion: str | None = None) -> LoopResult:
        return cls(LoopStatus.FAILED, iteration, error=error, suggestion=suggestion)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "success": self.success,
            "iteration": self.iteration,
            "text": self.text,
            "error": self.error,
            "suggestion": self.suggestion,
            "operation": self.operation,
            "feedback_request": self.feedback_request,
        }


@dataclass(frozen=True, slots=True)
class FeedbackReply:
    """The user's answer to a feedback request.

    `positive` is True for "looks correct", False for "there is a
    problem", None for free-form feedback.
    """

    text: str
    positive: bool | None = None
