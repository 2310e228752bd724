"""Shared type definitions for tool dispatch.

Kept outside the subpackages so reliability and tools can both import
them without a cycle.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from luxloop.errors.types import ErrorCategory

if TYPE_CHECKING:
    from luxloop.memory.project_context import ProjectContext
    from luxloop.tools.approval import ApprovalQueue


class ToolCategory(Enum):
    """How the executor routes a tool."""

    READ = "read"
    """Runs immediately and returns a final result."""

    WRITE = "write"
    """Validates preconditions and queues a pending operation."""

    PROJECT = "project"
    """Reads or writes persisted project memory."""


@dataclass(frozen=True, slots=True)
class ToolContext:
    """What a handler may touch besides its arguments."""

    approval_queue: ApprovalQueue
    project: ProjectContext | None = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[dict[str, Any]]]
"""Read/project tools: return the result map. Write tools: return the
operation data to queue. Raise ToolFailure on error."""

OperationApplier = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
"""Applies an approved operation's data to the environment."""


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A registered tool.

    Write tools need an `applier`; read and project tools must not have one.
    A write tool with `awaits_feedback` queues a feedback request instead of
    an operation and needs no applier.
    """

    name: str
    category: ToolCategory
    handler: ToolHandler
    applier: OperationApplier | None = None
    required: tuple[str, ...] = ()
    """Argument names that must be present and non-blank."""

    description: str = ""
    awaits_feedback: bool = False


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one tool call as the model will see it.

    `data` is the response map. A failed result also carries `error` and,
    when the handler reported one, a structured `kind`.
    """

    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    kind: ErrorCategory | None = None
    transient: bool = False
    """Handler said retrying the identical call may succeed."""

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> ToolResult:
        return cls(data=dict(data or {}))

    @classmethod
    def failed(
        cls,
        message: str,
        kind: ErrorCategory | None = None,
        *,
        transient: bool = False,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        return cls(data=dict(details or {}), error=message, kind=kind, transient=transient)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ToolResult:
        """Wrap a raw handler mapping; an ``error`` string marks failure."""
        error = data.get("error")
        if error:
            rest = {k: v for k, v in data.items() if k != "error"}
            return cls(data=rest, error=str(error))
        return cls(data=dict(data))

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def pending(self) -> bool:
        return bool(self.data.get("pending"))

    @property
    def awaiting_feedback(self) -> bool:
        return bool(self.data.get("awaiting_feedback"))

    @property
    def operation_id(self) -> int | None:
        return self.data.get("operation_id")

    def with_data(self, **extra: Any) -> ToolResult:
        return ToolResult(
            data={**self.data, **extra},
            error=self.error,
            kind=self.kind,
            transient=self.transient,
        )

    def with_error(self, error: str) -> ToolResult:
        return ToolResult(data=self.data, error=error, kind=self.kind, transient=self.transient)

    def to_response(self) -> dict[str, Any]:
        """The FunctionResponse payload."""
        if self.error is None:
            return dict(self.data)
        response = {"error": self.error, **self.data}
        if self.kind is not None:
            response.setdefault("error_kind", self.kind.value)
        return response
