"""Tool registry, approval queue, validation and execution.

Built-in tools live in `luxloop.tools.builtin`.
"""

from luxloop.tools.approval import ApprovalQueue, OperationStatus, PendingOperation
from luxloop.tools.executor import FEEDBACK_OPERATION, ToolExecutor, format_intent, format_result
from luxloop.tools.registry import ToolRegistry
from luxloop.tools.validation import (
    IssueSeverity,
    ToolCallValidator,
    ValidationIssue,
    ValidationResult,
)
from luxloop.types import ToolCategory, ToolContext, ToolResult, ToolSpec

__all__ = [
    # Types
    "ToolCategory",
    "ToolContext",
    "ToolResult",
    "ToolSpec",
    # Registry
    "ToolRegistry",
    # Approval
    "ApprovalQueue",
    "OperationStatus",
    "PendingOperation",
    # Validation
    "ToolCallValidator",
    "ValidationResult",
    "ValidationIssue",
    "IssueSeverity",
    # Execution
    "ToolExecutor",
    "FEEDBACK_OPERATION",
    "format_intent",
    "format_result",
]
