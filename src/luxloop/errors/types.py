"""Structured error kinds and package exceptions.

Tool handlers report failures by raising `ToolFailure` with an
`ErrorCategory`. Only errors from opaque transports (plain exceptions,
or mappings carrying an ``error`` string) go through string-pattern
classification.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """What went wrong with a tool call."""

    MISSING_RESOURCE = "missing_resource"
    """Path, script or instance does not exist."""

    SYNTAX_ERROR = "syntax_error"
    """Script content does not parse."""

    PROPERTY_ERROR = "property_error"
    """Property is unknown, read-only or invalid for the class."""

    ALREADY_EXISTS = "already_exists"
    """Name collision with an existing resource."""

    AMBIGUOUS_MATCH = "ambiguous_match"
    """Search content matched more than once."""

    SEARCH_FAILED = "search_failed"
    """Search content not found (usually stale content)."""

    INVALID_CLASS = "invalid_class"
    """Class name unknown or not creatable."""

    PARENT_ERROR = "parent_error"
    """Parent path missing or not a valid container."""

    RATE_LIMITED = "rate_limited"
    """Throttled, timed out or asked to try again."""

    TYPE_ERROR = "type_error"
    """Value could not be converted to the expected type."""

    USER_DENIED = "user_denied"
    """The human rejected the operation."""

    UNKNOWN = "unknown"
    """Did not match any known pattern."""

    @property
    def label(self) -> str:
        return self.value.upper().replace("_", " ")


class Severity(Enum):
    """How much an error should worry the model."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Exceptions
# =============================================================================


class LuxloopError(Exception):
    """Base class for luxloop errors."""


class RegistrationError(LuxloopError):
    """A tool could not be registered."""


class SessionBusyError(LuxloopError):
    """A turn was started while another turn of the same session is running."""


class ToolFailure(LuxloopError):
    """Raised by tool handlers to report a failure with a known kind.

    Attributes:
        kind: Error category, used directly instead of pattern matching.
        transient: Whether retrying the identical call may succeed.
        details: Extra fields merged into the tool response.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorCategory = ErrorCategory.UNKNOWN,
        *,
        transient: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.transient = transient
        self.details = details or {}


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """One classified failure kept for loop detection."""

    category: ErrorCategory
    tool_name: str
    timestamp: float
    task_id: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "tool_name": self.tool_name,
            "timestamp": self.timestamp,
            "task_id": self.task_id,
        }
