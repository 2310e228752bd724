"""Error kinds, classification and recovery guidance."""

from luxloop.errors.classifier import (
    ErrorClassification,
    ErrorClassifier,
    LoopDetection,
    RecoveryPlan,
)
from luxloop.errors.patterns import (
    ERROR_PATTERNS,
    RECOVERY_STRATEGIES,
    ErrorPattern,
    RecoveryStrategy,
    match_category,
)
from luxloop.errors.types import (
    ErrorCategory,
    ErrorRecord,
    LuxloopError,
    RegistrationError,
    SessionBusyError,
    Severity,
    ToolFailure,
)

__all__ = [
    # Kinds
    "ErrorCategory",
    "Severity",
    "ErrorRecord",
    # Exceptions
    "LuxloopError",
    "RegistrationError",
    "SessionBusyError",
    "ToolFailure",
    # Patterns
    "ERROR_PATTERNS",
    "RECOVERY_STRATEGIES",
    "ErrorPattern",
    "RecoveryStrategy",
    "match_category",
    # Classifier
    "ErrorClassifier",
    "ErrorClassification",
    "LoopDetection",
    "RecoveryPlan",
]
