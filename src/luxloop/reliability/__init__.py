"""Reliability layer for tool execution.

Provides:
- CircuitBreaker: hard gate after consecutive failures
- RetryBackoff: fixed-step delays between retries
- HealthMonitor: rolling error-rate window
- OutputSanitizer: size limits and payload checks on tool output
- ResilientExecutor: retry loop tying the above together
"""

from luxloop.reliability.backoff import DEFAULT_RETRY_BACKOFF, RetryBackoff
from luxloop.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    FailureOutcome,
    GateDecision,
)
from luxloop.reliability.health import HealthMonitor, HealthStatus, ToolStats
from luxloop.reliability.resilience import FailureKind, ResilientExecutor, classify_failure
from luxloop.reliability.sanitizer import TRUNCATION_MARKER, OutputSanitizer, SanitizedOutput

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitState",
    "GateDecision",
    "FailureOutcome",
    # Retry
    "RetryBackoff",
    "DEFAULT_RETRY_BACKOFF",
    "FailureKind",
    "classify_failure",
    "ResilientExecutor",
    # Health
    "HealthMonitor",
    "HealthStatus",
    "ToolStats",
    # Output
    "OutputSanitizer",
    "SanitizedOutput",
    "TRUNCATION_MARKER",
]
