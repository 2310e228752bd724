"""Luxloop - agentic tool loop with approval-gated writes.

Drives a model through think/act/observe cycles, runs its tool calls
through a retrying, circuit-broken execution layer, and pauses for a
human whenever a write would change the environment.
"""

from luxloop.agent import (
    AgenticLoop,
    AgentSession,
    FeedbackReply,
    LoopResult,
    LoopStatus,
    PausedState,
    PauseKind,
    SessionStore,
    create_session,
)
from luxloop.config import LuxloopConfig, get_config, load_config
from luxloop.errors import (
    ErrorCategory,
    LuxloopError,
    RegistrationError,
    SessionBusyError,
    ToolFailure,
)
from luxloop.models import FunctionCall, FunctionResponse, Message, ModelProtocol, ModelResponse
from luxloop.tools import ToolCategory, ToolRegistry, ToolResult, ToolSpec

__version__ = "0.1.0"

__all__ = [
    # Loop
    "AgenticLoop",
    "AgentSession",
    "create_session",
    "SessionStore",
    "LoopResult",
    "LoopStatus",
    "PausedState",
    "PauseKind",
    "FeedbackReply",
    # Models
    "ModelProtocol",
    "ModelResponse",
    "Message",
    "FunctionCall",
    "FunctionResponse",
    # Tools
    "ToolRegistry",
    "ToolSpec",
    "ToolCategory",
    "ToolResult",
    # Errors
    "LuxloopError",
    "RegistrationError",
    "SessionBusyError",
    "ToolFailure",
    "ErrorCategory",
    # Config
    "LuxloopConfig",
    "get_config",
    "load_config",
]
