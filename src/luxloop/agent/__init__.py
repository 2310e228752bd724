"""Agentic loop, per-conversation session and pause state."""

from luxloop.agent.loop import (
    EXPIRED_PAUSE,
    FEEDBACK_CONFIRMED,
    FEEDBACK_DETAILED,
    FEEDBACK_PROBLEM,
    NO_PAUSE,
    AgenticLoop,
    interpret_feedback,
)
from luxloop.agent.persistence import SessionStore
from luxloop.agent.session import AgentSession, create_session
from luxloop.agent.state import (
    FeedbackReply,
    LoopResult,
    LoopStatus,
    PausedState,
    PauseKind,
)

__all__ = [
    # Loop
    "AgenticLoop",
    "interpret_feedback",
    "EXPIRED_PAUSE",
    "NO_PAUSE",
    "FEEDBACK_CONFIRMED",
    "FEEDBACK_PROBLEM",
    "FEEDBACK_DETAILED",
    # Session
    "AgentSession",
    "create_session",
    "SessionStore",
    # State
    "PausedState",
    "PauseKind",
    "LoopResult",
    "LoopStatus",
    "FeedbackReply",
]
