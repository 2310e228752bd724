"""Conversation history for the agentic loop.

Holds the ordered message log the model sees on every call, plus a log
of tool executions used for end-of-task summaries. Messages are only
ever appended; compression swaps the whole log for a shorter one that
keeps call/response pairing intact.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from luxloop.models.protocol import FunctionCall, FunctionResponse, Message, Role, TextPart

logger = logging.getLogger(__name__)

# Flat token cost charged for each function call part
FUNCTION_CALL_TOKENS = 100


def estimate_tokens(messages: Iterable[Message]) -> int:
    """Rough token count: text/4, a flat cost per call, serialized response/4."""
    total = 0.0
    for message in messages:
        for part in message.parts:
            if isinstance(part, TextPart):
                total += len(part.text) / 4
            elif isinstance(part, FunctionCall):
                total += FUNCTION_CALL_TOKENS
            elif isinstance(part, FunctionResponse):
                total += len(json.dumps(part.response, default=str)) / 4
    return math.ceil(total)


def check_pairing(messages: Sequence[Message]) -> bool:
    """Whether every tool message answers the model message right before it.

    Each tool message must follow a model message and carry one response
    per call, in call order. A model message with calls may only be
    unanswered when it is the last message (a paused batch).
    """
    for index, message in enumerate(messages):
        if message.role is Role.TOOL:
            if index == 0 or messages[index - 1].role is not Role.MODEL:
                return False
            calls = messages[index - 1].function_calls
            responses = message.function_responses
            if [c.name for c in calls] != [r.name for r in responses]:
                return False
        elif message.role is Role.MODEL and message.function_calls:
            following = messages[index + 1] if index + 1 < len(messages) else None
            if following is not None and following.role is not Role.TOOL:
                return False
    return True


@dataclass(frozen=True, slots=True)
class ToolLogEntry:
    tool_name: str
    description: str
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {"tool_name": self.tool_name, "description": self.description, "success": self.success}


@dataclass(slots=True)
class ConversationHistory:
    """Append-only message log with a per-task tool execution log."""

    _messages: list[Message] = field(default_factory=list, init=False)
    _tool_log: list[ToolLogEntry] = field(default_factory=list, init=False)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)

    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def replace(self, messages: Sequence[Message]) -> None:
        """Swap in a compressed log."""
        self._messages = list(messages)

    def estimate_tokens(self) -> int:
        return estimate_tokens(self._messages)

    def reset(self) -> None:
        """Clear messages and the tool log."""
        self._messages.clear()
        self._tool_log.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    # =========================================================================
    # Tool Log
    # =========================================================================

    def record_tool_execution(self, tool_name: str, description: str, success: bool) -> None:
        self._tool_log.append(ToolLogEntry(tool_name, description, success))

    def reset_tool_log(self) -> None:
        self._tool_log.clear()

    def tool_log_summary(self) -> dict[str, Any]:
        successful = sum(1 for e in self._tool_log if e.success)
        return {
            "total": len(self._tool_log),
            "successful": successful,
            "failed": len(self._tool_log) - successful,
            "items": [e.to_dict() for e in self._tool_log],
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self._messages],
            "tool_log": [e.to_dict() for e in self._tool_log],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationHistory:
        history = cls()
        history._messages = [Message.from_dict(m) for m in data.get("messages", [])]
        history._tool_log = [
            ToolLogEntry(e["tool_name"], e.get("description", ""), e["success"])
            for e in data.get("tool_log", [])
        ]
        return history
