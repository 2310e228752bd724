"""Model protocol - provider-agnostic message and call interface.

A conversation is an ordered sequence of `Message` values. Each message
has a role and an ordered tuple of parts:

- `TextPart`: free text (user prompt, model reasoning or answer)
- `FunctionCall`: a tool invocation requested by the model
- `FunctionResponse`: the result of one tool invocation

Tool-role messages carry only FunctionResponse parts, paired 1:1 and in
order with the FunctionCalls of the preceding model message.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


# =============================================================================
# Output Sanitization
# =============================================================================


def sanitize_text(text: str | None) -> str | None:
    """Remove control characters from model output.

    Preserves newlines, carriage returns, and tabs which are needed
    for code formatting.
    """
    if text is None:
        return None

    sanitized = "".join(c for c in text if not (ord(c) < 32 and c not in "\n\r\t"))

    if len(sanitized) != len(text):
        logger.debug(
            "Sanitized control chars from model output",
            extra={"chars_removed": len(text) - len(sanitized)},
        )

    return sanitized


def sanitize_args(d: dict[str, Any]) -> dict[str, Any]:
    """Recursively sanitize string values in tool call arguments."""
    result: dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, str):
            result[k] = sanitize_text(v)
        elif isinstance(v, dict):
            result[k] = sanitize_args(v)
        elif isinstance(v, list):
            result[k] = [
                sanitize_args(i)
                if isinstance(i, dict)
                else sanitize_text(i)
                if isinstance(i, str)
                else i
                for i in v
            ]
        else:
            result[k] = v
    return result


# =============================================================================
# Message Types
# =============================================================================


class Role(Enum):
    """Conversation participant."""

    USER = "user"
    """Human input, including synthetic context such as summaries."""

    MODEL = "model"
    """Model output: text and function calls."""

    TOOL = "tool"
    """Tool results answering the preceding model message."""


@dataclass(frozen=True, slots=True)
class TextPart:
    """Free text."""

    text: str


@dataclass(frozen=True, slots=True)
class FunctionCall:
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FunctionResponse:
    """The outcome of one tool invocation, as shown to the model."""

    name: str
    response: dict[str, Any] = field(default_factory=dict)


Part = TextPart | FunctionCall | FunctionResponse


def part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, FunctionCall):
        return {"function_call": {"name": part.name, "args": part.args}}
    return {"function_response": {"name": part.name, "response": part.response}}


def part_from_dict(data: dict[str, Any]) -> Part:
    if "text" in data:
        return TextPart(data["text"])
    if "function_call" in data:
        call = data["function_call"]
        return FunctionCall(call["name"], dict(call.get("args") or {}))
    if "function_response" in data:
        resp = data["function_response"]
        return FunctionResponse(resp["name"], dict(resp.get("response") or {}))
    raise ValueError(f"Unknown part: {sorted(data)}")


@dataclass(frozen=True, slots=True)
class Message:
    """A conversation message.

    Tool-role messages may only contain FunctionResponse parts.
    """

    role: Role
    parts: tuple[Part, ...] = ()

    def __post_init__(self) -> None:
        if self.role is Role.TOOL and not all(
            isinstance(p, FunctionResponse) for p in self.parts
        ):
            raise ValueError("Tool messages may only contain function responses")

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(Role.USER, (TextPart(text),))

    @classmethod
    def model(cls, *parts: Part) -> Message:
        return cls(Role.MODEL, tuple(parts))

    @classmethod
    def tool(cls, responses: tuple[FunctionResponse, ...] | list[FunctionResponse]) -> Message:
        return cls(Role.TOOL, tuple(responses))

    @property
    def text(self) -> str:
        """All text parts joined by newlines."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def function_calls(self) -> tuple[FunctionCall, ...]:
        return tuple(p for p in self.parts if isinstance(p, FunctionCall))

    @property
    def function_responses(self) -> tuple[FunctionResponse, ...]:
        return tuple(p for p in self.parts if isinstance(p, FunctionResponse))

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "parts": [part_to_dict(p) for p in self.parts]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=Role(data["role"]),
            parts=tuple(part_from_dict(p) for p in data.get("parts", [])),
        )


def response_size(response: FunctionResponse) -> int:
    """Length of the serialized response payload."""
    return len(json.dumps(response.response, default=str))


# =============================================================================
# Model Call
# =============================================================================


@dataclass(frozen=True, slots=True)
class ModelResponse:
    """Result of one model invocation.

    On failure `message` is None and `error` carries the transport's
    message verbatim.
    """

    success: bool
    message: Message | None = None
    error: str | None = None

    @classmethod
    def ok(cls, message: Message) -> ModelResponse:
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, error: str) -> ModelResponse:
        return cls(success=False, error=error)


@runtime_checkable
class ModelProtocol(Protocol):
    """Opaque model transport.

    Implementations own their wire format, retries and authentication.
    """

    @property
    def model_id(self) -> str:
        """Identifier for logging."""
        ...

    async def generate(self, messages: tuple[Message, ...]) -> ModelResponse:
        """Produce the next model message for the given history."""
        ...
