"""Model message types and transport protocol."""

from luxloop.models.mock import MockModel
from luxloop.models.protocol import (
    FunctionCall,
    FunctionResponse,
    Message,
    ModelProtocol,
    ModelResponse,
    Part,
    Role,
    TextPart,
    sanitize_args,
    sanitize_text,
)

__all__ = [
    # Messages
    "Role",
    "Message",
    "Part",
    "TextPart",
    "FunctionCall",
    "FunctionResponse",
    # Transport
    "ModelProtocol",
    "ModelResponse",
    "MockModel",
    # Utilities
    "sanitize_text",
    "sanitize_args",
]
