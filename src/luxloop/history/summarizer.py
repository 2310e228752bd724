"""Model-backed summarization for history compression."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from luxloop.models.protocol import FunctionCall, FunctionResponse, Message, ModelProtocol, TextPart

logger = logging.getLogger(__name__)


def render_transcript(messages: Sequence[Message], max_part_chars: int = 500) -> str:
    """Plain-text transcript of messages for a summarization prompt."""
    lines: list[str] = []
    for message in messages:
        for part in message.parts:
            if isinstance(part, TextPart):
                body = part.text
            elif isinstance(part, FunctionCall):
                body = f"called {part.name}({json.dumps(part.args, default=str)})"
            elif isinstance(part, FunctionResponse):
                body = f"{part.name} returned {json.dumps(part.response, default=str)}"
            else:
                continue
            lines.append(f"{message.role.value}: {body[:max_part_chars]}")
    return "\n".join(lines)


@dataclass
class ModelSummarizer:
    """Summarizes older conversation messages with a model.

    Pass `summarize` to `HistoryCompressor.compress_if_needed`. Returns
    None when the model fails, which makes the compressor fall back to
    structured truncation.
    """

    model: ModelProtocol
    max_part_chars: int = 500

    async def summarize(self, messages: Sequence[Message]) -> str | None:
        if not messages:
            return None

        prompt = f"""Summarize this conversation segment for an assistant that will continue it.
Focus on: what the user asked for, what was created or changed (with paths),
decisions made, and errors that are still unresolved. Be concise.

Conversation:
{render_transcript(messages, self.max_part_chars)}

Summary:"""

        response = await self.model.generate((Message.user(prompt),))
        if not response.success or response.message is None:
            logger.warning("Summary generation failed: %s", response.error)
            return None
        return response.message.text.strip() or None
