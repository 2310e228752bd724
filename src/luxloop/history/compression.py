"""Multi-strategy history compression.

Runs once per loop iteration and only acts past a token threshold.
Compression always succeeds:

1. ``ai_summary``: ask the summarizer for a summary of the older
   messages; accepted when it is a non-trivial string and the result
   fits under the threshold
2. ``structured_truncation``: mechanical summary (user requests, actions,
   tool counts, errors) that needs no model

Either way the most recent messages are kept verbatim, and the boundary
never separates a model message from the tool message answering it.

Example:
    >>> compressor = HistoryCompressor(token_threshold=50_000, preserve=10)
    >>> result = await compressor.compress_if_needed(history, summarizer.summarize)
    >>> result.strategy
    'none'
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from luxloop.history.conversation import ConversationHistory, estimate_tokens
from luxloop.models.protocol import Message, Role, TextPart

logger = logging.getLogger(__name__)

Summarize = Callable[[Sequence[Message]], Awaitable[str | None]]
"""Summarize older messages; None or a short string means "no summary"."""

ACKNOWLEDGEMENT = "Understood. Continuing with this context."

_ACTION_WORDS = ("create", "add", "build")


class CompressionStrategy(Enum):
    NONE = "none"
    AI_SUMMARY = "ai_summary"
    STRUCTURED_TRUNCATION = "structured_truncation"


@dataclass(frozen=True, slots=True)
class CompressionResult:
    """What one compression pass did."""

    strategy: CompressionStrategy
    original_count: int
    preserved_count: int
    tokens_before: int
    tokens_after: int

    @property
    def compressed(self) -> bool:
        return self.strategy is not CompressionStrategy.NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "original_count": self.original_count,
            "preserved_count": self.preserved_count,
            "tokens_before": self.tokens_before,
            "tokens_after": self.tokens_after,
        }


def preserve_boundary(messages: Sequence[Message], preserve: int) -> int:
    """Index of the first message kept verbatim.

    Moves back past tool messages so a kept tool message always has its
    model message kept too.
    """
    boundary = max(0, len(messages) - preserve)
    while boundary > 0 and messages[boundary].role is Role.TOOL:
        boundary -= 1
    return boundary


def structured_summary(messages: Sequence[Message]) -> str:
    """Summary built without a model from the messages being dropped."""
    requests: list[str] = []
    actions: list[str] = []
    tools: Counter[str] = Counter()
    errors: list[str] = []

    for message in messages:
        if message.role is Role.USER:
            for part in message.parts:
                if isinstance(part, TextPart) and len(part.text) > 10 and "SYSTEM:" not in part.text:
                    requests.append(part.text[:200])
        elif message.role is Role.MODEL:
            for part in message.parts:
                if isinstance(part, TextPart) and any(w in part.text for w in _ACTION_WORDS):
                    actions.append(part.text[:150])
            tools.update(call.name for call in message.function_calls)
        else:
            for response in message.function_responses:
                error = response.response.get("error")
                if error:
                    errors.append(f"{response.name}: {str(error)[:100]}")

    lines = ["[Conversation History - Structured Summary]", ""]
    for title, items, limit, noun in (
        ("User Requests:", requests, 5, "requests"),
        ("AI Actions Taken:", actions, 5, "actions"),
    ):
        if items:
            lines.append(title)
            lines.extend(f"  • {item}" for item in items[:limit])
            if len(items) > limit:
                lines.append(f"  ... and {len(items) - limit} more {noun}")
            lines.append("")
    if tools:
        lines.append("Tools Used: " + ", ".join(f"{name} ({n}x)" for name, n in tools.items()))
        lines.append("")
    if errors:
        lines.append("Errors Encountered:")
        lines.extend(f"  • {e}" for e in errors[:3])
        if len(errors) > 3:
            lines.append(f"  ... and {len(errors) - 3} more errors")
        lines.append("")
    lines.append(f"Total Messages Compressed: {len(messages)}")
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class HistoryCompressor:
    """Compresses a `ConversationHistory` past a token threshold.

    Attributes:
        token_threshold: Estimated tokens above which compression runs
        preserve: Most recent messages always kept verbatim (default 10)
        min_summary_chars: Shorter AI summaries are rejected
    """

    token_threshold: int = 50_000
    preserve: int = 10
    min_summary_chars: int = 50

    def needs_compression(self, history: ConversationHistory) -> bool:
        return history.estimate_tokens() > self.token_threshold

    async def compress_if_needed(
        self, history: ConversationHistory, summarize: Summarize | None = None
    ) -> CompressionResult:
        messages = history.messages()
        tokens_before = estimate_tokens(messages)
        if tokens_before <= self.token_threshold:
            return self._unchanged(messages, tokens_before)

        compressed, strategy, preserved = await self.compress(messages, summarize)
        if strategy is CompressionStrategy.NONE:
            return self._unchanged(messages, tokens_before)

        history.replace(compressed)
        result = CompressionResult(
            strategy=strategy,
            original_count=len(messages),
            preserved_count=preserved,
            tokens_before=tokens_before,
            tokens_after=estimate_tokens(compressed),
        )
        logger.info(
            "Compressed history using %s: %d -> %d messages",
            strategy.value, len(messages), len(compressed),
            extra=result.to_dict(),
        )
        return result

    async def compress(
        self, messages: Sequence[Message], summarize: Summarize | None = None
    ) -> tuple[list[Message], CompressionStrategy, int]:
        """Compress unconditionally.

        Returns:
            (new messages, strategy used, number of messages kept verbatim)
        """
        if len(messages) <= self.preserve + 2:
            return list(messages), CompressionStrategy.NONE, len(messages)

        boundary = preserve_boundary(messages, self.preserve)
        if boundary == 0:
            return list(messages), CompressionStrategy.NONE, len(messages)

        older, kept = messages[:boundary], list(messages[boundary:])

        if summarize is not None:
            summary = await self._ai_summary(older, summarize)
            if summary is not None:
                text = (
                    f"[COMPRESSED HISTORY - AI Summary]\n\n{summary}\n\n"
                    f"(Original: {len(older)} messages, Preserved: {len(kept)} recent messages)"
                )
                candidate = self._assemble(text, kept)
                if estimate_tokens(candidate) <= self.token_threshold:
                    return candidate, CompressionStrategy.AI_SUMMARY, len(kept)
                logger.info("AI summary leaves history above threshold, truncating instead")

        text = structured_summary(older)
        budget_chars = (self.token_threshold - estimate_tokens(kept) - 50) * 4
        if len(text) > budget_chars:
            text = text[: max(budget_chars, 0)].rstrip() + "\n... [summary truncated]"
        return self._assemble(text, kept), CompressionStrategy.STRUCTURED_TRUNCATION, len(kept)

    async def _ai_summary(self, older: Sequence[Message], summarize: Summarize) -> str | None:
        try:
            summary = await summarize(older)
        except Exception as e:
            logger.warning("AI summary failed, falling back to truncation: %s", e)
            return None
        if not isinstance(summary, str) or len(summary) <= self.min_summary_chars:
            logger.debug("AI summary rejected (empty or too short)")
            return None
        return summary

    @staticmethod
    def _assemble(summary_text: str, kept: list[Message]) -> list[Message]:
        head = [Message.user(summary_text)]
        # Skip the acknowledgement when the kept tail already starts with the model
        if not kept or kept[0].role is not Role.MODEL:
            head.append(Message.model(TextPart(ACKNOWLEDGEMENT)))
        return head + kept

    @staticmethod
    def _unchanged(messages: Sequence[Message], tokens: int) -> CompressionResult:
        return CompressionResult(
            strategy=CompressionStrategy.NONE,
            original_count=len(messages),
            preserved_count=len(messages),
            tokens_before=tokens,
            tokens_after=tokens,
        )
