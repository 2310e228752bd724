"""Conversation history, token estimation and compression."""

from luxloop.history.compression import (
    ACKNOWLEDGEMENT,
    CompressionResult,
    CompressionStrategy,
    HistoryCompressor,
    Summarize,
    preserve_boundary,
    structured_summary,
)
from luxloop.history.conversation import (
    ConversationHistory,
    ToolLogEntry,
    check_pairing,
    estimate_tokens,
)
from luxloop.history.summarizer import ModelSummarizer, render_transcript

__all__ = [
    # History
    "ConversationHistory",
    "ToolLogEntry",
    "estimate_tokens",
    "check_pairing",
    # Compression
    "HistoryCompressor",
    "CompressionResult",
    "CompressionStrategy",
    "Summarize",
    "ACKNOWLEDGEMENT",
    "preserve_boundary",
    "structured_summary",
    # Summaries
    "ModelSummarizer",
    "render_transcript",
]
