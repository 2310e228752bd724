"""Persistence interfaces and project memory."""

from luxloop.memory.decisions import DecisionMemory, DecisionPattern, Suggestion, extract_keywords
from luxloop.memory.project_context import (
    Anchor,
    ContextEntry,
    ContextType,
    ProjectContext,
    ValidationReport,
)
from luxloop.memory.store import JsonFileStore, KeyValueStore, MemoryStore, validate_key

__all__ = [
    # Stores
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "validate_key",
    # Project memory
    "ProjectContext",
    "ContextEntry",
    "ContextType",
    "Anchor",
    "ValidationReport",
    # Decision memory
    "DecisionMemory",
    "DecisionPattern",
    "Suggestion",
    "extract_keywords",
]
