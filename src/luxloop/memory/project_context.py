"""Self-validating project memory.

The model writes what it learns about a project (architecture,
conventions, pitfalls, dependencies) as short entries. An entry may
carry an anchor: something checkable in the environment, such as "this
script exists". Entries whose anchor no longer holds, or that have not
been verified for a week, are marked stale and left out of the prompt.

Entries live in a `KeyValueStore` under a single key, so the same
memory survives across sessions.

Example:
    >>> context = ProjectContext(MemoryStore())
    >>> context.add_entry(ContextType.ARCHITECTURE, "Combat logic lives in ServerScriptService.Combat")
    >>> print(context.format_for_prompt())
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from luxloop.memory.store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_KEY = "project-context"


class ContextType(Enum):
    ARCHITECTURE = "architecture"
    CONVENTION = "convention"
    WARNING = "warning"
    DEPENDENCY = "dependency"

    @property
    def heading(self) -> str:
        return {
            ContextType.ARCHITECTURE: "Architecture",
            ContextType.CONVENTION: "Conventions",
            ContextType.WARNING: "Warnings",
            ContextType.DEPENDENCY: "Dependencies",
        }[self]


@dataclass(frozen=True, slots=True)
class Anchor:
    """Something in the environment an entry depends on."""

    kind: str
    """``instance_exists`` or ``script_exists``."""

    path: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "path": self.path}


AnchorCheck = Callable[[Anchor], bool]


@dataclass(slots=True)
class ContextEntry:
    type: ContextType
    content: str
    anchor: Anchor | None = None
    created: float = field(default_factory=time.time)
    last_verified: float = field(default_factory=time.time)
    is_stale: bool = False
    stale_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "content": self.content,
            "anchor": self.anchor.to_dict() if self.anchor else None,
            "created": self.created,
            "last_verified": self.last_verified,
            "is_stale": self.is_stale,
            "stale_reason": self.stale_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextEntry:
        anchor = data.get("anchor")
        return cls(
            type=ContextType(data["type"]),
            content=data["content"],
            anchor=Anchor(anchor["kind"], anchor["path"]) if anchor else None,
            created=data.get("created", 0.0),
            last_verified=data.get("last_verified", data.get("created", 0.0)),
            is_stale=data.get("is_stale", False),
            stale_reason=data.get("stale_reason"),
        )


@dataclass(frozen=True, slots=True)
class ValidationReport:
    valid: int
    stale: int
    stale_entries: tuple[dict[str, Any], ...] = ()


class ProjectContext:
    """Project memory entries persisted through a key-value store.

    Args:
        store: Where entries are saved
        key: Store key for this project
        max_entries: Oldest stale entries are evicted first above this
        max_content_chars: Longer content is truncated
        stale_after_seconds: Unverified entries older than this go stale
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = DEFAULT_KEY,
        *,
        max_entries: int = 50,
        max_content_chars: int = 500,
        stale_after_seconds: float = 7 * 86400,
    ) -> None:
        self._store = store
        self._key = key
        self.max_entries = max_entries
        self.max_content_chars = max_content_chars
        self.stale_after_seconds = stale_after_seconds
        self._entries: list[ContextEntry] | None = None

    def _load(self) -> list[ContextEntry]:
        if self._entries is None:
            data = self._store.load(self._key) or {}
            entries: list[ContextEntry] = []
            for raw in data.get("entries", []):
                try:
                    entries.append(ContextEntry.from_dict(raw))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning("Skipping malformed context entry: %s", e)
            self._entries = entries
        return self._entries

    def _save(self) -> None:
        self._store.save(
            self._key,
            {
                "version": 1,
                "entries": [e.to_dict() for e in self._load()],
                "metadata": {"last_modified": time.time()},
            },
        )

    # =========================================================================
    # Entries
    # =========================================================================

    def add_entry(
        self, entry_type: ContextType | str, content: str, anchor: Anchor | None = None
    ) -> ContextEntry:
        """Add an entry and persist.

        Raises:
            ValueError: Unknown type, empty content or a duplicate entry.
        """
        try:
            entry_type = ContextType(entry_type)
        except ValueError:
            valid = ", ".join(t.value for t in ContextType)
            raise ValueError(f"Invalid context type: {entry_type} (expected one of: {valid})") from None

        content = content.strip()
        if not content:
            raise ValueError("Context content is empty")
        if len(content) > self.max_content_chars:
            content = content[: self.max_content_chars] + "..."

        entries = self._load()
        if any(e.content == content for e in entries):
            raise ValueError("Duplicate context entry")

        while len(entries) >= self.max_entries:
            victim = next((i for i, e in enumerate(entries) if e.is_stale), 0)
            entries.pop(victim)

        entry = ContextEntry(type=entry_type, content=content, anchor=anchor)
        entries.append(entry)
        self._save()
        logger.info("Project context added", extra={"type": entry_type.value})
        return entry

    def entries(self, include_stale: bool = False) -> list[ContextEntry]:
        return [e for e in self._load() if include_stale or not e.is_stale]

    def remove_entry(self, index: int) -> bool:
        """Remove by zero-based index. False when out of range."""
        entries = self._load()
        if not 0 <= index < len(entries):
            return False
        entries.pop(index)
        self._save()
        return True

    def clear_stale(self) -> int:
        entries = self._load()
        kept = [e for e in entries if not e.is_stale]
        removed = len(entries) - len(kept)
        if removed:
            self._entries = kept
            self._save()
        return removed

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_all(self, check: AnchorCheck | None = None) -> ValidationReport:
        """Re-check every anchor and the verification age; persist the result."""
        now = time.time()
        valid = 0
        stale: list[dict[str, Any]] = []

        for index, entry in enumerate(self._load()):
            reason = None
            if entry.anchor is not None and check is not None and not check(entry.anchor):
                reason = f"Anchor no longer valid: {entry.anchor.path}"
            elif now - entry.last_verified > self.stale_after_seconds:
                days = self.stale_after_seconds / 86400
                reason = f"Not verified in {days:.0f} days"

            if reason:
                entry.is_stale = True
                entry.stale_reason = reason
                stale.append({"index": index, "content": entry.content, "reason": reason})
            else:
                entry.is_stale = False
                entry.stale_reason = None
                entry.last_verified = now
                valid += 1

        self._save()
        if stale:
            logger.info("%d project context entries are stale", len(stale))
        return ValidationReport(valid=valid, stale=len(stale), stale_entries=tuple(stale))

    def format_for_prompt(self) -> str:
        """Markdown block of valid entries grouped by type, or "" when empty."""
        entries = self.entries()
        if not entries:
            return ""

        lines = ["## Project Context", ""]
        for entry_type in ContextType:
            items = [e.content for e in entries if e.type is entry_type]
            if items:
                lines.append(f"### {entry_type.heading}")
                lines.extend(f"- {item}" for item in items)
                lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    def session_info(self) -> dict[str, Any]:
        entries = self._load()
        stale = sum(1 for e in entries if e.is_stale)
        return {
            "is_new": not entries,
            "has_context": bool(entries),
            "total_entries": len(entries),
            "stale_count": stale,
        }
