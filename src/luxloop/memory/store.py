"""Key-value persistence for serialized state.

The agent never talks to a storage backend directly. Anything durable
(session snapshots, project memory) goes through `KeyValueStore`:
a value is a JSON-compatible mapping saved under a string key.

Two backends ship:
- MemoryStore: process-local dict, for tests and throwaway sessions
- JsonFileStore: one ``<key>.json`` file per key under a directory,
  written atomically (temp file + rename)
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "validate_key",
]

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def validate_key(key: str) -> str:
    """Reject keys that cannot be used as a file name.

    Raises:
        ValueError: Empty key, path separators or other unsafe characters.
    """
    if not isinstance(key, str) or not _KEY_RE.match(key) or ".." in key:
        raise ValueError(f"Invalid store key: {key!r}")
    return key


@runtime_checkable
class KeyValueStore(Protocol):
    """Load/save of serialized state keyed by id."""

    def load(self, key: str) -> dict[str, Any] | None:
        """Return the saved mapping, or None when nothing is stored."""
        ...

    def save(self, key: str, value: dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def keys(self) -> list[str]:
        ...


@dataclass(slots=True)
class MemoryStore:
    """In-process store. Values are deep-copied in and out."""

    _data: dict[str, dict[str, Any]] = field(default_factory=dict, init=False)

    def load(self, key: str) -> dict[str, Any] | None:
        value = self._data.get(validate_key(key))
        return deepcopy(value) if value is not None else None

    def save(self, key: str, value: dict[str, Any]) -> None:
        self._data[validate_key(key)] = deepcopy(value)

    def delete(self, key: str) -> bool:
        return self._data.pop(validate_key(key), None) is not None

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStore:
    """One JSON file per key under a directory.

    Usage:
        >>> store = JsonFileStore(Path(".luxloop/sessions"))
        >>> store.save("conv-1", {"history": []})
        >>> store.load("conv-1")
        {'history': []}
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        return self._root / f"{validate_key(key)}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object JSON in %s", path)
            return None
        return data

    def save(self, key: str, value: dict[str, Any]) -> None:
        """Write atomically.

        Raises:
            OSError: The directory or file could not be written.
            TypeError: The value is not JSON-serializable.
        """
        path = self._path(key)
        content = json.dumps(value, indent=2, default=str)

        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=f"{key}_", dir=self._root)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, path)
            except Exception:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        logger.debug("Saved %s (%d bytes)", path, len(content))

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True

    def keys(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.stem for p in self._root.glob("*.json"))
