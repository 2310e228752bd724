"""Tool registry: name -> typed handler, validated at registration.

Catching a malformed tool when it is registered is far cheaper than
discovering it mid-conversation, so every spec is checked up front.
"""

from __future__ import annotations

import inspect
import keyword
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from luxloop.errors.types import RegistrationError
from luxloop.types import ToolCategory, ToolSpec

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolRegistry:
    """Registered tools by name."""

    _tools: dict[str, ToolSpec] = field(default_factory=dict, init=False)

    def register(self, spec: ToolSpec) -> None:
        """Register a tool.

        Raises:
            RegistrationError: Duplicate name, bad name, non-async handler,
                or an applier that does not match the category.
        """
        _validate(spec)
        if spec.name in self._tools:
            raise RegistrationError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        logger.debug("Registered tool %s (%s)", spec.name, spec.category.value)

    def register_all(self, specs: Iterable[ToolSpec]) -> None:
        for spec in specs:
            self.register(spec)

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self, category: ToolCategory | None = None) -> frozenset[str]:
        return frozenset(
            name
            for name, spec in self._tools.items()
            if category is None or spec.category is category
        )

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def _validate(spec: ToolSpec) -> None:
    if not spec.name.isidentifier() or keyword.iskeyword(spec.name):
        raise RegistrationError(f"Invalid tool name: {spec.name!r}")
    if not isinstance(spec.category, ToolCategory):
        raise RegistrationError(f"{spec.name}: category must be a ToolCategory")
    if not _is_async_callable(spec.handler):
        raise RegistrationError(f"{spec.name}: handler must be an async function")

    if spec.category is ToolCategory.WRITE and not spec.awaits_feedback:
        if spec.applier is None:
            raise RegistrationError(f"{spec.name}: write tools need an applier")
        if not _is_async_callable(spec.applier):
            raise RegistrationError(f"{spec.name}: applier must be an async function")
    elif spec.applier is not None:
        raise RegistrationError(f"{spec.name}: only write tools take an applier")

    if spec.awaits_feedback and spec.category is not ToolCategory.WRITE:
        raise RegistrationError(f"{spec.name}: feedback tools are write tools")
    if any(not r.isidentifier() for r in spec.required):
        raise RegistrationError(f"{spec.name}: required argument names must be identifiers")


def _is_async_callable(obj: Any) -> bool:
    """Coroutine functions and objects with an ``async __call__``."""
    if inspect.iscoroutinefunction(obj):
        return True
    return callable(obj) and inspect.iscoroutinefunction(getattr(obj, "__call__", None))
