"""In-memory instance tree the built-in tools operate on.

Instances are addressed by dotted paths from a top-level service, e.g.
``ServerScriptService.Combat.DamageHandler``. Scripts are instances of a
script class carrying a ``source`` string.

The tree only changes through `InstanceTree` methods, which the write
tools call from their appliers after human approval.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from luxloop.errors.types import ErrorCategory, ToolFailure

SCRIPT_CLASSES = frozenset({"Script", "LocalScript", "ModuleScript"})

CREATABLE_CLASSES = frozenset({
    "Folder",
    "Model",
    "Part",
    "SpawnLocation",
    "Configuration",
    "StringValue",
    "IntValue",
    "NumberValue",
    "BoolValue",
    "ObjectValue",
    "RemoteEvent",
    "RemoteFunction",
    "BindableEvent",
    "ScreenGui",
    "Frame",
    "TextLabel",
    "TextButton",
    "ImageLabel",
    "Sound",
}) | SCRIPT_CLASSES

DEFAULT_SERVICES: tuple[str, ...] = (
    "Workspace",
    "ReplicatedStorage",
    "ServerScriptService",
    "ServerStorage",
    "StarterGui",
    "StarterPlayer",
)

# Properties tools may never set directly
READ_ONLY_PROPERTIES = frozenset({"Name", "Parent", "ClassName", "Source"})

_JSON_SCALARS = (str, int, float, bool, type(None))


def split_path(path: str) -> list[str]:
    return [part for part in path.split(".") if part]


def require_arg(args: dict[str, Any], key: str) -> Any:
    """Fetch a required argument or fail with ``<key> is required``."""
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ToolFailure(f"{key} is required")
    return value


def _check_value(name: str, value: Any) -> None:
    if isinstance(value, _JSON_SCALARS):
        return
    if isinstance(value, list) and all(isinstance(v, (int, float)) for v in value):
        return
    raise ToolFailure(
        f"Unable to cast value for property '{name}': expected a string, number, bool "
        f"or list of numbers, got {type(value).__name__}",
        ErrorCategory.TYPE_ERROR,
    )


@dataclass(slots=True)
class Instance:
    """One node of the tree."""

    name: str
    class_name: str
    properties: dict[str, Any] = field(default_factory=dict)
    source: str | None = None
    children: dict[str, Instance] = field(default_factory=dict)

    @property
    def is_script(self) -> bool:
        return self.class_name in SCRIPT_CLASSES

    def describe(self, path: str) -> dict[str, Any]:
        info: dict[str, Any] = {
            "path": path,
            "name": self.name,
            "class_name": self.class_name,
            "properties": {"Name": self.name, **self.properties},
            "child_count": len(self.children),
        }
        if self.is_script:
            info["line_count"] = count_lines(self.source or "")
        return info

    def descendants(self) -> Iterator[Instance]:
        for child in self.children.values():
            yield child
            yield from child.descendants()


def count_lines(text: str) -> int:
    return text.count("\n") + 1 if text else 0


class InstanceTree:
    """Mutable instance hierarchy rooted at a fixed set of services."""

    def __init__(self, services: tuple[str, ...] = DEFAULT_SERVICES) -> None:
        self._services: dict[str, Instance] = {
            name: Instance(name=name, class_name=name) for name in services
        }

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve(self, path: str) -> Instance | None:
        parts = split_path(path)
        if not parts:
            return None
        node = self._services.get(parts[0])
        for part in parts[1:]:
            if node is None:
                return None
            node = node.children.get(part)
        return node

    def exists(self, path: str) -> bool:
        return self.resolve(path) is not None

    def require(self, path: str) -> Instance:
        node = self.resolve(path)
        if node is None:
            raise ToolFailure(f"Instance not found: {path}", ErrorCategory.MISSING_RESOURCE)
        return node

    def require_script(self, path: str) -> Instance:
        node = self.resolve(path)
        if node is None or not node.is_script:
            raise ToolFailure(f"Script not found: {path}", ErrorCategory.MISSING_RESOURCE)
        return node

    def walk(self) -> Iterator[tuple[str, Instance]]:
        """Every (path, instance) pair, services included, depth first."""

        def _walk(prefix: str, node: Instance) -> Iterator[tuple[str, Instance]]:
            yield prefix, node
            for name, child in node.children.items():
                yield from _walk(f"{prefix}.{name}", child)

        for name, service in self._services.items():
            yield from _walk(name, service)

    def paths(self) -> list[str]:
        return [path for path, _ in self.walk()]

    def scripts(self) -> Iterator[tuple[str, Instance]]:
        return ((path, node) for path, node in self.walk() if node.is_script)

    # =========================================================================
    # Mutation
    # =========================================================================

    def create(
        self,
        parent: str,
        name: str,
        class_name: str,
        properties: dict[str, Any] | None = None,
        source: str | None = None,
    ) -> Instance:
        """Add a child under `parent`.

        Raises:
            ToolFailure: Missing parent, name collision, unknown class or a
                property the tree cannot store.
        """
        parent_node = self.resolve(parent)
        if parent_node is None:
            raise ToolFailure(f"Parent not found: {parent}", ErrorCategory.PARENT_ERROR)
        if name in parent_node.children:
            raise ToolFailure(
                f"A child named '{name}' already exists in {parent}",
                ErrorCategory.ALREADY_EXISTS,
            )
        if class_name not in CREATABLE_CLASSES:
            raise ToolFailure(f"Invalid class name: {class_name}", ErrorCategory.INVALID_CLASS)

        instance = Instance(name=name, class_name=class_name, source=source)
        if class_name in SCRIPT_CLASSES and source is None:
            instance.source = ""
        for key, value in (properties or {}).items():
            self._set_property(instance, key, value)
        parent_node.children[name] = instance
        return instance

    def set_properties(self, path: str, properties: dict[str, Any]) -> dict[str, Any]:
        """Set properties and return their previous values."""
        node = self.require(path)
        for key, value in properties.items():
            _check_value(key, value)
            if key in READ_ONLY_PROPERTIES:
                raise ToolFailure(
                    f"Property '{key}' is read-only", ErrorCategory.PROPERTY_ERROR
                )
        previous = {key: node.properties.get(key) for key in properties}
        for key, value in properties.items():
            self._set_property(node, key, value)
        return previous

    def set_source(self, path: str, source: str) -> str:
        """Replace a script's source and return the old one."""
        node = self.require_script(path)
        old = node.source or ""
        node.source = source
        return old

    def delete(self, path: str) -> Instance:
        parts = split_path(path)
        if len(parts) < 2:
            raise ToolFailure(f"Cannot delete service: {path}", ErrorCategory.PARENT_ERROR)
        parent = self.resolve(".".join(parts[:-1]))
        if parent is None or parts[-1] not in parent.children:
            raise ToolFailure(f"Instance not found: {path}", ErrorCategory.MISSING_RESOURCE)
        return parent.children.pop(parts[-1])

    @staticmethod
    def _set_property(node: Instance, key: str, value: Any) -> None:
        if key in READ_ONLY_PROPERTIES:
            raise ToolFailure(f"Property '{key}' is read-only", ErrorCategory.PROPERTY_ERROR)
        _check_value(key, value)
        node.properties[key] = value
