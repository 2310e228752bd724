"""Write tools over the instance tree.

Handlers never mutate the tree. They check preconditions and return the
operation data the executor queues for approval; the matching applier
runs only after the human approves.

A parent is considered present when it exists now or when a pending (or
just approved) create operation will produce it, so one batch can create
a folder and then a script inside it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from luxloop.errors.types import ErrorCategory, ToolFailure
from luxloop.tools.approval import ApprovalQueue, OperationStatus
from luxloop.tools.builtin.environment import (
    CREATABLE_CLASSES,
    SCRIPT_CLASSES,
    InstanceTree,
    count_lines,
    require_arg,
    split_path,
)
from luxloop.types import ToolCategory, ToolContext, ToolSpec

logger = logging.getLogger(__name__)

VERIFICATION_TYPES = frozenset({"visual", "functional", "both"})

_WHITESPACE_RE = re.compile(r"\s+")


def will_exist(tree: InstanceTree, queue: ApprovalQueue, path: str) -> bool:
    """Whether `path` exists now or a queued create operation will make it."""
    if tree.exists(path):
        return True
    for op in queue.all():
        if op.status not in (OperationStatus.PENDING, OperationStatus.APPROVED):
            continue
        if op.type == "create_instance" and f"{op.data['parent']}.{op.data['name']}" == path:
            return True
        if op.type == "create_script" and op.data.get("path") == path:
            return True
    return False


def _parent_and_name(path: str) -> tuple[str, str]:
    parts = split_path(path)
    if len(parts) < 2:
        raise ToolFailure(f"Path needs a parent: {path}", ErrorCategory.PARENT_ERROR)
    return ".".join(parts[:-1]), parts[-1]


def _changed_lines(old: str, new: str) -> int:
    old_lines, new_lines = old.split("\n"), new.split("\n")
    changed = sum(1 for a, b in zip(old_lines, new_lines) if a != b)
    return changed + abs(len(old_lines) - len(new_lines))


def _normalize(line: str) -> str:
    return _WHITESPACE_RE.sub(" ", line.strip())


def find_patch_span(source: str, search: str) -> tuple[int, int]:
    """Locate `search` in `source` and return its (start, end) offsets.

    Exact matching is tried first. Otherwise lines are compared with
    whitespace collapsed, ignoring blank lines, so indentation drift in
    the model's copy still matches.

    Raises:
        ToolFailure: No match (SEARCH_FAILED) or several (AMBIGUOUS_MATCH).
    """
    start = source.find(search)
    if start >= 0:
        if source.find(search, start + 1) >= 0:
            raise ToolFailure(
                "Ambiguous match: Search content found multiple times. Please provide more context.",
                ErrorCategory.AMBIGUOUS_MATCH,
            )
        return start, start + len(search)

    wanted = [_normalize(line) for line in search.split("\n")]
    wanted = [line for line in wanted if line]
    if not wanted:
        raise ToolFailure(
            "Search content cannot be empty or just whitespace", ErrorCategory.SEARCH_FAILED
        )

    lines = source.split("\n")
    spans: list[tuple[int, int]] = []
    for first, line in enumerate(lines):
        if _normalize(line) != wanted[0]:
            continue
        current, matched = first, True
        for expected in wanted[1:]:
            current += 1
            while current < len(lines) and not _normalize(lines[current]):
                current += 1
            if current >= len(lines) or _normalize(lines[current]) != expected:
                matched = False
                break
        if matched:
            spans.append((first, current))

    if not spans:
        raise ToolFailure(
            "Search content not found. Please verify the code exists exactly as specified.",
            ErrorCategory.SEARCH_FAILED,
        )
    if len(spans) > 1:
        line_numbers = ", ".join(str(first + 1) for first, _ in spans)
        raise ToolFailure(
            f"Ambiguous match: Found {len(spans)} occurrences at lines {line_numbers}. "
            "Please provide more context.",
            ErrorCategory.AMBIGUOUS_MATCH,
        )

    first, last = spans[0]
    start = sum(len(line) + 1 for line in lines[:first])
    end = start + len("\n".join(lines[first : last + 1]))
    return start, end


class WriteHandlers:
    """Handlers and appliers for the tree-mutating tools."""

    def __init__(self, tree: InstanceTree) -> None:
        self.tree = tree

    # =========================================================================
    # Scripts
    # =========================================================================

    async def create_script(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        source = args.get("source")
        if source is None:
            raise ToolFailure("source is required")
        script_type = args.get("script_type") or "Script"
        if script_type not in SCRIPT_CLASSES:
            raise ToolFailure(
                "Invalid script_type. Must be Script, LocalScript, or ModuleScript.",
                ErrorCategory.INVALID_CLASS,
            )

        parent, _ = _parent_and_name(path)
        if not will_exist(self.tree, ctx.approval_queue, parent):
            raise ToolFailure(
                f"Parent not found and not queued for creation: {parent}",
                ErrorCategory.PARENT_ERROR,
            )
        if self.tree.exists(path):
            raise ToolFailure(f"Script already exists: {path}", ErrorCategory.ALREADY_EXISTS)

        return {
            "path": path,
            "script_type": script_type,
            "source": source,
            "purpose": args.get("purpose") or "No purpose specified",
            "line_count": count_lines(source),
            "description": f"Create {script_type} {path} ({count_lines(source)} lines)",
        }

    async def apply_create_script(self, data: dict[str, Any]) -> dict[str, Any]:
        parent, name = _parent_and_name(data["path"])
        self.tree.create(parent, name, data["script_type"], source=data["source"])
        return {
            "path": data["path"],
            "script_type": data["script_type"],
            "line_count": count_lines(data["source"]),
        }

    async def edit_script(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        new_source = args.get("new_source")
        if new_source is None:
            raise ToolFailure("new_source is required")
        node = self.tree.require_script(path)
        changed = _changed_lines(node.source or "", new_source)
        return {
            "path": path,
            "new_source": new_source,
            "explanation": args.get("explanation") or "",
            "lines_changed": changed,
            "description": f'Edit "{path}" ({changed} lines changed)',
        }

    async def apply_edit_script(self, data: dict[str, Any]) -> dict[str, Any]:
        old = self.tree.set_source(data["path"], data["new_source"])
        return {"path": data["path"], "lines_changed": _changed_lines(old, data["new_source"])}

    async def patch_script(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        search = require_arg(args, "search_content")
        replace = args.get("replace_content")
        if replace is None:
            raise ToolFailure("replace_content is required")
        node = self.tree.require_script(path)
        # Fail now rather than after approval when the patch cannot apply
        find_patch_span((node.source or "").replace("\r", ""), search.replace("\r", ""))
        return {
            "path": path,
            "search_content": search,
            "replace_content": replace,
            "description": f'Patch "{path}" ({count_lines(replace)} lines)',
        }

    async def apply_patch_script(self, data: dict[str, Any]) -> dict[str, Any]:
        node = self.tree.require_script(data["path"])
        source = (node.source or "").replace("\r", "")
        replace = data["replace_content"].replace("\r", "")
        start, end = find_patch_span(source, data["search_content"].replace("\r", ""))
        self.tree.set_source(data["path"], source[:start] + replace + source[end:])
        first = source.count("\n", 0, start) + 1
        last = source.count("\n", 0, end) + 1
        return {
            "path": data["path"],
            "lines_changed": count_lines(replace),
            "patched_lines": f"{first}-{last}",
        }

    # =========================================================================
    # Instances
    # =========================================================================

    async def create_instance(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        class_name = require_arg(args, "class_name")
        parent = require_arg(args, "parent")
        name = require_arg(args, "name")
        properties = args.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise ToolFailure("properties must be a mapping", ErrorCategory.TYPE_ERROR)

        if not will_exist(self.tree, ctx.approval_queue, parent):
            raise ToolFailure(
                f"Parent not found and not queued for creation: {parent}",
                ErrorCategory.PARENT_ERROR,
            )
        parent_node = self.tree.resolve(parent)
        if parent_node is not None and name in parent_node.children:
            raise ToolFailure(
                f"A child named '{name}' already exists in {parent}",
                ErrorCategory.ALREADY_EXISTS,
            )
        if class_name not in CREATABLE_CLASSES:
            raise ToolFailure(f"Invalid class name: {class_name}", ErrorCategory.INVALID_CLASS)

        return {
            "class_name": class_name,
            "parent": parent,
            "name": name,
            "properties": dict(properties),
            "description": f'Create {class_name} "{name}" in {parent}',
        }

    async def apply_create_instance(self, data: dict[str, Any]) -> dict[str, Any]:
        self.tree.create(data["parent"], data["name"], data["class_name"], data["properties"])
        return {
            "path": f"{data['parent']}.{data['name']}",
            "class_name": data["class_name"],
            "properties_set": sorted(data["properties"]),
        }

    async def set_instance_properties(
        self, args: dict[str, Any], ctx: ToolContext
    ) -> dict[str, Any]:
        path = require_arg(args, "path")
        properties = args.get("properties")
        if not isinstance(properties, Mapping) or not properties:
            raise ToolFailure("properties must be a non-empty mapping", ErrorCategory.TYPE_ERROR)
        if not will_exist(self.tree, ctx.approval_queue, path):
            raise ToolFailure(
                f"Instance not found and not queued for creation: {path}",
                ErrorCategory.MISSING_RESOURCE,
            )

        node = self.tree.resolve(path)
        old = {k: node.properties.get(k) for k in properties} if node is not None else {}
        return {
            "path": path,
            "old_properties": old,
            "new_properties": dict(properties),
            "description": f'Set {", ".join(sorted(properties))} on "{path}"',
        }

    async def apply_set_instance_properties(self, data: dict[str, Any]) -> dict[str, Any]:
        previous = self.tree.set_properties(data["path"], data["new_properties"])
        return {"path": data["path"], "previous": previous, "updated": sorted(data["new_properties"])}

    async def delete_instance(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        node = self.tree.require(path)
        descendants = list(node.descendants())
        return {
            "path": path,
            "instance_info": {
                "class_name": node.class_name,
                "children": len(node.children),
                "descendants": len(descendants),
                "has_scripts": any(d.is_script for d in descendants),
            },
            "description": f"Delete {path} ({node.class_name} with {len(descendants)} descendants)",
        }

    async def apply_delete_instance(self, data: dict[str, Any]) -> dict[str, Any]:
        removed = self.tree.delete(data["path"])
        return {"path": data["path"], "deleted": removed.class_name}

    # =========================================================================
    # Feedback
    # =========================================================================

    async def request_user_feedback(
        self, args: dict[str, Any], ctx: ToolContext
    ) -> dict[str, Any]:
        """Build the feedback request; the executor queues it and pauses the loop."""
        question = require_arg(args, "question")
        if args.get("context") is None:
            raise ToolFailure("context is required")
        verification_type = args.get("verification_type") or "visual"
        if verification_type not in VERIFICATION_TYPES:
            verification_type = "visual"
        return {
            "question": question,
            "context": args["context"],
            "verification_type": verification_type,
            "suggestions": list(args.get("suggestions") or []),
        }

    def specs(self) -> list[ToolSpec]:
        write = ToolCategory.WRITE
        return [
            ToolSpec(
                "create_script", write, self.create_script, self.apply_create_script,
                required=("path", "source"), description="Create a script",
            ),
            ToolSpec(
                "edit_script", write, self.edit_script, self.apply_edit_script,
                required=("path", "new_source"), description="Replace a script's source",
            ),
            ToolSpec(
                "patch_script", write, self.patch_script, self.apply_patch_script,
                required=("path", "search_content"),
                description="Replace one unique block of a script",
            ),
            ToolSpec(
                "create_instance", write, self.create_instance, self.apply_create_instance,
                required=("class_name", "parent", "name"), description="Create an instance",
            ),
            ToolSpec(
                "set_instance_properties", write, self.set_instance_properties,
                self.apply_set_instance_properties,
                required=("path", "properties"), description="Set properties on an instance",
            ),
            ToolSpec(
                "delete_instance", write, self.delete_instance, self.apply_delete_instance,
                required=("path",), description="Delete an instance and its descendants",
            ),
            ToolSpec(
                "request_user_feedback", write, self.request_user_feedback,
                required=("question", "context"), awaits_feedback=True,
                description="Ask the user to verify a change",
            ),
        ]
