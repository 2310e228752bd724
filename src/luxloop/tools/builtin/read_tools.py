"""Read-only tools over the instance tree."""

from __future__ import annotations

import logging
from typing import Any

from luxloop.errors.types import ToolFailure
from luxloop.tools.builtin.environment import InstanceTree, count_lines, require_arg
from luxloop.types import ToolCategory, ToolContext, ToolSpec

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 50
_CONTEXT_CHARS = 100


class ReadHandlers:
    """Handlers for get_instance, list_children, get_script and search_scripts."""

    def __init__(self, tree: InstanceTree) -> None:
        self.tree = tree

    async def get_instance(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        node = self.tree.require(path)
        info = node.describe(path)
        info["descendant_count"] = sum(1 for _ in node.descendants())

        wanted = args.get("properties")
        if isinstance(wanted, list):
            info["properties"] = {
                name: info["properties"].get(name, "<unreadable>") for name in wanted
            }
        return info

    async def list_children(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        node = self.tree.require(path)
        class_filter = args.get("class_filter")

        children = []
        for name, child in node.children.items():
            if class_filter and child.class_name != class_filter:
                continue
            entry = {
                "name": name,
                "class_name": child.class_name,
                "path": f"{path}.{name}",
                "child_count": len(child.children),
            }
            if child.is_script:
                entry["line_count"] = count_lines(child.source or "")
            children.append(entry)

        return {
            "path": path,
            "class_name": node.class_name,
            "child_count": len(children),
            "children": children,
        }

    async def get_script(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        path = require_arg(args, "path")
        node = self.tree.require_script(path)
        source = node.source or ""
        return {
            "path": path,
            "source": source,
            "class_name": node.class_name,
            "line_count": count_lines(source),
        }

    async def search_scripts(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        query = args.get("query")
        if not query:
            raise ToolFailure("query is required")

        matches = []
        for path, node in self.tree.scripts():
            source = node.source or ""
            index = source.find(query)
            if index < 0:
                continue
            line_start = source.rfind("\n", 0, index) + 1
            line_end = source.find("\n", index)
            line = source[line_start : line_end if line_end >= 0 else len(source)]
            matches.append({
                "path": path,
                "line": source.count("\n", 0, index) + 1,
                "context": line.strip()[:_CONTEXT_CHARS],
            })
            if len(matches) >= MAX_SEARCH_RESULTS:
                break

        if not matches:
            return {"query": query, "count": 0, "message": "No matches found"}
        return {"query": query, "count": len(matches), "matches": matches}

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                "get_instance", ToolCategory.READ, self.get_instance,
                required=("path",), description="Inspect an instance and its properties",
            ),
            ToolSpec(
                "list_children", ToolCategory.READ, self.list_children,
                required=("path",), description="List the direct children of an instance",
            ),
            ToolSpec(
                "get_script", ToolCategory.READ, self.get_script,
                required=("path",), description="Read a script's source",
            ),
            ToolSpec(
                "search_scripts", ToolCategory.READ, self.search_scripts,
                required=("query",), description="Find scripts containing a literal string",
            ),
        ]
