"""Project memory tools.

The model records what it learns about the project with
``update_project_context`` and reads it back with ``get_project_context``.
An entry given an ``anchor_path`` is tied to that instance or script and
goes stale when it disappears.
"""

from __future__ import annotations

import logging
from typing import Any

from luxloop.errors.types import ErrorCategory, ToolFailure
from luxloop.memory.project_context import Anchor, ProjectContext
from luxloop.tools.builtin.environment import InstanceTree, require_arg
from luxloop.types import ToolCategory, ToolContext, ToolSpec

logger = logging.getLogger(__name__)


def _project(ctx: ToolContext) -> ProjectContext:
    if ctx.project is None:
        raise ToolFailure("Project memory is not configured for this session")
    return ctx.project


class ProjectHandlers:
    def __init__(self, tree: InstanceTree) -> None:
        self.tree = tree

    def anchor_holds(self, anchor: Anchor) -> bool:
        node = self.tree.resolve(anchor.path)
        if anchor.kind == "script_exists":
            return node is not None and node.is_script
        return node is not None

    async def update_project_context(
        self, args: dict[str, Any], ctx: ToolContext
    ) -> dict[str, Any]:
        project = _project(ctx)
        context_type = require_arg(args, "context_type")
        content = require_arg(args, "content")

        anchor = None
        anchor_path = args.get("anchor_path")
        if anchor_path:
            node = self.tree.resolve(anchor_path)
            if node is None:
                raise ToolFailure(
                    f"Anchor path not found: {anchor_path}", ErrorCategory.MISSING_RESOURCE
                )
            anchor = Anchor("script_exists" if node.is_script else "instance_exists", anchor_path)

        try:
            entry = project.add_entry(context_type, content, anchor)
        except ValueError as e:
            kind = ErrorCategory.ALREADY_EXISTS if "Duplicate" in str(e) else ErrorCategory.TYPE_ERROR
            raise ToolFailure(str(e), kind) from e
        return {"message": f"Context added: {entry.content[:50]}"}

    async def get_project_context(
        self, args: dict[str, Any], ctx: ToolContext
    ) -> dict[str, Any]:
        project = _project(ctx)
        if args.get("validate"):
            project.validate_all(self.anchor_holds)

        entries = project.entries(include_stale=bool(args.get("include_stale")))
        info = project.session_info()
        if not entries:
            return {
                "has_context": False,
                "message": "No project context exists yet. Use update_project_context to add discoveries.",
                "session_info": info,
            }
        return {
            "has_context": True,
            "entries": [e.to_dict() for e in entries],
            "session_info": info,
            "formatted": project.format_for_prompt(),
        }

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                "update_project_context", ToolCategory.PROJECT, self.update_project_context,
                required=("context_type", "content"),
                description="Record a discovery about the project",
            ),
            ToolSpec(
                "get_project_context", ToolCategory.PROJECT, self.get_project_context,
                description="Read recorded project knowledge",
            ),
        ]
