"""Built-in tools over an in-memory instance tree.

Example:
    >>> tree = InstanceTree()
    >>> registry = create_default_registry(tree)
    >>> len(registry)
    13
"""

from luxloop.tools.builtin.environment import (
    CREATABLE_CLASSES,
    DEFAULT_SERVICES,
    SCRIPT_CLASSES,
    Instance,
    InstanceTree,
)
from luxloop.tools.builtin.project_tools import ProjectHandlers
from luxloop.tools.builtin.read_tools import ReadHandlers
from luxloop.tools.builtin.write_tools import WriteHandlers, find_patch_span, will_exist
from luxloop.tools.registry import ToolRegistry
from luxloop.types import ToolSpec

# Write tools that pause the loop for approval
DANGEROUS_OPERATIONS = frozenset({
    "create_script",
    "edit_script",
    "patch_script",
    "create_instance",
    "set_instance_properties",
    "delete_instance",
})

FEEDBACK_OPERATIONS = frozenset({"request_user_feedback"})


def builtin_tools(tree: InstanceTree) -> list[ToolSpec]:
    return [
        *ReadHandlers(tree).specs(),
        *WriteHandlers(tree).specs(),
        *ProjectHandlers(tree).specs(),
    ]


def create_default_registry(tree: InstanceTree) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_all(builtin_tools(tree))
    return registry


__all__ = [
    "InstanceTree",
    "Instance",
    "SCRIPT_CLASSES",
    "CREATABLE_CLASSES",
    "DEFAULT_SERVICES",
    "ReadHandlers",
    "WriteHandlers",
    "ProjectHandlers",
    "find_patch_span",
    "will_exist",
    "DANGEROUS_OPERATIONS",
    "FEEDBACK_OPERATIONS",
    "builtin_tools",
    "create_default_registry",
]
