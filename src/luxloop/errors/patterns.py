"""Error pattern and recovery strategy tables.

Patterns are checked in order and the first match wins, so more specific
categories (parent, search, type) come before the broad ones they would
otherwise be swallowed by ("not found", "expected").
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from luxloop.errors.types import ErrorCategory, Severity


@dataclass(frozen=True, slots=True)
class ErrorPattern:
    """Patterns that identify one error category."""

    category: ErrorCategory
    severity: Severity
    patterns: tuple[re.Pattern[str], ...]
    suggestions: tuple[str, ...]
    """Generic recovery suggestions, best first."""

    def matches(self, message: str) -> bool:
        return any(p.search(message) for p in self.patterns)


@dataclass(frozen=True, slots=True)
class RecoveryStrategy:
    """A concrete next step for a category of error."""

    name: str
    tool: str | None
    message: str


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(
        ErrorCategory.USER_DENIED,
        Severity.INFO,
        _compile(r"user denied", r"rejected", r"not approved"),
        (
            "The user chose not to approve this operation",
            "Ask if they want a different approach",
            "Explain the purpose better and try again if appropriate",
        ),
    ),
    ErrorPattern(
        ErrorCategory.PARENT_ERROR,
        Severity.MEDIUM,
        _compile(r"parent not found", r"invalid parent", r"cannot parent"),
        (
            "Create the parent container first",
            "Use list_children to verify parent path exists",
            "Check if the parent allows this type of child",
        ),
    ),
    ErrorPattern(
        ErrorCategory.SEARCH_FAILED,
        Severity.MEDIUM,
        _compile(r"search content not found", r"could not find", r"no match"),
        (
            "Re-read the file - content may have changed",
            "Check for whitespace differences (indentation matters!)",
            "The code might have been modified by a previous operation",
            "Copy search_content exactly from get_script output",
        ),
    ),
    ErrorPattern(
        ErrorCategory.AMBIGUOUS_MATCH,
        Severity.MEDIUM,
        _compile(r"ambiguous match", r"found multiple", r"not unique"),
        (
            "Re-read the file with get_script to see exact content",
            "Include more context lines in your search_content",
            "Use more unique identifiers in the search pattern",
        ),
    ),
    ErrorPattern(
        ErrorCategory.ALREADY_EXISTS,
        Severity.LOW,
        _compile(r"already exists", r"duplicate", r"name collision"),
        (
            "Use get_instance to check existing state",
            "Consider modifying the existing resource instead of creating new",
            "Use a different name or delete the existing one first",
        ),
    ),
    ErrorPattern(
        ErrorCategory.INVALID_CLASS,
        Severity.MEDIUM,
        _compile(r"invalid classname", r"invalid class name", r"cannot create", r"unknown class"),
        (
            "Verify the class name is spelled correctly (case-sensitive)",
            "Check the API reference for the correct class name",
            "Some classes cannot be created directly",
        ),
    ),
    ErrorPattern(
        ErrorCategory.TYPE_ERROR,
        Severity.MEDIUM,
        _compile(r"cannot convert", r"invalid value", r"type mismatch", r"expected \w+, got"),
        (
            "Check the expected value format (e.g. '0,100,0,50' for a 2D size)",
            "For colors, use '255,128,0' or '#FF8000' format",
            "For vectors, use 'X,Y,Z' format",
            "Use get_instance to see what type the property expects",
        ),
    ),
    ErrorPattern(
        ErrorCategory.PROPERTY_ERROR,
        Severity.MEDIUM,
        _compile(r"cannot set", r"read-only", r"invalid property", r"not a valid member"),
        (
            "Use get_instance to see what properties actually exist",
            "Check if the property name is spelled correctly",
            "Some properties require specific value types",
            "Verify the instance class supports this property",
        ),
    ),
    ErrorPattern(
        ErrorCategory.MISSING_RESOURCE,
        Severity.MEDIUM,
        _compile(r"not found", r"does not exist", r"doesn't exist", r"nil value", r"attempt to index nil"),
        (
            "Verify the path exists using get_instance or list_children",
            "Check for typos in the path",
            "The parent container might not exist - create it first",
            "Use get_project_context to recall the project structure",
        ),
    ),
    ErrorPattern(
        ErrorCategory.SYNTAX_ERROR,
        Severity.HIGH,
        _compile(r"syntax error", r"unexpected", r"expected", r"malformed"),
        (
            "Re-read the script using get_script to see current state",
            "Check for missing 'end', 'then', 'do', or closing brackets",
            "Verify string quotes are properly closed",
            "Count opening/closing brackets - they must match",
        ),
    ),
    ErrorPattern(
        ErrorCategory.RATE_LIMITED,
        Severity.LOW,
        _compile(r"timeout", r"timed out", r"rate limit", r"too many requests", r"try again"),
        (
            "Wait a moment before retrying",
            "Consider batching operations",
            "Reduce the frequency of calls",
        ),
    ),
)

PATTERNS_BY_CATEGORY: dict[ErrorCategory, ErrorPattern] = {
    p.category: p for p in ERROR_PATTERNS
}


RECOVERY_STRATEGIES: dict[ErrorCategory, tuple[RecoveryStrategy, ...]] = {
    ErrorCategory.MISSING_RESOURCE: (
        RecoveryStrategy("verify_path", "get_instance", "Verify the path exists"),
        RecoveryStrategy("list_parent", "list_children", "List parent contents to find correct name"),
        RecoveryStrategy("search_project", "search_scripts", "Search for the resource in the project"),
        RecoveryStrategy("create_resource", "create_instance", "Create the missing resource"),
    ),
    ErrorCategory.SYNTAX_ERROR: (
        RecoveryStrategy("reread_source", "get_script", "Re-read the script to see current state"),
        RecoveryStrategy("smaller_change", "patch_script", "Make a smaller, targeted change"),
        RecoveryStrategy("full_rewrite", "edit_script", "Rewrite the problematic section entirely"),
    ),
    ErrorCategory.SEARCH_FAILED: (
        RecoveryStrategy("reread_source", "get_script", "Re-read the file - content may have changed"),
        RecoveryStrategy("partial_match", "search_scripts", "Search for a unique part of the content"),
        RecoveryStrategy("full_replace", "edit_script", "Replace the entire script instead of patching"),
    ),
    ErrorCategory.AMBIGUOUS_MATCH: (
        RecoveryStrategy("add_context", "get_script", "Include more context lines"),
        RecoveryStrategy("unique_anchor", "get_script", "Find a unique string nearby as anchor"),
    ),
    ErrorCategory.PARENT_ERROR: (
        RecoveryStrategy("verify_parent", "list_children", "Verify parent path structure"),
        RecoveryStrategy("create_parent", "create_instance", "Create the parent container first"),
        RecoveryStrategy("alternative_location", "list_children", "Find alternative parent location"),
    ),
    ErrorCategory.ALREADY_EXISTS: (
        RecoveryStrategy("use_existing", "set_instance_properties", "Modify the existing resource"),
        RecoveryStrategy("rename_new", "create_instance", "Use a different name for the new resource"),
        RecoveryStrategy("delete_first", "delete_instance", "Delete the existing one first"),
    ),
    ErrorCategory.PROPERTY_ERROR: (
        RecoveryStrategy("inspect_instance", "get_instance", "Inspect the instance properties"),
        RecoveryStrategy("check_class", "get_instance", "Verify the instance class type"),
        RecoveryStrategy("try_alternative", "set_instance_properties", "Try alternative property format"),
    ),
    ErrorCategory.TYPE_ERROR: (
        RecoveryStrategy("check_format", "get_instance", "Check expected value format"),
        RecoveryStrategy("try_string", "set_instance_properties", "Try passing value as string"),
        RecoveryStrategy("try_components", "set_instance_properties", "Try passing individual components"),
    ),
    ErrorCategory.USER_DENIED: (
        RecoveryStrategy("explain_better", None, "Explain the purpose of the change"),
        RecoveryStrategy("alternative_approach", None, "Propose an alternative approach"),
        RecoveryStrategy("ask_user", None, "Ask the user what they prefer"),
    ),
}


def match_category(message: str) -> ErrorPattern | None:
    """Return the first pattern entry matching an error message."""
    for pattern in ERROR_PATTERNS:
        if pattern.matches(message):
            return pattern
    return None
