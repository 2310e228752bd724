"""Pre-execution validation of model tool calls.

Catches hallucinated paths, placeholder code and missing arguments
before a call wastes an iteration. Critical issues block the call;
warnings are passed along to the model.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from luxloop.types import ToolSpec

logger = logging.getLogger(__name__)


class IssueSeverity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    severity: IssueSeverity
    field: str
    message: str


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Issues found in one tool call."""

    issues: tuple[ValidationIssue, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not any(i.severity is IssueSeverity.CRITICAL for i in self.issues)

    def format_for_llm(self) -> str | None:
        """Readable summary for the model, or None when clean."""
        if not self.issues and not self.suggestions:
            return None

        lines = ["TOOL CALL VALIDATION ISSUES:"]
        critical = [i for i in self.issues if i.severity is IssueSeverity.CRITICAL]
        warnings = [i for i in self.issues if i.severity is IssueSeverity.WARNING]
        if critical:
            lines.append("CRITICAL (must fix):")
            lines.extend(f"  - [{i.field}] {i.message}" for i in critical)
        if warnings:
            lines.append("WARNINGS:")
            lines.extend(f"  - [{i.field}] {i.message}" for i in warnings)
        if self.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"  - {s}" for s in self.suggestions)
        return "\n".join(lines)


# (regex, message, severity) checked against content fields
_PLACEHOLDERS: tuple[tuple[re.Pattern[str], str, IssueSeverity], ...] = (
    (re.compile(r"\bTODO\b"), "Contains TODO marker", IssueSeverity.WARNING),
    (re.compile(r"\bFIXME\b"), "Contains FIXME marker", IssueSeverity.WARNING),
    (re.compile(r"\.\.\."), "Contains ellipsis (possibly truncated)", IssueSeverity.WARNING),
    (re.compile(r"--\s*your\s*code\s*here", re.I), "Contains placeholder comment", IssueSeverity.CRITICAL),
    (re.compile(r"--\s*add\s*code\s*here", re.I), "Contains placeholder comment", IssueSeverity.CRITICAL),
    (re.compile(r"INSERT\s*\w*\s*HERE", re.I), "Contains INSERT HERE placeholder", IssueSeverity.CRITICAL),
    (re.compile(r"REPLACE\s*THIS", re.I), "Contains REPLACE THIS placeholder", IssueSeverity.CRITICAL),
)

_CONTENT_FIELDS = ("source", "new_source", "content", "replace_content")
_SCRIPT_TOOLS = frozenset({"create_script", "edit_script", "patch_script"})
_CREATE_TOOLS = frozenset({"create_instance", "create_script"})

PathResolver = Callable[[str], bool]
"""Returns whether a path currently exists in the environment."""

PathLister = Callable[[], Iterable[str]]


@dataclass(slots=True)
class ToolCallValidator:
    """Structural and semantic checks on a tool call.

    Attributes:
        path_exists: Optional resolver; enables hallucinated-path checks
        list_paths: Optional lister; enables "did you mean" suggestions
        max_suggestions: Similar paths suggested for a missing one
    """

    path_exists: PathResolver | None = None
    list_paths: PathLister | None = None
    max_suggestions: int = 3
    enabled: bool = field(default=True)

    def validate(
        self, name: str, args: Mapping[str, Any], spec: ToolSpec | None = None
    ) -> ValidationResult:
        if not self.enabled:
            return ValidationResult()

        issues: list[ValidationIssue] = []
        suggestions: list[str] = []

        if spec is not None:
            self._check_required(spec.required, args, issues)
        self._check_paths(name, args, issues, suggestions)
        self._check_content(args, issues)
        if name in _SCRIPT_TOOLS:
            self._check_syntax(args, issues)
        self._check_tool_specific(name, args, issues)

        result = ValidationResult(tuple(issues), tuple(suggestions))
        if issues:
            logger.debug(
                "%s: %d validation issues (%s)",
                name, len(issues), "invalid" if not result.valid else "warnings only",
            )
        return result

    def _check_required(
        self, required: tuple[str, ...], args: Mapping[str, Any], issues: list[ValidationIssue]
    ) -> None:
        for key in required:
            value = args.get(key)
            if value is None:
                issues.append(ValidationIssue(
                    IssueSeverity.CRITICAL, key, f"Required field '{key}' is missing"
                ))
            elif isinstance(value, str) and not value.strip():
                issues.append(ValidationIssue(
                    IssueSeverity.CRITICAL, key, f"Required field '{key}' is empty or whitespace"
                ))

    def _check_paths(
        self,
        name: str,
        args: Mapping[str, Any],
        issues: list[ValidationIssue],
        suggestions: list[str],
    ) -> None:
        if self.path_exists is None:
            return
        # Create tools are checked by their own handlers, which also see
        # parents queued earlier in the same batch
        if name in _CREATE_TOOLS:
            return
        path = args.get("path")
        if not isinstance(path, str) or not path:
            return
        if self.path_exists(path):
            return

        issues.append(ValidationIssue(IssueSeverity.CRITICAL, "path", f"Path doesn't exist: {path}"))
        suggestions.extend(f"Did you mean: {p}" for p in self.similar_paths(path))

    def _check_content(self, args: Mapping[str, Any], issues: list[ValidationIssue]) -> None:
        for key in _CONTENT_FIELDS:
            content = args.get(key)
            if not isinstance(content, str):
                continue
            for pattern, message, severity in _PLACEHOLDERS:
                if pattern.search(content):
                    issues.append(
                        ValidationIssue(severity, key, f"{message} - code may be incomplete")
                    )
            if key == "source" and len(content) < 10:
                issues.append(ValidationIssue(
                    IssueSeverity.WARNING, key,
                    f"Script source is suspiciously short ({len(content)} chars)",
                ))

    def _check_syntax(self, args: Mapping[str, Any], issues: list[ValidationIssue]) -> None:
        content = args.get("source") or args.get("new_source") or args.get("replace_content")
        if not isinstance(content, str):
            return

        for open_, close, label in (("(", ")", "parentheses"), ("{", "}", "braces")):
            opened, closed = content.count(open_), content.count(close)
            if opened != closed:
                issues.append(ValidationIssue(
                    IssueSeverity.CRITICAL, "content",
                    f"Unbalanced {label}: {opened} open, {closed} close",
                ))

        opened, closed = content.count("["), content.count("]")
        # Bracket classes in string patterns make small mismatches legitimate
        if abs(opened - closed) > 2:
            issues.append(ValidationIssue(
                IssueSeverity.WARNING, "content",
                f"Possibly unbalanced brackets: {opened} open, {closed} close",
            ))

    def _check_tool_specific(
        self, name: str, args: Mapping[str, Any], issues: list[ValidationIssue]
    ) -> None:
        if name == "patch_script":
            search, replace = args.get("search_content"), args.get("replace_content")
            if search is not None and search == replace:
                issues.append(ValidationIssue(
                    IssueSeverity.WARNING, "replace_content",
                    "search_content and replace_content are identical - no change will occur",
                ))
        elif name == "create_instance":
            class_name = args.get("class_name")
            if isinstance(class_name, str) and class_name and not class_name[0].isupper():
                issues.append(ValidationIssue(
                    IssueSeverity.WARNING, "class_name",
                    f"Class name should start with a capital letter: {class_name}",
                ))
        elif name == "set_instance_properties":
            properties = args.get("properties")
            if properties is not None and not isinstance(properties, Mapping):
                issues.append(ValidationIssue(
                    IssueSeverity.CRITICAL, "properties",
                    f"properties must be a mapping, got {type(properties).__name__}",
                ))

    def similar_paths(self, target: str) -> list[str]:
        """Existing paths that look like a missing one, best first."""
        if self.list_paths is None:
            return []
        parts = [p.lower() for p in target.split(".") if p]
        if not parts:
            return []
        last = parts[-1]

        scored: list[tuple[int, str]] = []
        for path in self.list_paths():
            lower = path.lower()
            score = 0
            if last in lower:
                score += 50
            if last in lower.rsplit(".", 1)[-1]:
                score += 30
            score += sum(10 for part in parts if part in lower)
            if score:
                scored.append((score, path))

        scored.sort(key=lambda item: -item[0])
        return [path for _, path in scored[: self.max_suggestions]]
