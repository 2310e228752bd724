"""Tool output sanitization.

Every tool result passes through here before it reaches the model.
Oversized text fields are truncated and null bytes are stripped. A
successful read must also carry content.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... [truncated]"

# Fields that may hold large text payloads
_LARGE_FIELDS: tuple[str, ...] = ("source", "content")

# Read tools whose success requires a payload field
_REQUIRED_PAYLOAD: dict[str, tuple[str, str]] = {
    "get_script": ("source", "Script source is empty or missing"),
    "get_instance": ("properties", "Instance properties missing"),
}


@dataclass(frozen=True, slots=True)
class SanitizedOutput:
    """Sanitized tool output plus what was changed."""

    data: dict[str, Any]
    issues: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.issues


@dataclass(frozen=True, slots=True)
class OutputSanitizer:
    """Cleans tool output for the model.

    Attributes:
        max_output_chars: Serialized size above which large fields are truncated
        max_field_chars: Ceiling for each large text field
    """

    max_output_chars: int = 50_000
    max_field_chars: int = 10_000
    large_fields: tuple[str, ...] = field(default=_LARGE_FIELDS)

    def sanitize(
        self, tool_name: str, output: Mapping[str, Any] | None, *, succeeded: bool = True
    ) -> SanitizedOutput:
        """Clean `output`. A succeeded read without its payload becomes an error."""
        if output is None:
            return SanitizedOutput(
                data={"error": "Tool returned no output"},
                issues=("Output is None",),
            )

        issues: list[str] = []
        data = _strip(dict(output))

        size = len(json.dumps(data, default=str))
        if size > self.max_output_chars:
            issues.append(
                f"Output too large ({size} chars), truncating to {self.max_output_chars}"
            )
            for key in self.large_fields:
                value = data.get(key)
                if isinstance(value, str) and len(value) > self.max_field_chars:
                    data[key] = value[: self.max_field_chars] + TRUNCATION_MARKER
                    data["truncated"] = True

        required = _REQUIRED_PAYLOAD.get(tool_name)
        if required and succeeded and data.get("success", True) and not data.get(required[0]):
            issues.append(f"{tool_name} succeeded but returned no {required[0]}")
            data["error"] = required[1]
            if "success" in data:
                data["success"] = False

        if issues:
            logger.debug("Output sanitized", extra={"tool": tool_name, "issues": issues})
        return SanitizedOutput(data=data, issues=tuple(issues))


def _strip(value: Any) -> Any:
    """Drop None values and null bytes, recursively."""
    if isinstance(value, str):
        return value.replace("\0", "")
    if isinstance(value, dict):
        return {k: _strip(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_strip(v) for v in value if v is not None]
    return value
