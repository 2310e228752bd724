"""Luxloop configuration management.

Loads configuration from .luxloop/config.yaml with sensible defaults.
All settings can be overridden via environment variables (LUXLOOP_*).

Config locations (in priority order):
1. Explicit path passed to load_config()
2. .luxloop/config.yaml (project-local)
3. ~/.luxloop/config.yaml (user-global)
4. Built-in defaults

Thread Safety:
    Uses threading.Lock for thread-safe lazy initialization.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class LoopConfig:
    """Agentic loop limits and pause rules."""

    max_iterations: int = 50
    """Model calls allowed per turn before the turn fails."""

    dangerous_operations: list[str] = field(default_factory=lambda: [
        "create_script",
        "edit_script",
        "patch_script",
        "create_instance",
        "set_instance_properties",
        "delete_instance",
    ])
    """Tools whose pending result pauses the loop for approval."""

    feedback_operations: list[str] = field(default_factory=lambda: ["request_user_feedback"])
    """Tools whose result pauses the loop for free-form feedback."""


@dataclass
class ResilienceConfig:
    """Retry, sanitization and health settings for tool calls."""

    max_retries: int = 2
    retry_backoff_ms: list[int] = field(default_factory=lambda: [100, 500, 1000])
    health_window: int = 20
    error_rate_threshold: float = 0.3
    tool_failure_rate_threshold: float = 0.5
    tool_min_samples: int = 5
    max_output_chars: int = 50_000
    max_field_chars: int = 10_000
    stale_path_seconds: float = 300.0
    script_freshness_seconds: float = 120.0


@dataclass
class CircuitConfig:
    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    warning_threshold: int = 3
    reset_on_success: bool = True


@dataclass
class ApprovalConfig:
    ttl_seconds: float = 600.0
    """Pending operations older than this expire."""

    max_operations: int = 50
    resolved_retention_seconds: float = 60.0


@dataclass
class HistoryConfig:
    compression_token_threshold: int = 50_000
    messages_to_preserve: int = 10
    min_summary_chars: int = 50


@dataclass
class ExecutorConfig:
    """Repeated-failure breaker for identical tool calls."""

    repeat_failure_limit: int = 3
    repeat_failure_window_seconds: float = 30.0
    identity_max_chars: int = 50


@dataclass
class ErrorConfig:
    max_history: int = 50
    loop_window: int = 5
    loop_threshold: int = 3
    max_error_age_seconds: float = 120.0
    strategy_attempt_limit: int = 2


@dataclass
class LuxloopConfig:
    """Root configuration."""

    loop: LoopConfig = field(default_factory=LoopConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    circuit: CircuitConfig = field(default_factory=CircuitConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    errors: ErrorConfig = field(default_factory=ErrorConfig)

    store_path: str = ".luxloop/sessions"
    """Directory of saved session snapshots."""

    verbose: bool = False

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


# Section name -> dataclass
_SECTIONS: dict[str, type] = {
    "loop": LoopConfig,
    "resilience": ResilienceConfig,
    "circuit": CircuitConfig,
    "approval": ApprovalConfig,
    "history": HistoryConfig,
    "executor": ExecutorConfig,
    "errors": ErrorConfig,
}

_config: LuxloopConfig | None = None
_config_lock = threading.Lock()


def _defaults() -> dict[str, Any]:
    return LuxloopConfig().to_dict()


def _deep_update(base: dict, updates: dict) -> dict:
    """Recursively update a dict with another dict."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _coerce(value: str, default: Any) -> Any:
    """Convert an environment string to the type of the default value."""
    if isinstance(default, list):
        items = [item.strip() for item in value.split(",") if item.strip()]
        if default and all(isinstance(d, int) for d in default):
            return [int(item) for item in items]
        return items
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def _apply_env_overrides(config_dict: dict, environ: dict[str, str] | None = None) -> dict:
    """Apply environment variable overrides.

    Environment variables follow pattern: LUXLOOP_SECTION_KEY

    Examples:
        LUXLOOP_LOOP_MAX_ITERATIONS=80
        LUXLOOP_CIRCUIT_COOLDOWN_SECONDS=10
        LUXLOOP_LOOP_DANGEROUS_OPERATIONS=delete_instance,edit_script
        LUXLOOP_VERBOSE=true
    """
    prefix = "LUXLOOP_"
    environ = os.environ if environ is None else environ

    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        path_str = key[len(prefix):].lower()

        if path_str in ("verbose", "store_path"):
            config_dict[path_str] = _coerce(value, config_dict.get(path_str))
            continue

        for section in _SECTIONS:
            if path_str.startswith(section + "_"):
                name = path_str[len(section) + 1:]
                target = config_dict.setdefault(section, {})
                if name in target:
                    target[name] = _coerce(value, target[name])
                else:
                    logger.warning("Ignoring unknown config override %s", key)
                break

    return config_dict


def _build_section(cls: type, data: Any, section: str) -> Any:
    if not isinstance(data, dict):
        logger.warning("Config section '%s' must be a mapping, using defaults", section)
        return cls()
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning("Unknown keys in config section '%s': %s", section, sorted(unknown))
    return cls(**{k: v for k, v in data.items() if k in known})


def _dict_to_config(data: dict) -> LuxloopConfig:
    """Convert a dict to LuxloopConfig."""
    sections = {
        name: _build_section(cls, data.get(name, {}), name) for name, cls in _SECTIONS.items()
    }
    return LuxloopConfig(
        **sections,
        store_path=str(data.get("store_path", ".luxloop/sessions")),
        verbose=bool(data.get("verbose", False)),
    )


def load_config(path: str | Path | None = None) -> LuxloopConfig:
    """Load configuration from file with defaults and env overrides.

    Priority (highest to lowest):
    1. Environment variables (LUXLOOP_*)
    2. Explicit path if provided
    3. .luxloop/config.yaml (project-local)
    4. ~/.luxloop/config.yaml (user-global)
    5. Built-in defaults

    Args:
        path: Optional explicit config file path.

    Returns:
        Merged LuxloopConfig instance.
    """
    global _config

    config_dict = _defaults()

    config_paths = []
    if path:
        config_paths.append(Path(path))
    config_paths.extend([
        Path(".luxloop/config.yaml"),
        Path.home() / ".luxloop" / "config.yaml",
    ])

    for config_path in config_paths:
        if config_path.exists():
            try:
                with open(config_path) as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Skipping invalid config file %s: %s", config_path, e)
                continue
            if not isinstance(file_config, dict):
                logger.warning("Skipping config file %s: top level must be a mapping", config_path)
                continue
            _deep_update(config_dict, copy.deepcopy(file_config))
            break  # Use first found config

    config_dict = _apply_env_overrides(config_dict)

    _config = _dict_to_config(config_dict)
    return _config


def get_config() -> LuxloopConfig:
    """Get the current configuration, loading if needed.

    Thread-safe with double-check locking.
    """
    global _config

    if _config is not None:
        return _config

    with _config_lock:
        if _config is None:
            _config = load_config()
        return _config


def reset_config() -> None:
    """Reset the global config (useful for testing)."""
    global _config
    with _config_lock:
        _config = None


def save_default_config(path: str | Path = ".luxloop/config.yaml") -> Path:
    """Save the default configuration to a file.

    Args:
        path: Where to save the config.

    Returns:
        Path to the saved config file.
    """
    config_content = '''# Luxloop Configuration

# Agentic loop
loop:
  # Model calls per turn before the turn fails
  max_iterations: 50

  # Tools that pause for human approval when they queue an operation
  dangerous_operations:
    - create_script
    - edit_script
    - patch_script
    - create_instance
    - set_instance_properties
    - delete_instance

  # Tools that pause for free-form user verification
  feedback_operations:
    - request_user_feedback

# Tool call retries, output limits and health tracking
resilience:
  max_retries: 2
  # Delay before retry N (milliseconds); the last step repeats
  retry_backoff_ms: [100, 500, 1000]
  health_window: 20
  # Global error rate that adds a health warning to failures
  error_rate_threshold: 0.3
  tool_failure_rate_threshold: 0.5
  tool_min_samples: 5
  max_output_chars: 50000
  max_field_chars: 10000
  stale_path_seconds: 300
  # Script reads older than this get a warning before patch/edit
  script_freshness_seconds: 120

# Circuit breaker
circuit:
  # Consecutive failures that block all tool calls
  failure_threshold: 5
  cooldown_seconds: 30
  warning_threshold: 3
  reset_on_success: true

# Approval queue
approval:
  # Pending operations older than this expire
  ttl_seconds: 600
  max_operations: 50
  resolved_retention_seconds: 60

# Conversation history
history:
  compression_token_threshold: 50000
  messages_to_preserve: 10
  min_summary_chars: 50

# Repeated identical failing calls
executor:
  repeat_failure_limit: 3
  repeat_failure_window_seconds: 30
  identity_max_chars: 50

# Error classification and loop detection
errors:
  max_history: 50
  loop_window: 5
  loop_threshold: 3
  max_error_age_seconds: 120
  strategy_attempt_limit: 2

# Saved sessions
store_path: ".luxloop/sessions"

# Global settings
verbose: false
'''

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config_content)
    return path
