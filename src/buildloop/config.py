"""Configuration for buildloop.

Configuration loading priority:
1. Command-line flags (highest, applied by the CLI)
2. Environment variables (BUILDLOOP_*)
3. Config file ($BUILDLOOP_CONFIG, ./buildloop.toml, ~/.buildloop/config.toml)
4. Defaults (lowest)

Sections:
    [run]       - Plan/progress files, iteration count, agent command
    [recovery]  - Retry budget and recovery strategy
    [scope]     - Per-unit iteration limit and run deadline
    [replan]    - Automatic replanning
    [ui]        - Logging and console output

Example:
    from buildloop.config import load_config

    config = load_config()
    print(config.recovery.max_retries)
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import tomli_w

from .recovery.models import parse_recovery_strategy
from .replan.strategies import parse_replan_strategy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".buildloop"
DEFAULT_CONFIG_FILE = "config.toml"
LOCAL_CONFIG_FILE = "buildloop.toml"
ENV_PREFIX = "BUILDLOOP_"

LOG_LEVELS = ("debug", "info", "warning", "error")
CONFIG_SECTIONS = ("run", "recovery", "scope", "replan", "ui")


class ConfigError(ValueError):
    """Configuration could not be loaded or is invalid."""


# =============================================================================
# Durations
# =============================================================================

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "ms": timedelta(milliseconds=1),
}


def parse_duration(text: str) -> timedelta:
    """Parse a compound duration such as ``1h30m`` or ``45s``.

    Raises:
        ConfigError: If the text is not a valid duration.
    """
    value = text.strip()
    if not value:
        raise ConfigError("empty duration")

    pos = 0
    total = timedelta(0)
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(value) or pos == 0:
        raise ConfigError(f"invalid duration: {text!r} (examples: 30m, 1h, 2h30m)")
    return total


def parse_deadline(text: str) -> datetime | None:
    """Turn a duration string into an absolute deadline from now."""
    if not text.strip():
        return None
    return datetime.now() + parse_duration(text)


# =============================================================================
# Configuration Sections
# =============================================================================


@dataclass
class RunConfig:
    """Loop settings.

    Attributes:
        plan_file: Path to the plan JSON file.
        progress_file: Path to the append-only progress log.
        iterations: Maximum iterations per run.
        agent_cmd: AI agent executable.
        typecheck_cmd: Type-check command mentioned in the prompt.
        test_cmd: Test command mentioned in the prompt.
        agent_timeout: Seconds before an agent call is killed (0 = none).
    """

    plan_file: str = "plan.json"
    progress_file: str = "progress.txt"
    iterations: int = 10
    agent_cmd: str = "cursor-agent"
    typecheck_cmd: str = ""
    test_cmd: str = ""
    agent_timeout: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunConfig:
        """Create from dictionary."""
        return cls(
            plan_file=data.get("plan_file", "plan.json"),
            progress_file=data.get("progress_file", "progress.txt"),
            iterations=int(data.get("iterations", 10)),
            agent_cmd=data.get("agent_cmd", "cursor-agent"),
            typecheck_cmd=data.get("typecheck_cmd", ""),
            test_cmd=data.get("test_cmd", ""),
            agent_timeout=int(data.get("agent_timeout", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_file": self.plan_file,
            "progress_file": self.progress_file,
            "iterations": self.iterations,
            "agent_cmd": self.agent_cmd,
            "typecheck_cmd": self.typecheck_cmd,
            "test_cmd": self.test_cmd,
            "agent_timeout": self.agent_timeout,
        }


@dataclass
class RecoveryConfig:
    """Failure recovery settings.

    Attributes:
        max_retries: Failures allowed per unit before it is skipped.
        strategy: Default recovery strategy (retry, skip, rollback).
    """

    max_retries: int = 3
    strategy: str = "retry"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecoveryConfig:
        return cls(
            max_retries=int(data.get("max_retries", 3)),
            strategy=data.get("strategy", "retry"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"max_retries": self.max_retries, "strategy": self.strategy}


@dataclass
class ScopeConfig:
    """Scope control settings.

    Attributes:
        limit: Max iterations per unit (0 = unlimited).
        deadline: Run time budget as a duration string (empty = none).
    """

    limit: int = 0
    deadline: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScopeConfig:
        return cls(limit=int(data.get("limit", 0)), deadline=data.get("deadline", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"limit": self.limit, "deadline": self.deadline}


@dataclass
class ReplanConfig:
    """Replanning settings.

    Attributes:
        auto: Replan automatically when a trigger fires.
        strategy: incremental, agent or none.
        threshold: Consecutive failures that trigger a replan.
    """

    auto: bool = False
    strategy: str = "incremental"
    threshold: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplanConfig:
        return cls(
            auto=bool(data.get("auto", False)),
            strategy=data.get("strategy", "incremental"),
            threshold=int(data.get("threshold", 3)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"auto": self.auto, "strategy": self.strategy, "threshold": self.threshold}


@dataclass
class UIConfig:
    """Console settings."""

    log_level: str = "info"
    no_color: bool = False
    quiet: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UIConfig:
        return cls(
            log_level=data.get("log_level", "info"),
            no_color=bool(data.get("no_color", False)),
            quiet=bool(data.get("quiet", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"log_level": self.log_level, "no_color": self.no_color, "quiet": self.quiet}


# =============================================================================
# Main Configuration
# =============================================================================


_TRUE_VALUES = ("1", "true", "yes", "on")

# Environment variable -> (section, field, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "PLAN_FILE": ("run", "plan_file", str),
    "PROGRESS_FILE": ("run", "progress_file", str),
    "ITERATIONS": ("run", "iterations", int),
    "AGENT_CMD": ("run", "agent_cmd", str),
    "TYPECHECK_CMD": ("run", "typecheck_cmd", str),
    "TEST_CMD": ("run", "test_cmd", str),
    "AGENT_TIMEOUT": ("run", "agent_timeout", int),
    "MAX_RETRIES": ("recovery", "max_retries", int),
    "RECOVERY_STRATEGY": ("recovery", "strategy", str),
    "SCOPE_LIMIT": ("scope", "limit", int),
    "DEADLINE": ("scope", "deadline", str),
    "AUTO_REPLAN": ("replan", "auto", lambda v: v.strip().lower() in _TRUE_VALUES),
    "REPLAN_STRATEGY": ("replan", "strategy", str),
    "REPLAN_THRESHOLD": ("replan", "threshold", int),
    "LOG_LEVEL": ("ui", "log_level", str),
}


@dataclass
class BuildloopConfig:
    """Complete buildloop configuration."""

    run: RunConfig = field(default_factory=RunConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    scope: ScopeConfig = field(default_factory=ScopeConfig)
    replan: ReplanConfig = field(default_factory=ReplanConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    # Metadata
    config_path: Path | None = None
    last_modified: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildloopConfig:
        """Create from dictionary (e.g., parsed TOML).

        Raises:
            ConfigError: If a value has the wrong type.
        """
        try:
            return cls(
                run=RunConfig.from_dict(data.get("run", {})),
                recovery=RecoveryConfig.from_dict(data.get("recovery", {})),
                scope=ScopeConfig.from_dict(data.get("scope", {})),
                replan=ReplanConfig.from_dict(data.get("replan", {})),
                ui=UIConfig.from_dict(data.get("ui", {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid configuration value: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "run": self.run.to_dict(),
            "recovery": self.recovery.to_dict(),
            "scope": self.scope.to_dict(),
            "replan": self.replan.to_dict(),
            "ui": self.ui.to_dict(),
        }

    def apply_env_overrides(self, environ: dict[str, str] | None = None) -> None:
        """Apply BUILDLOOP_* environment variable overrides.

        Raises:
            ConfigError: If a variable cannot be converted.
        """
        env = os.environ if environ is None else environ
        for suffix, (section_name, field_name, convert) in ENV_OVERRIDES.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is None or raw == "":
                continue
            try:
                value = convert(raw)
            except ValueError as e:
                raise ConfigError(f"{ENV_PREFIX}{suffix}: {e}") from e
            setattr(getattr(self, section_name), field_name, value)

    def validate(self) -> None:
        """Check value ranges and names.

        Raises:
            ConfigError: On the first invalid value.
        """
        if self.run.iterations <= 0:
            raise ConfigError(f"run.iterations must be positive, got {self.run.iterations}")
        if self.run.agent_timeout < 0:
            raise ConfigError("run.agent_timeout must be >= 0")
        if self.recovery.max_retries < 0:
            raise ConfigError(f"recovery.max_retries must be >= 0, got {self.recovery.max_retries}")
        if self.scope.limit < 0:
            raise ConfigError(f"scope.limit must be >= 0, got {self.scope.limit}")
        if self.replan.threshold <= 0:
            raise ConfigError(f"replan.threshold must be positive, got {self.replan.threshold}")
        if self.ui.log_level.lower() not in LOG_LEVELS:
            raise ConfigError(
                f"ui.log_level must be one of {', '.join(LOG_LEVELS)}, got {self.ui.log_level}"
            )

        try:
            parse_recovery_strategy(self.recovery.strategy)
            parse_replan_strategy(self.replan.strategy)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        if self.scope.deadline:
            parse_duration(self.scope.deadline)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by dotted key path (e.g., 'recovery.max_retries')."""
        obj: Any = self
        for part in key.split("."):
            if not hasattr(obj, part):
                return default
            obj = getattr(obj, part)
        return obj

    def set(self, key: str, value: Any) -> bool:
        """Set a value by dotted key path. Returns False for unknown keys."""
        parts = key.split(".")
        if len(parts) != 2 or not hasattr(self, parts[0]):
            return False
        section = getattr(self, parts[0])
        if not hasattr(section, parts[1]):
            return False
        setattr(section, parts[1], value)
        return True


# =============================================================================
# Configuration Loading/Saving
# =============================================================================


def get_config_path() -> Path:
    """Locate the configuration file (which may not exist yet)."""
    if custom_path := os.environ.get(f"{ENV_PREFIX}CONFIG"):
        return Path(custom_path)

    local = Path.cwd() / LOCAL_CONFIG_FILE
    if local.exists():
        return local

    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None, apply_env: bool = True) -> BuildloopConfig:
    """Load configuration from TOML and the environment.

    Args:
        config_path: Path to config file. Uses get_config_path() if not given.
        apply_env: Apply BUILDLOOP_* overrides. Off when the result is
            written back to the file.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    path = config_path or get_config_path()

    config = BuildloopConfig()
    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"failed to load config from {path}: {e}") from e

        config = BuildloopConfig.from_dict(data)
        config.last_modified = datetime.fromtimestamp(path.stat().st_mtime)
        logger.debug("Loaded config from %s", path)

    config.config_path = path
    if apply_env:
        config.apply_env_overrides()
    return config


def save_config(config: BuildloopConfig, config_path: Path | None = None) -> Path:
    """Save configuration to TOML.

    Raises:
        OSError: If the file cannot be written.
    """
    path = config_path or config.config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "wb") as f:
        tomli_w.dump(config.to_dict(), f)

    config.config_path = path
    config.last_modified = datetime.now()
    logger.info("Saved config to %s", path)
    return path


# =============================================================================
# CLI Helpers
# =============================================================================


def is_config_key(config: BuildloopConfig, key: str) -> bool:
    """True for a dotted ``section.field`` key that exists."""
    parts = key.split(".")
    return (
        len(parts) == 2
        and parts[0] in CONFIG_SECTIONS
        and hasattr(getattr(config, parts[0]), parts[1])
    )


def parse_config_value(config: BuildloopConfig, key: str, raw: str) -> Any:
    """Convert a command-line string to the type of the value at ``key``.

    Raises:
        ConfigError: If the key is unknown or the value does not convert.
    """
    if not is_config_key(config, key):
        raise ConfigError(f"unknown configuration key: {key}")

    current = config.get(key)
    if isinstance(current, bool):
        if raw.lower() in ("true", "yes", "1", "on"):
            return True
        if raw.lower() in ("false", "no", "0", "off"):
            return False
        raise ConfigError(f"{key}: expected true or false, got {raw!r}")
    if isinstance(current, int):
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{key}: expected an integer, got {raw!r}") from e
    return raw


def format_config_for_display(config: BuildloopConfig) -> str:
    """Format configuration for CLI display."""
    lines = ["buildloop Configuration", "=" * 50, ""]

    if config.config_path:
        exists = "" if config.config_path.exists() else " (not found, using defaults)"
        lines.append(f"Config file: {config.config_path}{exists}")
        if config.last_modified:
            lines.append(f"Last modified: {config.last_modified.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append("")

    for section, values in config.to_dict().items():
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"  {key} = {value!r}" if isinstance(value, str) else f"  {key} = {value}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
