"""Tests for the configuration system."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from buildloop.config import (
    BuildloopConfig,
    ConfigError,
    RecoveryConfig,
    ReplanConfig,
    RunConfig,
    format_config_for_display,
    get_config_path,
    is_config_key,
    load_config,
    parse_config_value,
    parse_deadline,
    parse_duration,
    save_config,
)


# =============================================================================
# Durations
# =============================================================================


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("30m", timedelta(minutes=30)),
            ("2h", timedelta(hours=2)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("45s", timedelta(seconds=45)),
            ("1.5h", timedelta(minutes=90)),
            ("500ms", timedelta(milliseconds=500)),
            (" 10m ", timedelta(minutes=10)),
        ],
    )
    def test_valid(self, text: str, expected: timedelta) -> None:
        """Simple and compound durations are accepted."""
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "90", "5x", "h1", "1h 30m", "tomorrow"])
    def test_invalid(self, text: str) -> None:
        """Anything else raises ConfigError."""
        with pytest.raises(ConfigError):
            parse_duration(text)

    def test_parse_deadline(self) -> None:
        """Deadlines are relative to now; empty means none."""
        assert parse_deadline("") is None
        deadline = parse_deadline("1h")
        assert deadline is not None
        assert deadline > datetime.now() + timedelta(minutes=59)


# =============================================================================
# Sections
# =============================================================================


class TestSections:
    """Tests for section defaults and from_dict."""

    def test_defaults(self) -> None:
        """Default values."""
        config = BuildloopConfig()
        assert config.run.plan_file == "plan.json"
        assert config.run.progress_file == "progress.txt"
        assert config.run.iterations == 10
        assert config.run.agent_cmd == "cursor-agent"
        assert config.recovery.max_retries == 3
        assert config.recovery.strategy == "retry"
        assert config.scope.limit == 0
        assert config.scope.deadline == ""
        assert config.replan.auto is False
        assert config.replan.strategy == "incremental"
        assert config.replan.threshold == 3

    def test_section_from_dict(self) -> None:
        """Sections read their own keys and default the rest."""
        run = RunConfig.from_dict({"iterations": "5", "agent_cmd": "claude"})
        assert run.iterations == 5
        assert run.agent_cmd == "claude"
        assert run.plan_file == "plan.json"
        assert RecoveryConfig.from_dict({"strategy": "skip"}).max_retries == 3
        assert ReplanConfig.from_dict({"auto": True}).auto is True

    def test_bad_value_type(self) -> None:
        """Unconvertible values raise ConfigError."""
        with pytest.raises(ConfigError, match="invalid configuration value"):
            BuildloopConfig.from_dict({"run": {"iterations": "many"}})

    def test_get_and_set(self) -> None:
        """Dotted keys read and write section fields."""
        config = BuildloopConfig()
        assert config.set("recovery.max_retries", 5) is True
        assert config.get("recovery.max_retries") == 5
        assert config.set("recovery.nope", 1) is False
        assert config.set("toplevel", 1) is False
        assert config.get("missing.key", "x") == "x"


class TestValidate:
    """Tests for BuildloopConfig.validate."""

    def test_defaults_are_valid(self) -> None:
        """The default configuration validates."""
        BuildloopConfig().validate()

    @pytest.mark.parametrize(
        ("key", "value", "message"),
        [
            ("run.iterations", 0, "run.iterations"),
            ("run.agent_timeout", -1, "agent_timeout"),
            ("recovery.max_retries", -1, "max_retries"),
            ("scope.limit", -2, "scope.limit"),
            ("replan.threshold", 0, "threshold"),
            ("ui.log_level", "loud", "log_level"),
            ("recovery.strategy", "escalate", "unknown recovery strategy"),
            ("replan.strategy", "magic", "unknown replan strategy"),
            ("scope.deadline", "soon", "invalid duration"),
        ],
    )
    def test_invalid_values(self, key: str, value: object, message: str) -> None:
        """Each out-of-range value is reported."""
        config = BuildloopConfig()
        config.set(key, value)
        with pytest.raises(ConfigError, match=message):
            config.validate()


# =============================================================================
# Loading and environment
# =============================================================================


class TestLoadConfig:
    """Tests for loading from TOML and the environment."""

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        """A missing file is not an error."""
        path = tmp_path / "none.toml"
        config = load_config(path)
        assert config.run.iterations == 10
        assert config.config_path == path

    def test_load_toml(self, tmp_path: Path) -> None:
        """Values are read from each section."""
        path = tmp_path / "buildloop.toml"
        path.write_text(
            '[run]\niterations = 20\nagent_cmd = "claude"\n\n'
            '[recovery]\nstrategy = "rollback"\n\n'
            '[replan]\nauto = true\nthreshold = 2\n'
        )
        config = load_config(path)
        assert config.run.iterations == 20
        assert config.run.agent_cmd == "claude"
        assert config.recovery.strategy == "rollback"
        assert config.replan.auto is True
        assert config.replan.threshold == 2
        assert config.last_modified is not None

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Malformed TOML raises ConfigError."""
        path = tmp_path / "buildloop.toml"
        path.write_text("[run\niterations = ")
        with pytest.raises(ConfigError, match="failed to load config"):
            load_config(path)

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables override file values."""
        path = tmp_path / "buildloop.toml"
        path.write_text("[run]\niterations = 20\n")
        monkeypatch.setenv("BUILDLOOP_ITERATIONS", "7")
        monkeypatch.setenv("BUILDLOOP_AUTO_REPLAN", "yes")
        monkeypatch.setenv("BUILDLOOP_DEADLINE", "2h")
        config = load_config(path)
        assert config.run.iterations == 7
        assert config.replan.auto is True
        assert config.scope.deadline == "2h"

    def test_env_not_applied_on_request(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """File values are kept as written when overrides are turned off."""
        path = tmp_path / "buildloop.toml"
        path.write_text("[run]\niterations = 20\n")
        monkeypatch.setenv("BUILDLOOP_ITERATIONS", "7")
        config = load_config(path, apply_env=False)
        assert config.run.iterations == 20

    def test_env_bad_int(self) -> None:
        """Unconvertible environment values raise ConfigError."""
        config = BuildloopConfig()
        with pytest.raises(ConfigError, match="BUILDLOOP_MAX_RETRIES"):
            config.apply_env_overrides({"BUILDLOOP_MAX_RETRIES": "lots"})

    def test_empty_env_ignored(self) -> None:
        """Empty variables leave values alone."""
        config = BuildloopConfig()
        config.apply_env_overrides({"BUILDLOOP_AGENT_CMD": ""})
        assert config.run.agent_cmd == "cursor-agent"

    def test_config_path_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """BUILDLOOP_CONFIG selects the file."""
        custom = tmp_path / "custom.toml"
        monkeypatch.setenv("BUILDLOOP_CONFIG", str(custom))
        assert get_config_path() == custom

    def test_local_config_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A buildloop.toml in the working directory is used."""
        (tmp_path / "buildloop.toml").write_text("")
        monkeypatch.chdir(tmp_path)
        assert get_config_path() == tmp_path / "buildloop.toml"


class TestSaveConfig:
    """Tests for saving configuration."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        """Saved configuration loads back with the same values."""
        config = BuildloopConfig()
        config.recovery.strategy = "skip"
        config.scope.deadline = "1h"
        path = save_config(config, tmp_path / "sub" / "config.toml")
        assert path.exists()

        loaded = load_config(path)
        assert loaded.to_dict() == config.to_dict()

    def test_format_for_display(self, tmp_path: Path) -> None:
        """Display lists sections and notes a missing file."""
        config = load_config(tmp_path / "none.toml")
        text = format_config_for_display(config)
        assert "(not found, using defaults)" in text
        assert "[recovery]" in text
        assert "  strategy = 'retry'" in text
        assert "  max_retries = 3" in text


# =============================================================================
# Command-line values
# =============================================================================


class TestConfigValues:
    """Tests for converting command-line strings to config values."""

    @pytest.mark.parametrize(
        "key,raw,expected",
        [
            ("recovery.max_retries", "5", 5),
            ("scope.limit", "0", 0),
            ("replan.auto", "true", True),
            ("replan.auto", "off", False),
            ("scope.deadline", "2h", "2h"),
            ("run.agent_cmd", "claude", "claude"),
        ],
    )
    def test_converted_to_field_type(self, key: str, raw: str, expected: object) -> None:
        """Strings take the type of the current value."""
        value = parse_config_value(BuildloopConfig(), key, raw)
        assert value == expected
        assert type(value) is type(expected)

    @pytest.mark.parametrize("key", ["recovery", "recovery.nope", "config_path.name", "a.b.c"])
    def test_unknown_key(self, key: str) -> None:
        """Only section.field keys are accepted."""
        assert is_config_key(BuildloopConfig(), key) is False
        with pytest.raises(ConfigError, match="unknown configuration key"):
            parse_config_value(BuildloopConfig(), key, "1")

    def test_bad_integer(self) -> None:
        """Non-numeric values for integer fields are rejected."""
        with pytest.raises(ConfigError, match="expected an integer"):
            parse_config_value(BuildloopConfig(), "scope.limit", "many")

    def test_bad_boolean(self) -> None:
        """Unrecognized boolean words are rejected."""
        with pytest.raises(ConfigError, match="expected true or false"):
            parse_config_value(BuildloopConfig(), "replan.auto", "maybe")
