"""Tests for the progress log and iteration prompt."""

from __future__ import annotations

import re
from pathlib import Path

from buildloop.progress import (
    append_progress,
    format_deferral_line,
    format_failure_line,
    format_replan_line,
)
from buildloop.prompt import COMPLETE_SIGNAL, build_iteration_prompt, with_guidance
from buildloop.recovery.models import Failure, FailureType


class TestAppendProgress:
    """Tests for append_progress."""

    def test_appends_timestamped_entries(self, tmp_path: Path) -> None:
        """Entries are appended, never overwritten."""
        path = tmp_path / "progress.txt"
        path.write_text("existing notes\n")
        assert append_progress(path, "first") is True
        assert append_progress(path, "second") is True

        text = path.read_text()
        assert text.startswith("existing notes\n")
        entries = re.findall(r"^\[(.+?)\] (\w+)$", text, re.MULTILINE)
        assert [msg for _, msg in entries] == ["first", "second"]

    def test_write_error_is_not_raised(self, tmp_path: Path) -> None:
        """Unwritable paths are reported through the return value."""
        assert append_progress(tmp_path / "missing" / "progress.txt", "x") is False


class TestProgressLines:
    """Tests for the progress line formats."""

    def test_failure_line(self) -> None:
        """Failure lines carry type, message, unit and retry count."""
        failure = Failure(
            type=FailureType.TEST,
            message="2 tests failed",
            output="",
            unit_id=5,
            iteration=3,
            retry_count=2,
        )
        assert format_failure_line(failure) == (
            "FAILURE [test_failure]: 2 tests failed (unit #5, retry 2)"
        )

    def test_deferral_line(self) -> None:
        """Deferral lines carry the reason and iterations used."""
        assert format_deferral_line(4, "exceeded iteration limit", 3) == (
            "DEFERRED: Feature #4 - exceeded iteration limit (iterations used: 3)"
        )

    def test_replan_line(self) -> None:
        """Replan lines carry trigger and strategy."""
        assert format_replan_line("test_failure", "incremental") == (
            "REPLAN: test_failure triggered, strategy: incremental"
        )


class TestIterationPrompt:
    """Tests for the iteration prompt."""

    def test_prompt_references_files_and_commands(self, tmp_path: Path) -> None:
        """The prompt names both files, both commands and the signal."""
        prompt = build_iteration_prompt(
            tmp_path / "plan.json", tmp_path / "progress.txt", "mypy .", "pytest"
        )
        assert f"@{(tmp_path / 'plan.json').resolve()}" in prompt
        assert f"@{(tmp_path / 'progress.txt').resolve()}" in prompt
        assert "via mypy ." in prompt
        assert "via pytest" in prompt
        assert COMPLETE_SIGNAL in prompt
        assert "\n" not in prompt

    def test_with_guidance(self) -> None:
        """Guidance is prepended; empty guidance changes nothing."""
        assert with_guidance("prompt", "") == "prompt"
        assert with_guidance("prompt", "fix tests") == "fix tests\n\nprompt"
