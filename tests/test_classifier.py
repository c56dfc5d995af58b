"""Tests for failure classification of agent output."""

from __future__ import annotations

import pytest

from buildloop.recovery.classifier import (
    classify_failure,
    contains_failure_indicators,
    detect_failure_type,
    extract_failure_message,
    is_test_output,
)
from buildloop.recovery.models import Failure, FailureType


# =============================================================================
# detect_failure_type
# =============================================================================


class TestDetectFailureType:
    """Tests for rule ordering in detect_failure_type."""

    def test_clean_output_is_none(self) -> None:
        """Output with no failure wording is not a failure."""
        assert detect_failure_type("All done, 3 files written") == FailureType.NONE

    def test_empty_output_is_none(self) -> None:
        """Empty output is not a failure."""
        assert detect_failure_type("") == FailureType.NONE

    @pytest.mark.parametrize(
        "output",
        [
            "main.go:3:2: undefined: fooBar",
            "src/app.ts(4,1): Type error: number is not assignable",
            "Error: Cannot find module 'lodash'",
            "SyntaxError: syntax error near line 10",
            "build failed with 2 errors",
            "import cycle not allowed",
        ],
    )
    def test_typecheck_patterns(self, output: str) -> None:
        """Compiler and type checker errors are typecheck failures."""
        assert detect_failure_type(output) == FailureType.TYPECHECK

    @pytest.mark.parametrize(
        "output",
        [
            "3 tests failed",
            "assertion failed: expected 1, got 2",
            "--- FAIL: TestParse (0.00s)",
            "=== FAIL suite",
        ],
    )
    def test_explicit_test_markers(self, output: str) -> None:
        """Explicit test failure markers are test failures."""
        assert detect_failure_type(output) == FailureType.TEST

    def test_typecheck_wins_over_test_failure(self) -> None:
        """A compile error in test output is still a typecheck failure."""
        output = "Running tests...\nTests failed: Cannot find module './parser'"
        assert detect_failure_type(output) == FailureType.TYPECHECK

    def test_module_fail_line(self) -> None:
        """A runner FAIL line naming a module path is a test failure."""
        assert detect_failure_type("FAIL\tgithub.com/acme/widget\t0.21s") == FailureType.TEST

    def test_bare_fail_needs_test_context(self) -> None:
        """A bare FAIL token only counts inside test output."""
        assert detect_failure_type("FAIL") == FailureType.NONE
        assert detect_failure_type("running pytest\nFAIL") == FailureType.TEST

    def test_panic_in_test_output(self) -> None:
        """A panic during a test run is a test failure."""
        output = "=== RUN TestServe\npanic: runtime error: index out of range"
        assert detect_failure_type(output) == FailureType.TEST

    def test_generic_error_in_test_output(self) -> None:
        """Generic error wording inside test output is a test failure."""
        output = "jest run\nerror: expected value to be truthy"
        assert detect_failure_type(output) == FailureType.TEST

    def test_timeout_outside_test_output(self) -> None:
        """Timeout wording outside test output is a timeout."""
        assert detect_failure_type("request timeout after 30s") == FailureType.TIMEOUT
        assert detect_failure_type("context deadline exceeded") == FailureType.TIMEOUT

    def test_timeout_inside_test_output_yields_to_test_markers(self) -> None:
        """A test that failed with a timeout is a test failure."""
        output = "--- FAIL: TestSlow (timeout after 10s)"
        assert detect_failure_type(output) == FailureType.TEST

    def test_timeout_inside_test_output_without_markers(self) -> None:
        """Timeout wording in test output still wins once nothing else matches."""
        output = "test harness: timeout waiting for server"
        assert detect_failure_type(output) == FailureType.TIMEOUT


# =============================================================================
# extract_failure_message
# =============================================================================


class TestExtractFailureMessage:
    """Tests for picking the one-line failure message."""

    def test_first_matching_line(self) -> None:
        """The first line with a type keyword is returned, stripped."""
        output = "running\n  --- FAIL: TestA\n  --- FAIL: TestB"
        assert extract_failure_message(FailureType.TEST, output) == "--- FAIL: TestA"

    def test_typecheck_keywords(self) -> None:
        """Typecheck messages look for error/cannot/undefined."""
        output = "compiling\nmain.go:3: undefined: x\n"
        assert extract_failure_message(FailureType.TYPECHECK, output) == "main.go:3: undefined: x"

    @pytest.mark.parametrize(
        ("failure_type", "expected"),
        [
            (FailureType.TEST, "Test execution failed"),
            (FailureType.TYPECHECK, "Type check/compilation failed"),
            (FailureType.TIMEOUT, "Operation timed out"),
            (FailureType.AGENT_ERROR, "Agent execution error"),
        ],
    )
    def test_default_messages(self, failure_type: FailureType, expected: str) -> None:
        """A fixed message is used when no line matches."""
        assert extract_failure_message(failure_type, "nothing useful here") == expected


# =============================================================================
# classify_failure
# =============================================================================


class TestClassifyFailure:
    """Tests for classify_failure."""

    def test_success_returns_none(self) -> None:
        """Zero exit with clean output is a success."""
        assert classify_failure("implemented unit 3", 0) is None

    def test_zero_exit_with_failure_output(self) -> None:
        """Output alone decides when the exit code is zero."""
        failure = classify_failure("2 tests failed", 0, unit_id=4, iteration=7)
        assert failure is not None
        assert failure.type == FailureType.TEST
        assert failure.unit_id == 4
        assert failure.iteration == 7

    def test_nonzero_exit_is_always_a_failure(self) -> None:
        """A non-zero exit with unremarkable output is an agent error."""
        failure = classify_failure("something happened", 2)
        assert failure is not None
        assert failure.type == FailureType.AGENT_ERROR
        assert failure.message == "Command exited with code 2"

    def test_nonzero_exit_agent_error_message_is_exit_code(self) -> None:
        """Unrefined agent errors report the exit code, not an output line."""
        failure = classify_failure("starting\nfatal: Error reading config\n", 1)
        assert failure is not None
        assert failure.type == FailureType.AGENT_ERROR
        assert failure.message == "Command exited with code 1"

    def test_nonzero_exit_refined_by_output(self) -> None:
        """A non-zero exit takes the more specific type from the output."""
        failure = classify_failure("assertion failed: want 3", 1)
        assert failure is not None
        assert failure.type == FailureType.TEST
        assert failure.message == "assertion failed: want 3"

    def test_new_failure_has_zero_retry_count(self) -> None:
        """Freshly classified failures have not been recorded yet."""
        failure = classify_failure("undefined: x", 1)
        assert failure is not None
        assert failure.retry_count == 0
        assert "undefined: x" in failure.output

    def test_failure_str(self) -> None:
        """Failures render type, message, unit, iteration and retries."""
        failure = Failure(
            type=FailureType.TIMEOUT,
            message="took too long",
            output="",
            unit_id=5,
            iteration=2,
            retry_count=1,
        )
        assert str(failure) == "[timeout] took too long (unit #5, iteration 2, retries: 1)"


class TestIndicators:
    """Tests for the cheap pre-checks."""

    @pytest.mark.parametrize(
        "output",
        ["Build FAILED", "error: no such file", "panic: nil map", "assertion failed"],
    )
    def test_failure_indicators(self, output: str) -> None:
        """Failure wording is detected case-insensitively."""
        assert contains_failure_indicators(output) is True

    def test_no_failure_indicators(self) -> None:
        """Clean output has no indicators."""
        assert contains_failure_indicators("wrote 3 files") is False

    def test_is_test_output(self) -> None:
        """Test-runner wording marks test output."""
        assert is_test_output("collected 12 items (pytest)") is True
        assert is_test_output("compiling crate") is False
