"""Failure classification for agent iteration output.

Turns a process exit code and the raw text an agent iteration produced into
at most one typed Failure:
- timeout: timeout wording outside of test-runner output
- typecheck_failure: compiler / type checker / missing module errors
- test_failure: explicit test failure markers, or ambiguous failure tokens
  that appear inside test-runner output
- agent_error: non-zero exit with nothing more specific in the output

Rules are evaluated in a fixed order and the first match wins. The order
matters: compiler errors must win over generic failure tokens, and timeout
wording inside test output is only trusted once nothing else matched.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from .models import Failure, FailureType

logger = logging.getLogger(__name__)

TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "deadline exceeded",
    "context deadline",
)

# Presence of any of these marks the output as coming from a test run
TEST_CONTEXT_INDICATORS: tuple[str, ...] = (
    "test",
    "spec",
    "assert",
    "expect",
    "should",
    "describe",
    "it(",
    "--- fail",
    "--- pass",
    "=== run",
    "pytest",
    "jest",
    "mocha",
    "junit",
    "testng",
)

TYPECHECK_PATTERNS: tuple[str, ...] = (
    "cannot find module",
    "cannot find package",
    "cannot find",
    "undefined:",
    "type error",
    "syntax error",
    "compilation failed",
    "build failed",
    "could not compile",
    "cannot compile",
    "does not exist",
    "no such file",
    "undeclared name",
    "not declared",
    "import cycle",
)

TEST_FAILURE_PATTERNS: tuple[str, ...] = (
    "test failed",
    "tests failed",
    "assertion failed",
    "--- fail:",
    "=== fail",
)

# Cheap pre-check used by the loop before routing zero-exit output
FAILURE_INDICATORS: tuple[str, ...] = (
    "fail",
    "error:",
    "panic:",
    "cannot compile",
    "build failed",
    "test failed",
    "assertion failed",
)

# "FAIL example.com/pkg" style lines printed by package-oriented test runners
MODULE_FAIL_RE = re.compile(
    r"FAIL\s+(github\.com|gitlab\.com|bitbucket\.org|[a-z]+/[a-z]+)", re.IGNORECASE
)
BARE_FAIL_RE = re.compile(r"\bFAIL\b", re.IGNORECASE)

# Keywords used to pick the one-line message for each failure type
MESSAGE_KEYWORDS: dict[FailureType, tuple[str, ...]] = {
    FailureType.TEST: ("fail", "error", "panic"),
    FailureType.TYPECHECK: ("error", "cannot", "undefined"),
    FailureType.TIMEOUT: ("timeout", "deadline"),
    FailureType.AGENT_ERROR: ("error", "failed"),
}

DEFAULT_MESSAGES: dict[FailureType, str] = {
    FailureType.TEST: "Test execution failed",
    FailureType.TYPECHECK: "Type check/compilation failed",
    FailureType.TIMEOUT: "Operation timed out",
    FailureType.AGENT_ERROR: "Agent execution error",
}


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    return any(pattern in text for pattern in patterns)


def is_test_output(output: str) -> bool:
    """Check whether output looks like it came from a test run."""
    return _contains_any(output.lower(), TEST_CONTEXT_INDICATORS)


# Each rule receives (lowercased output, raw output, in_test_context)
Predicate = Callable[[str, str, bool], bool]

CLASSIFICATION_RULES: list[tuple[str, Predicate, FailureType]] = [
    (
        "timeout outside test output",
        lambda lower, raw, in_test: not in_test and _contains_any(lower, TIMEOUT_PATTERNS),
        FailureType.TIMEOUT,
    ),
    (
        "compilation or type error",
        lambda lower, raw, in_test: _contains_any(lower, TYPECHECK_PATTERNS),
        FailureType.TYPECHECK,
    ),
    (
        "explicit test failure marker",
        lambda lower, raw, in_test: _contains_any(lower, TEST_FAILURE_PATTERNS),
        FailureType.TEST,
    ),
    (
        "runner FAIL line for a module path",
        lambda lower, raw, in_test: MODULE_FAIL_RE.search(raw) is not None,
        FailureType.TEST,
    ),
    (
        "bare FAIL token in test output",
        lambda lower, raw, in_test: in_test and BARE_FAIL_RE.search(raw) is not None,
        FailureType.TEST,
    ),
    (
        "panic in test output",
        lambda lower, raw, in_test: in_test and "panic:" in lower,
        FailureType.TEST,
    ),
    (
        "generic error in test output",
        lambda lower, raw, in_test: in_test and ("error:" in lower or "failed" in lower),
        FailureType.TEST,
    ),
    (
        "timeout",
        lambda lower, raw, in_test: _contains_any(lower, TIMEOUT_PATTERNS),
        FailureType.TIMEOUT,
    ),
]


def detect_failure_type(output: str) -> FailureType:
    """Classify raw output into a FailureType.

    Args:
        output: Combined agent/tool output.

    Returns:
        The type of the first matching rule, or FailureType.NONE.
    """
    lower = output.lower()
    in_test = _contains_any(lower, TEST_CONTEXT_INDICATORS)

    for rule_name, predicate, failure_type in CLASSIFICATION_RULES:
        if predicate(lower, output, in_test):
            logger.debug("Output matched rule '%s' -> %s", rule_name, failure_type.value)
            return failure_type

    return FailureType.NONE


def extract_failure_message(failure_type: FailureType, output: str) -> str:
    """Pick a one-line message for a failure.

    Returns the first line containing one of the type's keywords, or the
    fixed default message for the type.
    """
    keywords = MESSAGE_KEYWORDS.get(failure_type, ())
    for line in output.splitlines():
        line_lower = line.lower()
        if any(keyword in line_lower for keyword in keywords):
            return line.strip()

    return DEFAULT_MESSAGES.get(failure_type, "Unknown failure")


def classify_failure(
    output: str,
    exit_code: int,
    unit_id: int = 0,
    iteration: int = 0,
) -> Failure | None:
    """Detect a failure from an iteration's exit code and output.

    A non-zero exit code is always a failure: ``agent_error`` unless the
    output refines it to a more specific type. With a zero exit code the
    output alone decides, since some tools do not propagate exit codes.

    Args:
        output: Combined stdout/stderr of the iteration.
        exit_code: Process exit code.
        unit_id: Plan unit the iteration worked on.
        iteration: Iteration number within the run.

    Returns:
        A Failure, or None when the iteration is treated as a success.
    """
    specific = detect_failure_type(output)

    if exit_code != 0:
        if specific != FailureType.NONE:
            failure_type = specific
            message = extract_failure_message(specific, output)
        else:
            failure_type = FailureType.AGENT_ERROR
            message = f"Command exited with code {exit_code}"
    elif specific != FailureType.NONE:
        failure_type = specific
        message = extract_failure_message(specific, output)
    else:
        return None

    return Failure(
        type=failure_type,
        message=message,
        output=output,
        unit_id=unit_id,
        iteration=iteration,
    )


def contains_failure_indicators(output: str) -> bool:
    """Quick check for failure wording in output that exited cleanly."""
    return _contains_any(output.lower(), FAILURE_INDICATORS)
