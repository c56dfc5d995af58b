"""Data models shared by the recovery subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class FailureType(str, Enum):
    """Closed taxonomy of iteration failures."""

    NONE = "none"
    TEST = "test_failure"
    TYPECHECK = "typecheck_failure"
    AGENT_ERROR = "agent_error"
    TIMEOUT = "timeout"


class StrategyType(str, Enum):
    """Recovery strategies selectable from configuration."""

    RETRY = "retry"  # Retry the unit with failure-specific guidance
    SKIP = "skip"  # Mark the unit blocked and move on
    ROLLBACK = "rollback"  # Discard tracked changes, then retry


def parse_recovery_strategy(name: str) -> StrategyType:
    """Parse a strategy name (case-insensitive).

    Raises:
        ValueError: If the name is not one of retry, skip, rollback.
    """
    try:
        return StrategyType(name.strip().lower())
    except ValueError:
        raise ValueError(
            f"unknown recovery strategy: {name} (valid: retry, skip, rollback)"
        ) from None


@dataclass(frozen=True)
class Failure:
    """A detected failure for one unit of work.

    Created by the classifier with ``retry_count=0``; the tracker returns a
    stamped copy when the failure is recorded.
    """

    type: FailureType
    message: str
    output: str
    unit_id: int
    iteration: int
    timestamp: datetime = field(default_factory=datetime.now)
    retry_count: int = 0

    def __str__(self) -> str:
        return (
            f"[{self.type.value}] {self.message} "
            f"(unit #{self.unit_id}, iteration {self.iteration}, retries: {self.retry_count})"
        )


@dataclass
class RecoveryResult:
    """Outcome of applying a recovery strategy."""

    success: bool
    message: str
    should_retry: bool = False
    should_skip: bool = False
    modified_prompt: str = ""  # Guidance injected into the next agent invocation
