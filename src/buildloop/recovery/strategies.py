"""Recovery strategies for failed iterations.

Provides one strategy per configurable recovery mode:
- RetryRecoveryStrategy: Retry the unit with failure-specific guidance
- SkipRecoveryStrategy: Mark the unit blocked and move to the next one
- RollbackRecoveryStrategy: Discard tracked changes via git, then retry
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from . import git
from .models import Failure, FailureType, RecoveryResult, StrategyType
from .tracker import FailureTracker

logger = logging.getLogger(__name__)

# Guidance injected into the next prompt, keyed by failure type
RETRY_GUIDANCE: dict[FailureType, str] = {
    FailureType.TEST: (
        "IMPORTANT: The previous attempt failed due to test failures.\n"
        "Error: {message}\n\n"
        "Please focus on:\n"
        "1. Fix the failing tests before making other changes\n"
        "2. Ensure all test assertions pass\n"
        "3. Run tests locally before completing"
    ),
    FailureType.TYPECHECK: (
        "IMPORTANT: The previous attempt failed due to type/compilation errors.\n"
        "Error: {message}\n\n"
        "Please focus on:\n"
        "1. Fix all type errors and compilation issues first\n"
        "2. Ensure the code compiles cleanly\n"
        "3. Check imports and dependencies"
    ),
    FailureType.TIMEOUT: (
        "IMPORTANT: The previous attempt timed out.\n"
        "Error: {message}\n\n"
        "Please focus on:\n"
        "1. Simplify the implementation if possible\n"
        "2. Break down into smaller steps\n"
        "3. Avoid long-running operations"
    ),
    FailureType.AGENT_ERROR: (
        "IMPORTANT: The previous attempt encountered an error.\n"
        "Error: {message}\n\n"
        "Please focus on:\n"
        "1. Review the error message carefully\n"
        "2. Address the root cause\n"
        "3. Verify the approach is correct"
    ),
}

GENERIC_GUIDANCE = (
    "IMPORTANT: The previous attempt failed.\n"
    "Error: {message}\n\n"
    "Please review the error and try a different approach."
)


def build_retry_guidance(failure: Failure) -> str:
    """Format the guidance block for a failure."""
    template = RETRY_GUIDANCE.get(failure.type, GENERIC_GUIDANCE)
    return template.format(message=failure.message)


class RecoveryStrategy(ABC):
    """Base class for recovery strategies."""

    def __init__(self, tracker: FailureTracker):
        self.tracker = tracker

    @property
    @abstractmethod
    def strategy_type(self) -> StrategyType:
        """Return the strategy type."""
        ...

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of the strategy."""
        ...

    @abstractmethod
    def apply(self, failure: Failure) -> RecoveryResult:
        """Apply the strategy to a recorded failure.

        Args:
            failure: The failure, already recorded in the tracker.

        Returns:
            RecoveryResult telling the caller whether to retry or skip.
        """
        ...


class RetryRecoveryStrategy(RecoveryStrategy):
    """Retry the same unit with guidance tailored to the failure type."""

    @property
    def strategy_type(self) -> StrategyType:
        return StrategyType.RETRY

    @property
    def description(self) -> str:
        return "Retry the feature with enhanced prompt guidance based on the failure type"

    def apply(self, failure: Failure) -> RecoveryResult:
        unit_id = failure.unit_id
        max_retries = self.tracker.max_retries

        if not self.tracker.can_retry(unit_id):
            return RecoveryResult(
                success=False,
                message=f"Max retries ({max_retries}) exceeded for unit #{unit_id}",
                should_skip=True,
            )

        retry_count = self.tracker.get_retry_count(unit_id)
        return RecoveryResult(
            success=True,
            message=f"Retrying unit #{unit_id} (attempt {retry_count + 1}/{max_retries})",
            should_retry=True,
            modified_prompt=build_retry_guidance(failure),
        )


class SkipRecoveryStrategy(RecoveryStrategy):
    """Mark the unit as blocked and proceed to the next one."""

    @property
    def strategy_type(self) -> StrategyType:
        return StrategyType.SKIP

    @property
    def description(self) -> str:
        return "Mark the feature as blocked and proceed to the next feature"

    def apply(self, failure: Failure) -> RecoveryResult:
        count = len(self.tracker.get_failures(failure.unit_id))
        return RecoveryResult(
            success=True,
            message=(
                f"Skipping unit #{failure.unit_id} after {count} failure(s). "
                "Moving to next unit."
            ),
            should_skip=True,
        )


class RollbackRecoveryStrategy(RecoveryStrategy):
    """Revert tracked changes to the last commit, then retry.

    Best for: test and type-check failures where starting from a clean
    tree helps.
    """

    def __init__(self, tracker: FailureTracker, work_dir: Path | None = None):
        super().__init__(tracker)
        self.work_dir = work_dir

    @property
    def strategy_type(self) -> StrategyType:
        return StrategyType.ROLLBACK

    @property
    def description(self) -> str:
        return "Revert to the last known good state using git, then retry"

    def apply(self, failure: Failure) -> RecoveryResult:
        if not git.is_work_tree(self.work_dir):
            return RecoveryResult(
                success=False,
                message="Cannot rollback: not in a git repository",
                should_skip=True,
            )

        if not git.has_uncommitted_changes(self.work_dir):
            return RecoveryResult(
                success=False,
                message="Cannot rollback: no uncommitted changes to revert",
                should_retry=True,
                modified_prompt=build_retry_guidance(failure),
            )

        try:
            git.discard_tracked_changes(self.work_dir)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            logger.error("Rollback for unit #%d failed: %s", failure.unit_id, stderr or e)
            return RecoveryResult(
                success=False,
                message=f"Rollback failed: {stderr or e}",
                should_skip=True,
            )

        logger.info("Rolled back tracked changes for unit #%d", failure.unit_id)
        return RecoveryResult(
            success=True,
            message=f"Rolled back changes for unit #{failure.unit_id}. Clean state restored.",
            should_retry=True,
            modified_prompt=build_retry_guidance(failure),
        )
