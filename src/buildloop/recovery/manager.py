"""Recovery manager: classify, record, select a strategy, apply it."""

from __future__ import annotations

import logging
from pathlib import Path

from .classifier import classify_failure
from .models import Failure, FailureType, RecoveryResult, StrategyType
from .strategies import (
    RecoveryStrategy,
    RetryRecoveryStrategy,
    RollbackRecoveryStrategy,
    SkipRecoveryStrategy,
)
from .tracker import FailureTracker

logger = logging.getLogger(__name__)

# Failure types where reverting the working tree can help
ROLLBACK_ELIGIBLE: frozenset[FailureType] = frozenset({FailureType.TEST, FailureType.TYPECHECK})


def select_strategy_type(
    failure: Failure,
    default: StrategyType,
    can_retry: bool,
) -> StrategyType:
    """Decide which strategy handles a recorded failure.

    Strategy selection logic:
    - Retries exhausted → skip, whatever the default
    - Default rollback → rollback for test/typecheck failures, retry otherwise
    - Anything else → the configured default
    """
    if not can_retry:
        return StrategyType.SKIP

    if default == StrategyType.ROLLBACK:
        if failure.type in ROLLBACK_ELIGIBLE:
            return StrategyType.ROLLBACK
        return StrategyType.RETRY

    return default


class RecoveryManager:
    """Owns the failure tracker and applies recovery strategies.

    Only the failing unit's tracker entry is touched by any call.
    """

    def __init__(
        self,
        max_retries: int = 3,
        default_strategy: StrategyType = StrategyType.RETRY,
        work_dir: Path | None = None,
    ):
        self.default_strategy = default_strategy
        self._tracker = FailureTracker(max_retries)
        self._strategies: dict[StrategyType, RecoveryStrategy] = {
            StrategyType.RETRY: RetryRecoveryStrategy(self._tracker),
            StrategyType.SKIP: SkipRecoveryStrategy(self._tracker),
            StrategyType.ROLLBACK: RollbackRecoveryStrategy(self._tracker, work_dir),
        }

    @property
    def tracker(self) -> FailureTracker:
        return self._tracker

    @property
    def max_retries(self) -> int:
        return self._tracker.max_retries

    def get_strategy(self, strategy_type: StrategyType) -> RecoveryStrategy:
        return self._strategies[strategy_type]

    def select_strategy(self, failure: Failure) -> RecoveryStrategy:
        """Pick the strategy for a failure already recorded in the tracker."""
        strategy_type = select_strategy_type(
            failure,
            self.default_strategy,
            self._tracker.can_retry(failure.unit_id),
        )
        return self._strategies[strategy_type]

    def handle_failure(
        self,
        output: str,
        exit_code: int,
        unit_id: int,
        iteration: int,
    ) -> tuple[Failure | None, RecoveryResult]:
        """Classify an iteration's outcome and apply the selected strategy.

        Args:
            output: Combined agent output for the iteration.
            exit_code: Agent process exit code.
            unit_id: Plan unit being worked on.
            iteration: Iteration number within the run.

        Returns:
            Tuple of (recorded failure or None, recovery result).
        """
        failure = classify_failure(output, exit_code, unit_id=unit_id, iteration=iteration)
        if failure is None:
            return None, RecoveryResult(success=True, message="No failure detected")

        failure = self._tracker.record_failure(failure)
        strategy = self.select_strategy(failure)
        logger.info(
            "Unit #%d failed (%s, retry %d/%d); applying %s strategy",
            unit_id,
            failure.type.value,
            failure.retry_count,
            self.max_retries,
            strategy.name,
        )

        result = strategy.apply(failure)
        logger.debug("Recovery result for unit #%d: %s", unit_id, result.message)
        return failure, result

    def record_success(self, unit_id: int) -> None:
        """Clear the unit's retry state after a successful iteration."""
        self._tracker.reset_feature(unit_id)

    def should_escalate(self, unit_id: int) -> bool:
        """True once the unit has used up its retries."""
        return not self._tracker.can_retry(unit_id)

    def failure_summary(self) -> str:
        return self._tracker.summary()

    @property
    def recovered_count(self) -> int:
        return self._tracker.recovered_count
