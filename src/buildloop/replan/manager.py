"""Replan manager: trigger evaluation, backups and plan rewrites."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from ..plan import PlanFileError, PlanItem, read_plan, write_plan
from .strategies import (
    AgentReplanStrategy,
    IncrementalReplanStrategy,
    NoReplanStrategy,
    ReplanResult,
    ReplanStrategy,
    ReplanStrategyType,
)
from .triggers import (
    DEFAULT_FAILURE_THRESHOLD,
    ReplanState,
    ReplanTrigger,
    TriggerType,
    check_triggers,
    default_triggers,
)
from .versioning import PlanVersion, PlanVersioner, fingerprint_file

logger = logging.getLogger(__name__)


class ReplanManager:
    """Decides when to restructure the plan and performs the rewrite.

    The plan file fingerprint is seeded at construction and refreshed after
    every write this manager makes, so only edits made by someone else are
    reported as requirement changes.
    """

    def __init__(
        self,
        plan_path: Path,
        agent_cmd: str,
        auto_replan: bool = False,
        threshold: int = DEFAULT_FAILURE_THRESHOLD,
        agent_timeout: int | None = None,
    ):
        self.plan_path = Path(plan_path)
        self.auto_replan = auto_replan
        self.triggers: list[ReplanTrigger] = default_triggers(threshold)
        self.versioner = PlanVersioner(self.plan_path)
        self._strategies: dict[ReplanStrategyType, ReplanStrategy] = {
            ReplanStrategyType.INCREMENTAL: IncrementalReplanStrategy(),
            ReplanStrategyType.AGENT: AgentReplanStrategy(agent_cmd, timeout=agent_timeout),
            ReplanStrategyType.NONE: NoReplanStrategy(),
        }
        self._state = ReplanState(plan_hash=fingerprint_file(self.plan_path))
        self.versioner.discover_backups()

    @property
    def state(self) -> ReplanState:
        return self._state

    def get_strategy(self, strategy_type: ReplanStrategyType) -> ReplanStrategy:
        return self._strategies[strategy_type]

    def update_state(
        self,
        unit_id: int,
        consecutive_failures: int,
        failure_types: list[str],
        plans: list[PlanItem],
    ) -> None:
        """Refresh the state from the loop and re-fingerprint the plan file."""
        state = self._state
        state.unit_id = unit_id
        state.consecutive_failures = consecutive_failures
        state.failure_types = list(failure_types)
        state.plans = list(plans)

        current = fingerprint_file(self.plan_path)
        state.last_plan_hash = state.plan_hash
        state.plan_hash = current
        if state.plan_changed:
            logger.info("Plan file %s changed since last check", self.plan_path)

    def note_own_write(self) -> None:
        """Accept the plan file's current content as written by this program."""
        current = fingerprint_file(self.plan_path)
        self._state.plan_hash = current
        self._state.last_plan_hash = current

    def add_blocked_feature(self, unit_id: int) -> None:
        if unit_id not in self._state.blocked_features:
            self._state.blocked_features.append(unit_id)

    def clear_blocked_features(self) -> None:
        self._state.blocked_features = []
        self._state.blocked_at_last_replan = 0

    def increment_iterations(self) -> None:
        self._state.total_iterations += 1

    def reset_state(self) -> None:
        """Called after a successful iteration. Blocked units are kept."""
        self._state.consecutive_failures = 0
        self._state.failure_types = []

    def check_triggers(self) -> TriggerType:
        return check_triggers(self.triggers, self._state)

    def should_replan(self) -> tuple[bool, TriggerType]:
        """Evaluate triggers in order; only fires when auto-replan is on."""
        trigger = self.check_triggers()
        if trigger == TriggerType.NONE:
            return False, TriggerType.NONE
        return self.auto_replan, trigger

    def trigger_descriptions(self) -> list[str]:
        return [f"{t.name}: {t.description}" for t in self.triggers]

    def execute_replan(
        self,
        strategy_type: ReplanStrategyType,
        trigger: TriggerType,
    ) -> ReplanResult:
        """Back up the plan, run a strategy and persist its result.

        The strategy works from the content just backed up, not from the
        plans last passed to ``update_state``, so edits made to the file
        since then survive the rewrite.

        Raises:
            OSError: If the backup cannot be written. The live plan file is
                untouched in that case.
        """
        backup_path = self.versioner.create_backup(trigger.value)
        state = self._state
        state.last_trigger_time = datetime.now()

        strategy = self._strategies[strategy_type]
        logger.info("Replanning (trigger: %s, strategy: %s)", trigger.value, strategy.name)

        if strategy_type != ReplanStrategyType.NONE:
            try:
                state.plans = read_plan(self.plan_path)
            except PlanFileError as e:
                return ReplanResult(
                    success=False,
                    message=str(e),
                    trigger=trigger,
                    strategy=strategy_type,
                    backup_path=str(backup_path),
                )

        result = strategy.execute(state, trigger)
        result.backup_path = str(backup_path)

        if result.success and result.new_plans:
            try:
                write_plan(self.plan_path, result.new_plans)
            except PlanFileError as e:
                logger.error("Failed to write replanned plan: %s", e)
                result.success = False
                result.message = f"failed to write updated plan: {e}"
            else:
                state.plans = list(result.new_plans)

        self.note_own_write()
        state.blocked_at_last_replan = len(state.blocked_features)
        return result

    def manual_replan(self, strategy_type: ReplanStrategyType) -> ReplanResult:
        """Replan now, bypassing trigger evaluation."""
        return self.execute_replan(strategy_type, TriggerType.MANUAL)

    def get_versions(self) -> list[PlanVersion]:
        return self.versioner.versions

    def restore_version(self, version: int) -> Path | None:
        """Restore a backup over the live plan, backing up the live file first.

        Returns:
            Path of the backup holding the content that was replaced, or
            None when there was no live plan file to back up.

        Raises:
            ValueError: If no such version exists.
            OSError: If a file cannot be read or written.
        """
        if self.versioner.get_version(version) is None:
            raise ValueError(f"invalid version number: {version}")

        safety_backup = None
        if self.plan_path.exists():
            safety_backup = self.versioner.create_backup(TriggerType.MANUAL.value)
        else:
            logger.info("No live plan at %s; restoring without a safety backup", self.plan_path)
        self.versioner.restore_version(version)
        self._state.plans = []
        self.note_own_write()
        return safety_backup
