"""Replan triggers and the state they are evaluated against."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..plan import PlanItem

DEFAULT_FAILURE_THRESHOLD = 3


class TriggerType(str, Enum):
    """Conditions that cause replanning to be considered."""

    NONE = "none"
    TEST_FAILURE = "test_failure"
    REQUIREMENT_CHANGE = "requirement_change"
    BLOCKED_FEATURE = "blocked_feature"
    MANUAL = "manual"


@dataclass
class ReplanState:
    """Signals accumulated by the loop between replans."""

    unit_id: int = 0
    consecutive_failures: int = 0
    failure_types: list[str] = field(default_factory=list)
    blocked_features: list[int] = field(default_factory=list)
    total_iterations: int = 0
    plans: list[PlanItem] = field(default_factory=list)
    plan_hash: str = ""  # Fingerprint of the plan file at the latest update
    last_plan_hash: str = ""  # Fingerprint observed before that
    blocked_at_last_replan: int = 0
    last_trigger_time: datetime | None = None

    @property
    def plan_changed(self) -> bool:
        return bool(self.plan_hash and self.last_plan_hash and self.plan_hash != self.last_plan_hash)


class ReplanTrigger(ABC):
    """A named condition checked against the replan state."""

    @property
    @abstractmethod
    def trigger_type(self) -> TriggerType: ...

    @property
    def name(self) -> str:
        return self.trigger_type.value

    @property
    @abstractmethod
    def description(self) -> str: ...

    @abstractmethod
    def check(self, state: ReplanState) -> bool: ...


class TestFailureTrigger(ReplanTrigger):
    """Fires once consecutive failures reach the threshold."""

    __test__ = False  # not a pytest class

    def __init__(self, threshold: int = DEFAULT_FAILURE_THRESHOLD):
        self.threshold = threshold if threshold > 0 else DEFAULT_FAILURE_THRESHOLD

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.TEST_FAILURE

    @property
    def description(self) -> str:
        return f"Trigger replanning after {self.threshold} consecutive test failures"

    def check(self, state: ReplanState) -> bool:
        return state.consecutive_failures >= self.threshold


class RequirementChangeTrigger(ReplanTrigger):
    """Fires when the plan file changed outside this program's own writes."""

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.REQUIREMENT_CHANGE

    @property
    def description(self) -> str:
        return "Trigger replanning when the plan file is externally modified"

    def check(self, state: ReplanState) -> bool:
        return state.plan_changed


class BlockedFeatureTrigger(ReplanTrigger):
    """Fires when enough units are blocked and the set grew since the last replan."""

    def __init__(self, min_blocked: int = 1):
        self.min_blocked = min_blocked if min_blocked > 0 else 1

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.BLOCKED_FEATURE

    @property
    def description(self) -> str:
        return f"Trigger replanning when {self.min_blocked} or more features are blocked"

    def check(self, state: ReplanState) -> bool:
        blocked = len(state.blocked_features)
        return blocked >= self.min_blocked and blocked > state.blocked_at_last_replan


def default_triggers(threshold: int = DEFAULT_FAILURE_THRESHOLD) -> list[ReplanTrigger]:
    """Triggers in evaluation order."""
    return [
        TestFailureTrigger(threshold),
        RequirementChangeTrigger(),
        BlockedFeatureTrigger(1),
    ]


def check_triggers(triggers: list[ReplanTrigger], state: ReplanState) -> TriggerType:
    """Return the first trigger that fires, or TriggerType.NONE."""
    for trigger in triggers:
        if trigger.check(state):
            return trigger.trigger_type
    return TriggerType.NONE
