"""Replanning strategies.

- IncrementalReplanStrategy: adjust the plan locally without the agent
- AgentReplanStrategy: ask the agent for a rewritten plan
- NoReplanStrategy: do nothing
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..agent import run_agent
from ..plan import PlanFileError, PlanItem, extract_plan_from_output
from .diff import PlanDiff, compute_diff
from .triggers import ReplanState, TriggerType

logger = logging.getLogger(__name__)

REVIEW_MARKER = "[REQUIRES REVIEW"
REVIEW_NOTE = " [REQUIRES REVIEW: Multiple test failures]"
BLOCKED_DEFER_REASON = "blocked_during_execution"
LARGE_UNIT_STEPS = 5


class ReplanStrategyType(str, Enum):
    INCREMENTAL = "incremental"
    AGENT = "agent"
    NONE = "none"


_STRATEGY_ALIASES = {
    "incremental": ReplanStrategyType.INCREMENTAL,
    "inc": ReplanStrategyType.INCREMENTAL,
    "agent": ReplanStrategyType.AGENT,
    "ai": ReplanStrategyType.AGENT,
    "none": ReplanStrategyType.NONE,
    "off": ReplanStrategyType.NONE,
    "": ReplanStrategyType.NONE,
}


def parse_replan_strategy(name: str) -> ReplanStrategyType:
    """Parse a replan strategy name, accepting short aliases.

    Raises:
        ValueError: If the name is not recognized.
    """
    try:
        return _STRATEGY_ALIASES[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"unknown replan strategy: {name} (valid: incremental, agent, none)"
        ) from None


@dataclass
class ReplanResult:
    """Outcome of a replanning operation."""

    success: bool
    message: str
    trigger: TriggerType
    strategy: ReplanStrategyType
    backup_path: str = ""
    new_plans: list[PlanItem] = field(default_factory=list)
    diff: PlanDiff = field(default_factory=PlanDiff)
    timestamp: datetime = field(default_factory=datetime.now)


class ReplanStrategy(ABC):
    """Base class for replanning strategies."""

    @property
    @abstractmethod
    def strategy_type(self) -> ReplanStrategyType: ...

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @property
    @abstractmethod
    def description(self) -> str: ...

    @abstractmethod
    def execute(self, state: ReplanState, trigger: TriggerType) -> ReplanResult:
        """Produce a new plan from the current state.

        Never mutates ``state.plans``; works on a copy.
        """
        ...

    def _result(self, success: bool, message: str, trigger: TriggerType, **kwargs) -> ReplanResult:
        return ReplanResult(
            success=success,
            message=message,
            trigger=trigger,
            strategy=self.strategy_type,
            **kwargs,
        )


class NoReplanStrategy(ReplanStrategy):
    @property
    def strategy_type(self) -> ReplanStrategyType:
        return ReplanStrategyType.NONE

    @property
    def description(self) -> str:
        return "Do not change the plan"

    def execute(self, state: ReplanState, trigger: TriggerType) -> ReplanResult:
        return self._result(True, "Replanning disabled; plan left unchanged", trigger)


def _contains_long_word(text: str, words: list[str]) -> bool:
    return any(len(word) > 4 and word in text for word in words)


class IncrementalReplanStrategy(ReplanStrategy):
    """Adjust the remaining plan based on the trigger, without the agent."""

    @property
    def strategy_type(self) -> ReplanStrategyType:
        return ReplanStrategyType.INCREMENTAL

    @property
    def description(self) -> str:
        return "Adjust remaining features based on completed work and current state"

    def execute(self, state: ReplanState, trigger: TriggerType) -> ReplanResult:
        if not state.plans:
            return self._result(False, "No plans to replan", trigger)

        new_plans = [item.model_copy(deep=True) for item in state.plans]

        if trigger == TriggerType.TEST_FAILURE:
            adjustments = self._handle_test_failure(new_plans, state)
        elif trigger == TriggerType.BLOCKED_FEATURE:
            adjustments = self._handle_blocked_feature(new_plans, state)
        else:
            adjustments = self._reconcile(new_plans)

        if not adjustments:
            adjustments = ["No adjustments needed"]

        return self._result(
            True,
            "Incremental replan completed: " + "; ".join(adjustments),
            trigger,
            new_plans=new_plans,
            diff=compute_diff(state.plans, new_plans),
        )

    def _handle_test_failure(self, plans: list[PlanItem], state: ReplanState) -> list[str]:
        adjustments = []

        for item in plans:
            if item.id != state.unit_id or item.tested or item.deferred:
                continue
            if len(item.steps) > LARGE_UNIT_STEPS:
                adjustments.append(
                    f"Feature #{item.id} has {len(item.steps)} steps - "
                    "consider breaking into smaller tasks"
                )
            if REVIEW_MARKER not in item.description:
                item.description += REVIEW_NOTE
                adjustments.append(f"Marked feature #{item.id} for review")
            break

        adjustments.extend(self._potential_prerequisites(plans, state.unit_id))
        return adjustments

    def _potential_prerequisites(self, plans: list[PlanItem], current_id: int) -> list[str]:
        """Flag earlier untested units the current one seems to depend on."""
        current = next((p for p in plans if p.id == current_id), None)
        if current is None:
            return []

        current_lower = current.description.lower()
        notes = []
        for item in plans:
            if item.id >= current_id or item.deferred or item.tested:
                continue
            category = item.category.lower()
            if (category and category in current_lower) or _contains_long_word(
                current_lower, item.description.lower().split()
            ):
                notes.append(f"Feature #{current_id} may depend on untested feature #{item.id}")
        return notes

    def _handle_blocked_feature(self, plans: list[PlanItem], state: ReplanState) -> list[str]:
        adjustments = []
        blocked = set(state.blocked_features)

        for item in plans:
            if item.id in blocked and not item.deferred:
                item.deferred = True
                item.defer_reason = BLOCKED_DEFER_REASON
                adjustments.append(f"Deferred blocked feature #{item.id}")

        viable = next((p for p in plans if not p.tested and not p.deferred), None)
        if viable is not None:
            adjustments.append(f"Next feature to work on: #{viable.id}")
        return adjustments

    def _reconcile(self, plans: list[PlanItem]) -> list[str]:
        tested = sum(1 for p in plans if p.tested)
        deferred = sum(1 for p in plans if not p.tested and p.deferred)
        untested = len(plans) - tested - deferred
        return [f"Plan reconciled: {tested} tested, {untested} untested, {deferred} deferred"]


TRIGGER_INSTRUCTIONS: dict[TriggerType, str] = {
    TriggerType.TEST_FAILURE: (
        "Multiple test failures have occurred. Please analyze the current plan and suggest:\n"
        "1. Whether the current feature should be broken into smaller steps\n"
        "2. If there are missing prerequisite features\n"
        "3. An updated plan that addresses the failures\n"
    ),
    TriggerType.BLOCKED_FEATURE: (
        "One or more features are blocked. Please suggest:\n"
        "1. Alternative approaches or workarounds\n"
        "2. Reordering of remaining features\n"
        "3. Whether blocked features should be deferred\n"
    ),
    TriggerType.REQUIREMENT_CHANGE: (
        "Requirements have changed. Please:\n"
        "1. Validate the updated plan for consistency\n"
        "2. Suggest any necessary adjustments\n"
        "3. Identify any new dependencies\n"
    ),
}

GENERIC_INSTRUCTIONS = "Please analyze the current state and suggest improvements to the plan.\n"


def build_replan_prompt(state: ReplanState, trigger: TriggerType) -> str:
    """Build the restructuring prompt sent to the agent."""
    blocked = ", ".join(str(i) for i in state.blocked_features) or "none"
    lines = [
        "You are helping replan a software development project.",
        "",
        f"REPLAN TRIGGER: {trigger.value}",
        "",
        "CURRENT STATE:",
        f"- Total iterations run: {state.total_iterations}",
        f"- Current feature ID: {state.unit_id}",
        f"- Consecutive failures: {state.consecutive_failures}",
        f"- Blocked features: {blocked}",
        "",
        "CURRENT PLAN:",
    ]
    for item in state.plans:
        if item.tested:
            status = "[x]"
        elif item.deferred:
            status = "[D]"
        else:
            status = "[ ]"
        lines.append(f"  {status} #{item.id} [{item.category}]: {item.description}")

    lines += ["", "INSTRUCTIONS:"]
    prompt = "\n".join(lines) + "\n"
    prompt += TRIGGER_INSTRUCTIONS.get(trigger, GENERIC_INSTRUCTIONS)
    prompt += (
        "\nOutput an updated plan.json array. Keep the same structure and IDs where possible.\n"
    )
    return prompt


class AgentReplanStrategy(ReplanStrategy):
    """Ask the agent to rewrite the plan."""

    def __init__(self, agent_cmd: str, timeout: int | None = None):
        self.agent_cmd = agent_cmd
        self.timeout = timeout

    @property
    def strategy_type(self) -> ReplanStrategyType:
        return ReplanStrategyType.AGENT

    @property
    def description(self) -> str:
        return "Use AI agent to analyze current state and generate updated plan"

    def execute(self, state: ReplanState, trigger: TriggerType) -> ReplanResult:
        prompt = build_replan_prompt(state, trigger)
        result = run_agent(self.agent_cmd, prompt, timeout=self.timeout)

        if result.exit_code != 0:
            logger.warning("Replan agent exited with code %d", result.exit_code)
            return self._result(
                False, f"Agent execution failed: exit code {result.exit_code}", trigger
            )

        try:
            new_plans = extract_plan_from_output(result.output)
        except PlanFileError as e:
            logger.warning("Could not parse replan output: %s", e)
            return self._result(
                False, f"Failed to extract plans from agent output: {e}", trigger
            )

        return self._result(
            True,
            "Agent-based replanning completed",
            trigger,
            new_plans=new_plans,
            diff=compute_diff(state.plans, new_plans),
        )
