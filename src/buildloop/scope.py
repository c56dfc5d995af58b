"""Scope control: iteration budgets, deadlines and unit deferral.

Budgets and deadlines are checked every iteration, independent of whether
the previous iteration succeeded. A unit that hits its budget is deferred
so the run can move on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

logger = logging.getLogger(__name__)


class Complexity(str, Enum):
    """Estimated complexity of a unit of work."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DeferReason(str, Enum):
    """Why a unit was set aside."""

    ITERATION_LIMIT = "iteration_limit"
    DEADLINE = "deadline"
    COMPLEXITY = "complexity"
    MANUAL = "manual"


# Description words that suggest a unit will take longer than its steps imply
COMPLEXITY_KEYWORDS: tuple[str, ...] = (
    "refactor",
    "migrate",
    "integration",
    "comprehensive",
    "multi",
    "parallel",
    "concurrent",
    "distributed",
    "security",
    "authentication",
    "authorization",
)

_BUMP = {Complexity.LOW: Complexity.MEDIUM, Complexity.MEDIUM: Complexity.HIGH}

DEFER_REASON_TEXT: dict[DeferReason, str] = {
    DeferReason.ITERATION_LIMIT: "exceeded iteration limit",
    DeferReason.DEADLINE: "deadline reached",
    DeferReason.COMPLEXITY: "too complex for current scope",
    DeferReason.MANUAL: "manually deferred",
}


@dataclass
class Constraints:
    """Scope limits for a run."""

    max_iterations_per_feature: int = 0  # 0 = unlimited
    deadline: datetime | None = None
    auto_defer: bool = True


@dataclass
class FeatureScope:
    """Scope tracking for a single unit."""

    feature_id: int
    estimated_complexity: Complexity
    iterations_used: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None
    deferred: bool = False
    defer_reason: DeferReason | None = None
    simplification_suggested: bool = False


@dataclass
class ScopeStatus:
    """Snapshot of scope state for end-of-run summaries."""

    total_iterations: int
    elapsed_time: timedelta
    remaining_time: timedelta
    deadline_set: bool
    deadline_exceeded: bool
    deferred_feature_ids: list[int]
    iterations_per_feature: dict[int, int]
    max_iterations_per_feature: int

    @property
    def deferred_count(self) -> int:
        return len(self.deferred_feature_ids)


@dataclass
class DeferralInfo:
    feature_id: int
    reason: DeferReason | None
    iterations_used: int


def estimate_complexity(step_count: int, description: str) -> Complexity:
    """Estimate complexity from step count, bumped one level by keywords.

    ≤2 steps is low, 3-6 medium, 7 or more high.
    """
    if step_count <= 2:
        complexity = Complexity.LOW
    elif step_count <= 6:
        complexity = Complexity.MEDIUM
    else:
        complexity = Complexity.HIGH

    desc_lower = description.lower()
    if any(keyword in desc_lower for keyword in COMPLEXITY_KEYWORDS):
        complexity = _BUMP.get(complexity, complexity)

    return complexity


def complexity_to_iterations(complexity: Complexity) -> int:
    """Suggested iteration budget for a complexity level."""
    return {Complexity.LOW: 3, Complexity.MEDIUM: 5, Complexity.HIGH: 10}.get(complexity, 5)


def suggest_simplification(step_count: int, description: str) -> list[str]:
    """Suggest ways to cut a unit down to size."""
    suggestions = []

    if step_count > 5:
        suggestions.append(
            f"Feature has {step_count} steps - consider breaking into smaller features"
        )

    desc_lower = description.lower()
    if " and " in desc_lower:
        suggestions.append(
            "Description contains 'and' - may indicate multiple features that could be split"
        )
    if "comprehensive" in desc_lower or "complete" in desc_lower:
        suggestions.append("Consider implementing a minimal version first, then enhancing")
    if "all " in desc_lower:
        suggestions.append("'All' may be ambitious - consider implementing a subset first")

    if not suggestions:
        suggestions.append("Focus on core functionality, defer edge cases")

    return suggestions


def format_deferral_reason(reason: DeferReason | str | None) -> str:
    if reason is None:
        return ""
    try:
        return DEFER_REASON_TEXT[DeferReason(reason)]
    except ValueError:
        return str(reason)


class ScopeManager:
    """Tracks iteration budgets and the run deadline per unit."""

    def __init__(self, constraints: Constraints | None = None):
        self.constraints = constraints or Constraints()
        self.start_time = datetime.now()
        self._features: dict[int, FeatureScope] = {}
        self._deferred: list[int] = []
        self.total_iterations = 0

    def set_deadline(self, deadline: datetime | None) -> None:
        self.constraints.deadline = deadline

    def set_deadline_duration(self, duration: timedelta) -> None:
        self.constraints.deadline = datetime.now() + duration

    def start_feature(self, feature_id: int, step_count: int, description: str) -> FeatureScope:
        """Begin tracking a unit. A unit already seen keeps its record."""
        scope = self._features.get(feature_id)
        if scope is None:
            scope = FeatureScope(
                feature_id=feature_id,
                estimated_complexity=estimate_complexity(step_count, description),
            )
            self._features[feature_id] = scope
            logger.debug(
                "Tracking unit #%d (complexity: %s)", feature_id, scope.estimated_complexity.value
            )
        return scope

    def get_feature_scope(self, feature_id: int) -> FeatureScope | None:
        return self._features.get(feature_id)

    def record_iteration(self, feature_id: int) -> None:
        self.total_iterations += 1
        scope = self._features.get(feature_id)
        if scope is not None:
            scope.iterations_used += 1

    def is_deadline_exceeded(self) -> bool:
        deadline = self.constraints.deadline
        return deadline is not None and datetime.now() > deadline

    def should_defer(self, feature_id: int) -> tuple[bool, DeferReason | None]:
        """Check whether a unit must be deferred.

        The deadline is checked before the per-unit iteration limit.
        """
        if self.is_deadline_exceeded():
            return True, DeferReason.DEADLINE

        scope = self._features.get(feature_id)
        limit = self.constraints.max_iterations_per_feature
        if scope is not None and limit > 0 and scope.iterations_used >= limit:
            return True, DeferReason.ITERATION_LIMIT

        return False, None

    def defer_feature(self, feature_id: int, reason: DeferReason) -> None:
        """Mark a unit deferred. Repeated calls keep a single entry."""
        scope = self._features.get(feature_id)
        if scope is not None and not scope.deferred:
            scope.deferred = True
            scope.defer_reason = reason
            scope.end_time = datetime.now()

        if feature_id not in self._deferred:
            self._deferred.append(feature_id)
            logger.info("Deferred unit #%d: %s", feature_id, format_deferral_reason(reason))

    def complete_feature(self, feature_id: int) -> None:
        scope = self._features.get(feature_id)
        if scope is not None:
            scope.end_time = datetime.now()

    @property
    def deferred_features(self) -> list[int]:
        return list(self._deferred)

    def remaining_time(self) -> timedelta:
        """Time left until the deadline; zero when unset or passed."""
        deadline = self.constraints.deadline
        if deadline is None:
            return timedelta(0)
        return max(deadline - datetime.now(), timedelta(0))

    def remaining_iterations(self, feature_id: int) -> int:
        """Iterations left for a unit, or -1 when unlimited."""
        limit = self.constraints.max_iterations_per_feature
        if limit <= 0:
            return -1
        scope = self._features.get(feature_id)
        if scope is None:
            return limit
        return max(limit - scope.iterations_used, 0)

    @property
    def elapsed_time(self) -> timedelta:
        return datetime.now() - self.start_time

    def should_suggest_simplification(self, feature_id: int) -> bool:
        """True at most once per unit.

        Fires immediately for high-complexity units, otherwise once half the
        per-unit limit is used.
        """
        scope = self._features.get(feature_id)
        if scope is None or scope.simplification_suggested:
            return False

        suggest = scope.estimated_complexity == Complexity.HIGH
        limit = self.constraints.max_iterations_per_feature
        if not suggest and limit > 0:
            suggest = scope.iterations_used >= max(limit // 2, 1)

        if suggest:
            scope.simplification_suggested = True
        return suggest

    def mark_simplification_suggested(self, feature_id: int) -> None:
        scope = self._features.get(feature_id)
        if scope is not None:
            scope.simplification_suggested = True

    def was_simplification_suggested(self, feature_id: int) -> bool:
        scope = self._features.get(feature_id)
        return scope is not None and scope.simplification_suggested

    def get_status(self) -> ScopeStatus:
        return ScopeStatus(
            total_iterations=self.total_iterations,
            elapsed_time=self.elapsed_time,
            remaining_time=self.remaining_time(),
            deadline_set=self.constraints.deadline is not None,
            deadline_exceeded=self.is_deadline_exceeded(),
            deferred_feature_ids=self.deferred_features,
            iterations_per_feature={
                fid: scope.iterations_used for fid, scope in self._features.items()
            },
            max_iterations_per_feature=self.constraints.max_iterations_per_feature,
        )

    def format_status(self) -> str:
        status = self.get_status()
        lines = [f"Elapsed time: {_format_timedelta(status.elapsed_time)}"]

        if status.deadline_set:
            if status.deadline_exceeded:
                lines.append("Deadline: EXCEEDED")
            else:
                lines.append(f"Time remaining: {_format_timedelta(status.remaining_time)}")

        if status.max_iterations_per_feature > 0:
            lines.append(f"Max iterations per feature: {status.max_iterations_per_feature}")

        if status.deferred_count:
            ids = ", ".join(str(i) for i in status.deferred_feature_ids)
            lines.append(f"Deferred features: {status.deferred_count} (IDs: {ids})")

        return "\n".join(lines)

    def deferral_info(self) -> list[DeferralInfo]:
        info = []
        for feature_id in self._deferred:
            scope = self._features.get(feature_id)
            if scope is not None:
                info.append(
                    DeferralInfo(
                        feature_id=feature_id,
                        reason=scope.defer_reason,
                        iterations_used=scope.iterations_used,
                    )
                )
        return info


def _format_timedelta(delta: timedelta) -> str:
    total = int(round(delta.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{minutes}m{seconds}s"
    return f"{seconds}s"
