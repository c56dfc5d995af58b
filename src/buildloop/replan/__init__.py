"""Adaptive replanning.

This module provides:
- Triggers deciding when the plan should be restructured
- Numbered plan backups with restore
- Structural plan diffs for reporting
- Incremental, agent-based and no-op replan strategies
"""

from .diff import PlanChange, PlanDiff, compute_diff
from .manager import ReplanManager
from .strategies import (
    AgentReplanStrategy,
    IncrementalReplanStrategy,
    NoReplanStrategy,
    ReplanResult,
    ReplanStrategy,
    ReplanStrategyType,
    build_replan_prompt,
    parse_replan_strategy,
)
from .triggers import (
    BlockedFeatureTrigger,
    ReplanState,
    ReplanTrigger,
    RequirementChangeTrigger,
    TestFailureTrigger,
    TriggerType,
    check_triggers,
    default_triggers,
)
from .versioning import PlanVersion, PlanVersioner, fingerprint_file

__all__ = [
    # Triggers
    "TriggerType",
    "ReplanState",
    "ReplanTrigger",
    "TestFailureTrigger",
    "RequirementChangeTrigger",
    "BlockedFeatureTrigger",
    "check_triggers",
    "default_triggers",
    # Versioning
    "PlanVersion",
    "PlanVersioner",
    "fingerprint_file",
    # Diff
    "PlanChange",
    "PlanDiff",
    "compute_diff",
    # Strategies
    "ReplanStrategyType",
    "ReplanResult",
    "ReplanStrategy",
    "IncrementalReplanStrategy",
    "AgentReplanStrategy",
    "NoReplanStrategy",
    "build_replan_prompt",
    "parse_replan_strategy",
    # Manager
    "ReplanManager",
]
