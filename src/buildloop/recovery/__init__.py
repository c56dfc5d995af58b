"""Failure recovery for the build loop.

This module provides:
- Failure classification of agent output into a fixed taxonomy
- Per-unit failure tracking with bounded retries
- Recovery strategies (retry, skip, rollback)
- A manager tying classification, tracking and strategy selection together
"""

from .classifier import (
    classify_failure,
    contains_failure_indicators,
    detect_failure_type,
    extract_failure_message,
    is_test_output,
)
from .manager import RecoveryManager, select_strategy_type
from .models import (
    Failure,
    FailureType,
    RecoveryResult,
    StrategyType,
    parse_recovery_strategy,
)
from .strategies import (
    RecoveryStrategy,
    RetryRecoveryStrategy,
    RollbackRecoveryStrategy,
    SkipRecoveryStrategy,
    build_retry_guidance,
)
from .tracker import FailureTracker

__all__ = [
    # Models
    "Failure",
    "FailureType",
    "RecoveryResult",
    "StrategyType",
    "parse_recovery_strategy",
    # Classifier
    "classify_failure",
    "contains_failure_indicators",
    "detect_failure_type",
    "extract_failure_message",
    "is_test_output",
    # Tracker
    "FailureTracker",
    # Strategies
    "RecoveryStrategy",
    "RetryRecoveryStrategy",
    "SkipRecoveryStrategy",
    "RollbackRecoveryStrategy",
    "build_retry_guidance",
    # Manager
    "RecoveryManager",
    "select_strategy_type",
]
