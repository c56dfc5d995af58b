"""Append-only progress log.

The loop appends one line per failure, deferral and replan event. Nothing
in this package reads the log back.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from .recovery.models import Failure

logger = logging.getLogger(__name__)


def append_progress(path: Path, message: str) -> bool:
    """Append a timestamped entry. Write errors are logged, never raised.

    Returns:
        True if the entry was written.
    """
    timestamp = datetime.now().astimezone().isoformat(timespec="seconds")
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"\n[{timestamp}] {message}\n")
    except OSError as e:
        logger.warning("Failed to write to progress file %s: %s", path, e)
        return False
    return True


def format_failure_line(failure: Failure) -> str:
    return (
        f"FAILURE [{failure.type.value}]: {failure.message} "
        f"(unit #{failure.unit_id}, retry {failure.retry_count})"
    )


def format_deferral_line(unit_id: int, reason_text: str, iterations_used: int) -> str:
    return f"DEFERRED: Feature #{unit_id} - {reason_text} (iterations used: {iterations_used})"


def format_replan_line(trigger: str, strategy: str) -> str:
    return f"REPLAN: {trigger} triggered, strategy: {strategy}"
