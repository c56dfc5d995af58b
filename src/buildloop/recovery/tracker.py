"""Per-unit failure history and retry counts."""

from __future__ import annotations

from collections import Counter
from dataclasses import replace

from .models import Failure


class FailureTracker:
    """Tracks failures per unit of work.

    ``retry_count(unit) == len(failures(unit))`` holds after every
    ``record_failure``. Both are cleared together by ``reset_feature`` once
    the unit succeeds; the all-time history is kept for reporting.
    """

    def __init__(self, max_retries: int):
        self.max_retries = max_retries
        self._failures: dict[int, list[Failure]] = {}
        self._retry_counts: dict[int, int] = {}
        self._history: dict[int, list[Failure]] = {}
        self._recovered: set[int] = set()

    def record_failure(self, failure: Failure) -> Failure:
        """Record a failure and return it stamped with the unit's retry count."""
        unit_id = failure.unit_id
        count = self._retry_counts.get(unit_id, 0) + 1
        stamped = replace(failure, retry_count=count)

        self._retry_counts[unit_id] = count
        self._failures.setdefault(unit_id, []).append(stamped)
        self._history.setdefault(unit_id, []).append(stamped)
        return stamped

    def get_retry_count(self, unit_id: int) -> int:
        return self._retry_counts.get(unit_id, 0)

    def can_retry(self, unit_id: int) -> bool:
        """True while the unit has not used up its retries."""
        return self.get_retry_count(unit_id) < self.max_retries

    def get_failures(self, unit_id: int) -> list[Failure]:
        """Failures recorded for the unit since its last success."""
        return list(self._failures.get(unit_id, []))

    def get_history(self, unit_id: int) -> list[Failure]:
        """Every failure ever recorded for the unit during this run."""
        return list(self._history.get(unit_id, []))

    def reset_feature(self, unit_id: int) -> None:
        """Clear a unit's retry state after it succeeds."""
        if self._retry_counts.get(unit_id):
            self._recovered.add(unit_id)
        self._retry_counts[unit_id] = 0
        self._failures[unit_id] = []

    @property
    def recovered_count(self) -> int:
        """Number of units that failed at least once and later succeeded."""
        return len(self._recovered)

    @property
    def total_failures(self) -> int:
        return sum(len(failures) for failures in self._history.values())

    def summary(self) -> str:
        """Human-readable summary of all failures seen this run."""
        if not self._history:
            return "No failures recorded"

        lines = ["Failure Summary:"]
        for unit_id in sorted(self._history):
            failures = self._history[unit_id]
            lines.append(f"  Unit #{unit_id}: {len(failures)} failure(s)")
            by_type = Counter(f.type.value for f in failures)
            for type_name, count in sorted(by_type.items()):
                lines.append(f"    - {type_name}: {count}")

        lines.append(f"Total failures: {self.total_failures}")
        return "\n".join(lines)
