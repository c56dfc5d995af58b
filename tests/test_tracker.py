"""Tests for per-unit failure tracking."""

from __future__ import annotations

from buildloop.recovery.models import Failure, FailureType
from buildloop.recovery.tracker import FailureTracker


def make_failure(
    unit_id: int = 1,
    failure_type: FailureType = FailureType.TEST,
    iteration: int = 1,
) -> Failure:
    return Failure(
        type=failure_type,
        message="boom",
        output="boom",
        unit_id=unit_id,
        iteration=iteration,
    )


class TestRecordFailure:
    """Tests for recording failures."""

    def test_stamps_retry_count(self) -> None:
        """Recorded failures carry the unit's updated retry count."""
        tracker = FailureTracker(max_retries=3)
        first = tracker.record_failure(make_failure())
        second = tracker.record_failure(make_failure(iteration=2))
        assert first.retry_count == 1
        assert second.retry_count == 2

    def test_original_failure_unchanged(self) -> None:
        """The classifier's failure is not mutated."""
        tracker = FailureTracker(max_retries=3)
        original = make_failure()
        tracker.record_failure(original)
        assert original.retry_count == 0

    def test_count_matches_failures(self) -> None:
        """Retry count always equals the number of recorded failures."""
        tracker = FailureTracker(max_retries=5)
        for i in range(4):
            tracker.record_failure(make_failure(iteration=i))
            assert tracker.get_retry_count(1) == len(tracker.get_failures(1))

    def test_units_are_independent(self) -> None:
        """Recording for one unit leaves others untouched."""
        tracker = FailureTracker(max_retries=3)
        tracker.record_failure(make_failure(unit_id=1))
        tracker.record_failure(make_failure(unit_id=1))
        tracker.record_failure(make_failure(unit_id=2))
        assert tracker.get_retry_count(1) == 2
        assert tracker.get_retry_count(2) == 1
        assert tracker.get_retry_count(3) == 0


class TestCanRetry:
    """Tests for the retry budget."""

    def test_can_retry_until_max(self) -> None:
        """A unit can be retried while its count is below the maximum."""
        tracker = FailureTracker(max_retries=3)
        assert tracker.can_retry(1) is True
        tracker.record_failure(make_failure())
        tracker.record_failure(make_failure())
        assert tracker.can_retry(1) is True
        tracker.record_failure(make_failure())
        assert tracker.can_retry(1) is False

    def test_zero_max_retries(self) -> None:
        """With no retries allowed nothing can be retried."""
        tracker = FailureTracker(max_retries=0)
        assert tracker.can_retry(1) is False


class TestResetFeature:
    """Tests for clearing state after success."""

    def test_reset_clears_count_and_failures(self) -> None:
        """Reset clears the current failures and count together."""
        tracker = FailureTracker(max_retries=3)
        tracker.record_failure(make_failure())
        tracker.reset_feature(1)
        assert tracker.get_retry_count(1) == 0
        assert tracker.get_failures(1) == []
        assert tracker.can_retry(1) is True

    def test_history_survives_reset(self) -> None:
        """The all-time history is kept for reporting."""
        tracker = FailureTracker(max_retries=3)
        tracker.record_failure(make_failure())
        tracker.reset_feature(1)
        assert len(tracker.get_history(1)) == 1
        assert tracker.total_failures == 1

    def test_recovered_count(self) -> None:
        """Only units that failed before succeeding count as recovered."""
        tracker = FailureTracker(max_retries=3)
        tracker.record_failure(make_failure(unit_id=1))
        tracker.reset_feature(1)
        tracker.reset_feature(2)
        assert tracker.recovered_count == 1


class TestSummary:
    """Tests for the failure summary text."""

    def test_empty_summary(self) -> None:
        """No failures gives a fixed message."""
        assert FailureTracker(max_retries=3).summary() == "No failures recorded"

    def test_summary_groups_by_unit_and_type(self) -> None:
        """Summary lists each unit with per-type counts."""
        tracker = FailureTracker(max_retries=3)
        tracker.record_failure(make_failure(unit_id=2, failure_type=FailureType.TEST))
        tracker.record_failure(make_failure(unit_id=2, failure_type=FailureType.TYPECHECK))
        tracker.record_failure(make_failure(unit_id=1, failure_type=FailureType.TEST))

        summary = tracker.summary()
        lines = summary.splitlines()
        assert lines[0] == "Failure Summary:"
        assert lines[1] == "  Unit #1: 1 failure(s)"
        assert "  Unit #2: 2 failure(s)" in lines
        assert "    - typecheck_failure: 1" in lines
        assert lines[-1] == "Total failures: 3"
