"""Tests for the slow-request tracker."""

import itertools
import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from tracebench.core.models import SlowEntry
from tracebench.core.topk import TopKTracker


def _entry(duration: float, corr: str | None = None, status: int = 200) -> SlowEntry:
    return SlowEntry(correlation_id=corr or f"corr-{duration}", duration_ms=duration, status=status)


def _durations(tracker: TopKTracker) -> list[float]:
    return [e.duration_ms for e in tracker.snapshot_sorted_descending()]


class TestTopKTracker:
    """Tests for TopKTracker."""

    def test_rejects_zero_capacity(self) -> None:
        """Capacity must be at least one."""
        with pytest.raises(ValueError):
            TopKTracker(0)

    def test_keeps_largest_when_over_capacity(self) -> None:
        """[10, 50, 30, 90, 20] with K=3 keeps 90, 50, 30."""
        tracker = TopKTracker(3)
        for d in [10, 50, 30, 90, 20]:
            tracker.offer(_entry(d))

        assert _durations(tracker) == [90, 50, 30]
        assert len(tracker) == 3
        assert tracker.offered == 5
        assert tracker.replaced == 1

    def test_keeps_everything_under_capacity(self) -> None:
        """[10, 20, 30] with K=5 keeps all three, slowest first."""
        tracker = TopKTracker(5)
        for d in [10, 20, 30]:
            tracker.offer(_entry(d))

        assert _durations(tracker) == [30, 20, 10]

    def test_equal_duration_does_not_evict(self) -> None:
        """A tie with the current minimum is discarded."""
        tracker = TopKTracker(2)
        tracker.offer(_entry(10, "first"))
        tracker.offer(_entry(20, "second"))

        assert tracker.offer(_entry(10, "late")) is False

        ids = [e.correlation_id for e in tracker.snapshot_sorted_descending()]
        assert ids == ["second", "first"]

    def test_ties_ordered_by_retention(self) -> None:
        """Equal durations are listed oldest retained first."""
        tracker = TopKTracker(3)
        tracker.offer(_entry(50, "a"))
        tracker.offer(_entry(50, "b"))
        tracker.offer(_entry(70, "c"))

        ids = [e.correlation_id for e in tracker.snapshot_sorted_descending()]
        assert ids == ["c", "a", "b"]

    def test_replacement_takes_new_retention_slot(self) -> None:
        """An entry that replaces the minimum sorts after older equal entries."""
        tracker = TopKTracker(2)
        tracker.offer(_entry(40, "old"))
        tracker.offer(_entry(10, "min"))
        tracker.offer(_entry(40, "new"))

        ids = [e.correlation_id for e in tracker.snapshot_sorted_descending()]
        assert ids == ["old", "new"]

    def test_min_duration_floor(self) -> None:
        """Entries below the floor are ignored entirely."""
        tracker = TopKTracker(5, min_duration_ms=100)

        assert tracker.offer(_entry(99)) is False
        assert tracker.offer(_entry(100)) is True
        assert _durations(tracker) == [100]
        assert tracker.offered == 1

    def test_snapshot_does_not_mutate(self) -> None:
        """Snapshots can be taken repeatedly mid-run."""
        tracker = TopKTracker(3)
        for d in [5, 1, 3]:
            tracker.offer(_entry(d))

        first = tracker.snapshot_sorted_descending()
        second = tracker.snapshot_sorted_descending()

        assert first == second
        assert len(tracker) == 3

    def test_top_limits_result(self) -> None:
        """top(n) returns the n slowest entries."""
        tracker = TopKTracker(10)
        for d in range(1, 8):
            tracker.offer(_entry(d))

        assert [e.duration_ms for e in tracker.top(2)] == [7, 6]

    def test_minimum_ms(self) -> None:
        """minimum_ms reports the smallest retained duration."""
        tracker = TopKTracker(3)
        assert tracker.minimum_ms is None

        for d in [8, 4, 6]:
            tracker.offer(_entry(d))
        assert tracker.minimum_ms == 4

    def test_permutation_invariance(self) -> None:
        """Any arrival order yields the same retained durations."""
        durations = [7, 3, 9, 1, 5, 8]
        expected = sorted(durations, reverse=True)[:3]

        for perm in itertools.permutations(durations):
            tracker = TopKTracker(3)
            for d in perm:
                tracker.offer(_entry(d))
            assert _durations(tracker) == expected

    def test_matches_sorted_reference_on_random_input(self) -> None:
        """Retained set equals the K largest values of a random stream."""
        rng = random.Random(1234)
        values = [rng.uniform(0, 1000) for _ in range(2000)]

        tracker = TopKTracker(25)
        for v in values:
            tracker.offer(_entry(v))

        assert _durations(tracker) == sorted(values, reverse=True)[:25]

    def test_concurrent_offers_keep_true_top_k(self) -> None:
        """Offers from many threads still retain exactly the top K."""
        values = list(range(5000))
        random.Random(7).shuffle(values)
        tracker = TopKTracker(50)

        def offer_chunk(chunk: list[int]) -> None:
            for v in chunk:
                tracker.offer(_entry(float(v)))

        chunks = [values[i::8] for i in range(8)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(offer_chunk, chunks))

        assert _durations(tracker) == [float(v) for v in range(4999, 4949, -1)]
        assert tracker.offered == 5000
