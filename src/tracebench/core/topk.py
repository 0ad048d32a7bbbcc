"""Fixed-capacity tracker of the slowest requests seen in a run."""

from __future__ import annotations

import itertools
import threading

from tracebench.core.models import SlowEntry


class TopKTracker:
    """Retains the K largest-duration entries offered so far.

    Once the table is full, a new entry replaces the current minimum only if
    its duration is strictly greater, so equal durations never evict an
    entry that was retained earlier. The minimum is found by a linear scan.

    Offers and snapshots each run under one lock, so a tracker may be shared
    between asyncio tasks and threads.
    """

    def __init__(self, capacity: int, min_duration_ms: float = 0.0) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.min_duration_ms = min_duration_ms

        # (retention sequence, entry) pairs in table order
        self._table: list[tuple[int, SlowEntry]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

        self.offered = 0
        self.replaced = 0

    def __len__(self) -> int:
        return len(self._table)

    def offer(self, entry: SlowEntry) -> bool:
        """Offer an entry. Returns True if it was retained."""
        if entry.duration_ms < self.min_duration_ms:
            return False

        with self._lock:
            self.offered += 1

            if len(self._table) < self.capacity:
                self._table.append((next(self._seq), entry))
                return True

            min_idx = 0
            for i in range(1, len(self._table)):
                if self._table[i][1].duration_ms < self._table[min_idx][1].duration_ms:
                    min_idx = i

            if entry.duration_ms > self._table[min_idx][1].duration_ms:
                self._table[min_idx] = (next(self._seq), entry)
                self.replaced += 1
                return True

        return False

    def snapshot_sorted_descending(self) -> list[SlowEntry]:
        """Return retained entries, slowest first.

        Ties are ordered by retention time, oldest first. Does not mutate.
        """
        with self._lock:
            rows = list(self._table)
        rows.sort(key=lambda row: (-row[1].duration_ms, row[0]))
        return [entry for _, entry in rows]

    def top(self, n: int) -> list[SlowEntry]:
        """Return the ``n`` slowest retained entries."""
        return self.snapshot_sorted_descending()[:n]

    @property
    def minimum_ms(self) -> float | None:
        """Smallest retained duration, or None when empty."""
        with self._lock:
            if not self._table:
                return None
            return min(entry.duration_ms for _, entry in self._table)
