"""Per-core load tracker."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

import structlog

from bar_stats.counters import CpuTicks
from bar_stats.rates import STALE_AFTER_SECONDS, core_load, is_valid_elapsed
from bar_stats.snapshot import compute_deltas

log = structlog.get_logger()

MAX_CORES = 32


class CoreLoadTracker:
    """Per-core busy percentages from consecutive tick arrays.

    Holds a fixed number of load slots plus two raw-array buffers that swap
    roles each tick. Only indices present in both the previous and current
    arrays are recomputed; any other slot keeps its last value (0 until it
    has been computed once).
    """

    def __init__(
        self,
        max_cores: int = MAX_CORES,
        clock: Callable[[], float] = time.monotonic,
        stale_after: float = STALE_AFTER_SECONDS,
    ) -> None:
        self.max_cores = max_cores
        self.stale_after = stale_after
        self.ncores = 0
        self._clock = clock
        self._slots = [0] * max_cores
        self._current: list[CpuTicks] = []
        self._previous: list[CpuTicks] = []
        self._captured_at = 0.0
        self._primed = False

    @property
    def loads(self) -> list[int]:
        """Loads for the cores seen in the last successful read."""
        return self._slots[: self.ncores]

    def update(self, cores: Sequence[CpuTicks] | None) -> list[int] | None:
        """Record a per-core reading and return the loads.

        Returns None on a read failure (state untouched) and on the baseline
        reading.
        """
        if cores is None:
            return None

        now = self._clock()
        self._current[:] = cores[: self.max_cores]
        self.ncores = len(self._current)

        if not self._primed:
            self._primed = True
            self._swap(now)
            return None

        elapsed = now - self._captured_at
        if is_valid_elapsed(elapsed, self.stale_after):
            for i in range(min(len(self._previous), len(self._current))):
                deltas, _ = compute_deltas(
                    self._previous[i].as_counters(), self._current[i].as_counters()
                )
                self._slots[i] = core_load(deltas)
        else:
            log.debug("core_sample_stale", elapsed=round(elapsed, 3))

        self._swap(now)
        return self.loads

    def _swap(self, now: float) -> None:
        self._current, self._previous = self._previous, self._current
        self._captured_at = now
