"""Counter snapshot store.

Holds the previous raw reading for every metric source and turns each new
reading into clamped per-category deltas. Each source owns exactly two
buffers (current and previous) that swap roles every tick, so the store
never grows over an unbounded run.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import structlog

from bar_stats.counters import MetricSource
from bar_stats.rates import STALE_AFTER_SECONDS, is_valid_elapsed

log = structlog.get_logger()

SourceKey = MetricSource | tuple[MetricSource, int]


@dataclass
class CounterSnapshot:
    """Category-tagged raw counters plus a monotonic capture timestamp."""

    values: dict[str, int | float] = field(default_factory=dict)
    captured_at: float = 0.0

    def fill(self, reading: Mapping[str, int | float], captured_at: float) -> None:
        """Overwrite this buffer in place with a new reading."""
        self.values.clear()
        self.values.update(reading)
        self.captured_at = captured_at


@dataclass(frozen=True)
class CounterDelta:
    """Per-category deltas between two consecutive snapshots."""

    deltas: dict[str, int | float]
    elapsed: float
    valid: bool

    def __getitem__(self, category: str) -> int | float:
        return self.deltas.get(category, 0)


class _Slot:
    """Current/previous buffer pair for one source."""

    __slots__ = ("current", "previous", "primed")

    def __init__(self) -> None:
        self.current = CounterSnapshot()
        self.previous = CounterSnapshot()
        self.primed = False

    def swap(self) -> None:
        self.current, self.previous = self.previous, self.current


def compute_deltas(
    previous: Mapping[str, int | float], current: Mapping[str, int | float]
) -> tuple[dict[str, int | float], list[str]]:
    """Return clamped deltas and the categories that regressed.

    A category missing from the previous reading has a delta of 0.
    """
    deltas: dict[str, int | float] = {}
    regressed: list[str] = []
    for category, value in current.items():
        if category not in previous:
            deltas[category] = 0
            continue
        delta = value - previous[category]
        if delta < 0:
            regressed.append(category)
            delta = 0
        deltas[category] = delta
    return deltas, regressed


class SnapshotStore:
    """Double-buffered store of the last raw reading per metric source.

    Keys are MetricSource members, or (MetricSource, index) pairs for
    sources with several independent slots.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        stale_after: float = STALE_AFTER_SECONDS,
    ) -> None:
        self._clock = clock
        self.stale_after = stale_after
        self._slots: dict[SourceKey, _Slot] = {}

    def update(
        self, source: SourceKey, reading: Mapping[str, int | float] | None
    ) -> CounterDelta | None:
        """Store a reading and return the delta against the previous one.

        Returns None when the reading is unavailable (nothing is stored) or
        when this is the baseline reading for the source.
        """
        if reading is None:
            return None

        now = self._clock()
        slot = self._slots.get(source)
        if slot is None:
            slot = self._slots[source] = _Slot()

        slot.current.fill(reading, now)
        if not slot.primed:
            slot.primed = True
            slot.swap()
            return None

        deltas, regressed = compute_deltas(slot.previous.values, slot.current.values)
        if regressed:
            log.debug("counter_regression", source=_source_name(source), categories=regressed)
        elapsed = slot.current.captured_at - slot.previous.captured_at
        slot.swap()
        return CounterDelta(
            deltas=deltas, elapsed=elapsed, valid=is_valid_elapsed(elapsed, self.stale_after)
        )

    def has_baseline(self, source: SourceKey) -> bool:
        slot = self._slots.get(source)
        return slot is not None and slot.primed

    def previous(self, source: SourceKey) -> CounterSnapshot | None:
        """Return the most recent stored reading for a source."""
        slot = self._slots.get(source)
        if slot is None or not slot.primed:
            return None
        return slot.previous

    def reset(self, source: SourceKey) -> None:
        """Forget the baseline; the next reading becomes a new baseline."""
        slot = self._slots.get(source)
        if slot is not None:
            slot.primed = False


def _source_name(source: SourceKey) -> str:
    if isinstance(source, tuple):
        return f"{source[0].value}[{source[1]}]"
    return source.value
