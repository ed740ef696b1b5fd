"""Rate calculator.

Turns counter deltas into percentages and throughputs. Every delta-derived
rate is gated by the validity window: an elapsed time outside
(0, stale_after] keeps the previously computed value instead of producing
a spike from a bogus denominator (clock jump, sleep/wake, same-instant
reads).
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

STALE_AFTER_SECONDS = 100.0
BITS_PER_BYTE = 8
BITS_PER_MEGABIT = 1_000_000


class Validity(Enum):
    FRESH = "fresh"
    STALE = "stale"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RateSample:
    """One derived value for one tick. Never persisted."""

    metric: str
    value: float | CpuLoad
    unit: str
    validity: Validity


@dataclass(frozen=True)
class CpuLoad:
    """Aggregate CPU percentages, truncated to whole numbers."""

    user: int
    system: int
    total: int


CPU_UNAVAILABLE = CpuLoad(-1, -1, -1)
CPU_IDLE = CpuLoad(0, 0, 0)


def is_valid_elapsed(elapsed: float, stale_after: float = STALE_AFTER_SECONDS) -> bool:
    """True if elapsed seconds lie in (0, stale_after]."""
    return math.isfinite(elapsed) and 0 < elapsed <= stale_after


def _percent(part: float, total: float) -> int:
    if total <= 0:
        return 0
    return int(100 * part / total)


def cpu_percentages(deltas: Mapping[str, int | float], include_nice: bool = False) -> CpuLoad:
    """Compute user/system/total CPU percentages from tick deltas.

    The denominator is user + system + idle, plus nice when include_nice is
    set. A tick with no elapsed ticks reports 0 everywhere.
    """
    user = deltas.get("user", 0)
    system = deltas.get("system", 0)
    total = user + system + deltas.get("idle", 0)
    if include_nice:
        total += deltas.get("nice", 0)
    if total <= 0:
        return CPU_IDLE
    user_pct = _percent(user, total)
    system_pct = _percent(system, total)
    return CpuLoad(user=user_pct, system=system_pct, total=user_pct + system_pct)


def core_load(deltas: Mapping[str, int | float]) -> int:
    """Busy percentage of one core: (user + system) over all four categories."""
    busy = deltas.get("user", 0) + deltas.get("system", 0)
    total = busy + deltas.get("idle", 0) + deltas.get("nice", 0)
    return _percent(busy, total)


def throughput_mbps(delta_bytes: int | float, elapsed: float) -> float:
    """Megabits per second for a byte delta; never negative."""
    if elapsed <= 0:
        return 0.0
    mbps = delta_bytes * BITS_PER_BYTE / BITS_PER_MEGABIT / elapsed
    return max(0.0, mbps)


def clamp_percent(value: float) -> int:
    return int(min(100, max(0, value)))


class RateHolder:
    """Keeps the last computed value for one metric.

    update() returns FRESH with the new value inside the validity window,
    STALE with the retained value outside it, and UNAVAILABLE (with the
    initial value) until a value has been computed at least once.
    """

    def __init__(
        self,
        metric: str,
        unit: str,
        initial: float | CpuLoad = 0.0,
        stale_after: float = STALE_AFTER_SECONDS,
    ) -> None:
        self.metric = metric
        self.unit = unit
        self.stale_after = stale_after
        self._initial = initial
        self._value = initial
        self._computed = False

    @property
    def value(self) -> float | CpuLoad:
        return self._value

    def reset(self) -> None:
        """Forget the retained value; UNAVAILABLE until the next fresh update."""
        self._value = self._initial
        self._computed = False

    def update(self, value: float | CpuLoad | None, elapsed: float | None) -> RateSample:
        fresh = elapsed is not None and is_valid_elapsed(elapsed, self.stale_after)
        if value is not None and fresh:
            self._value = value
            self._computed = True
            return self._sample(Validity.FRESH)
        if self._computed:
            return self._sample(Validity.STALE)
        return self._sample(Validity.UNAVAILABLE)

    def _sample(self, validity: Validity) -> RateSample:
        return RateSample(metric=self.metric, value=self._value, unit=self.unit, validity=validity)
