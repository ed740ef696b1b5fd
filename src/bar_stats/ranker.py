"""Top-K process ranking and bounded serialization."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

import structlog

log = structlog.get_logger()

TOP_K = 10
PROCS_CAPACITY = 2048


@dataclass(frozen=True, order=True)
class ProcessSample:
    """One ranked process. Rebuilt every tick."""

    metric: int | float
    name: str
    pid: int

    def pair(self) -> str:
        return f"{self.name}:{_format_metric(self.metric)}"


def _format_metric(metric: int | float) -> str:
    if isinstance(metric, float) and not metric.is_integer():
        return f"{metric:.2f}"
    return str(int(metric))


class BoundedBuffer:
    """Capacity-checked, separator-joined string builder.

    Capacity counts UTF-8 bytes. An item that would not fit is rejected
    whole and the buffer stays closed to further items.
    """

    def __init__(self, capacity: int, separator: str = ";") -> None:
        self.capacity = capacity
        self.separator = separator
        self._parts: list[str] = []
        self._size = 0
        self._full = False

    def append(self, item: str) -> bool:
        if self._full:
            return False
        cost = len(item.encode())
        if self._parts:
            cost += len(self.separator.encode())
        if self._size + cost > self.capacity:
            self._full = True
            return False
        self._parts.append(item)
        self._size += cost
        return True

    def extend(self, items: Iterable[str]) -> int:
        """Append items in order until one does not fit. Returns how many fit."""
        count = 0
        for item in items:
            if not self.append(item):
                break
            count += 1
        return count

    @property
    def full(self) -> bool:
        return self._full

    def __len__(self) -> int:
        return self._size

    def __str__(self) -> str:
        return self.separator.join(self._parts)


def _read(fn: Callable[[int], object], pid: int) -> object:
    try:
        return fn(pid)
    except OSError:
        return None


def rank(
    pids: Iterable[int],
    metric_fn: Callable[[int], int | float | None],
    name_fn: Callable[[int], str | None],
    k: int = TOP_K,
) -> list[ProcessSample]:
    """Return the k processes with the highest metric, highest first.

    Processes with a non-positive pid, a zero or unreadable metric, or an
    empty or unreadable name are dropped.
    """
    samples = []
    for pid in pids:
        if pid <= 0:
            continue
        metric = _read(metric_fn, pid)
        if metric is None or not metric > 0:
            continue
        name = _read(name_fn, pid)
        if not name:
            continue
        samples.append(ProcessSample(metric=metric, name=name, pid=pid))

    samples.sort(reverse=True)
    return samples[:k]


def serialize(
    samples: Iterable[ProcessSample],
    capacity: int = PROCS_CAPACITY,
    separator: str = ";",
) -> str:
    """Join name:metric pairs; stop at the first pair that would overflow."""
    buffer = BoundedBuffer(capacity, separator)
    written = buffer.extend(sample.pair() for sample in samples)
    if buffer.full:
        log.debug("ranked_list_truncated", written=written, capacity=capacity)
    return str(buffer)
