"""Shared test fixtures for bar-stats."""

from collections.abc import Callable

import pytest

from bar_stats.counters import CpuTicks, MemoryReading, NetworkBytes


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCounterSource:
    """In-memory CounterSource whose readings tests set directly."""

    def __init__(self) -> None:
        self.cpu: CpuTicks | None = CpuTicks(user=0, system=0, idle=0)
        self.cores: list[CpuTicks] | None = []
        self.network: dict[str, NetworkBytes] = {}
        self.memory: MemoryReading | None = None
        self.gpu_util = -1
        self.temperatures = (-1, -1)
        self.gpu_times: dict[int, int] = {}
        self.names: dict[int, str] = {}
        self.primary: str | None = None
        self.closed = False

    def read_cpu(self) -> CpuTicks | None:
        return self.cpu

    def read_cores(self) -> list[CpuTicks] | None:
        return self.cores

    def read_network(self, interface: str) -> NetworkBytes | None:
        return self.network.get(interface)

    def read_memory(self) -> MemoryReading | None:
        return self.memory

    def read_gpu_utilization(self) -> int:
        return self.gpu_util

    def read_temperatures(self) -> tuple[int, int]:
        return self.temperatures

    def list_pids(self) -> list[int]:
        return sorted(set(self.gpu_times) | set(self.names))

    def process_name(self, pid: int) -> str | None:
        return self.names.get(pid)

    def process_gpu_time(self, pid: int) -> int | None:
        return self.gpu_times.get(pid)

    def has_interface(self, interface: str) -> bool:
        return interface in self.network

    def primary_interface(self) -> str | None:
        return self.primary

    def close(self) -> None:
        self.closed = True


class RecordingBus:
    """EventBus stand-in that records every message."""

    def __init__(self, ok: bool = True) -> None:
        self.binary = "sketchybar"
        self.ok = ok
        self.registered: list[str] = []
        self.messages: list[str] = []
        self.on_deliver: Callable[[str], None] | None = None

    def register(self, event: str) -> bool:
        self.registered.append(event)
        return self.ok

    def deliver(self, message: str) -> bool:
        self.messages.append(message)
        if self.on_deliver is not None:
            self.on_deliver(message)
        return self.ok


def ticks(user: int, system: int, idle: int, nice: int = 0) -> CpuTicks:
    return CpuTicks(user=user, system=system, idle=idle, nice=nice)


def parse_message(message: str) -> dict[str, str]:
    """Split a key='value' message into a dict (values without quotes)."""
    import shlex

    fields = {}
    for token in shlex.split(message):
        if "=" in token:
            key, _, value = token.partition("=")
            fields[key] = value
    return fields


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> FakeCounterSource:
    return FakeCounterSource()


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()
