"""Tests for mach host statistics bindings."""

import sys

import pytest

pytestmark = pytest.mark.skipif(sys.platform != "darwin", reason="macOS only")


@pytest.fixture
def host():
    from bar_stats.mach import host_self, release_port

    port = host_self()
    yield port
    release_port(port)


def test_cpu_load(host) -> None:
    """Aggregate ticks are four non-negative counters."""
    from bar_stats.mach import get_cpu_load

    ticks = get_cpu_load(host)
    assert ticks is not None
    assert len(ticks) == 4
    assert all(t >= 0 for t in ticks)


def test_core_loads_match_cpu_count(host) -> None:
    """One tick tuple per logical CPU."""
    import os

    from bar_stats.mach import get_core_loads

    cores = get_core_loads(host)
    assert cores is not None
    assert len(cores) == os.cpu_count()


def test_core_loads_repeatable(host) -> None:
    """Repeated reads release their kernel buffers and stay monotonic."""
    from bar_stats.mach import get_core_loads

    first = get_core_loads(host)
    for _ in range(50):
        latest = get_core_loads(host)
    assert latest[0][2] >= first[0][2]


def test_vm_statistics(host) -> None:
    from bar_stats.mach import get_page_size, get_vm_statistics

    vmstat = get_vm_statistics(host)
    assert vmstat is not None
    assert vmstat.active_count > 0
    assert get_page_size(host) in (4096, 16384)
