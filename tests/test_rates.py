"""Tests for rate derivation."""

import math

import pytest

from bar_stats.counters import MetricSource
from bar_stats.rates import (
    CPU_IDLE,
    CpuLoad,
    RateHolder,
    Validity,
    clamp_percent,
    core_load,
    cpu_percentages,
    is_valid_elapsed,
    throughput_mbps,
)
from bar_stats.snapshot import SnapshotStore


class TestCpuPercentages:
    """Aggregate CPU percentages."""

    def test_basic_split(self) -> None:
        load = cpu_percentages({"user": 30, "system": 10, "idle": 60})
        assert load == CpuLoad(user=30, system=10, total=40)

    def test_truncates(self) -> None:
        load = cpu_percentages({"user": 1, "system": 1, "idle": 1})
        assert load == CpuLoad(user=33, system=33, total=66)

    def test_zero_total_is_idle(self) -> None:
        assert cpu_percentages({"user": 0, "system": 0, "idle": 0}) == CPU_IDLE

    def test_nice_excluded_by_default(self) -> None:
        load = cpu_percentages({"user": 50, "system": 0, "idle": 50, "nice": 100})
        assert load.user == 50

    def test_nice_included_on_request(self) -> None:
        load = cpu_percentages({"user": 50, "system": 0, "idle": 50, "nice": 100}, True)
        assert load.user == 25


class TestCoreLoad:
    """Single-core busy percentage."""

    def test_busy_over_all_categories(self) -> None:
        assert core_load({"user": 10, "system": 10, "idle": 70, "nice": 10}) == 20

    def test_fully_busy(self) -> None:
        assert core_load({"user": 60, "system": 40, "idle": 0, "nice": 0}) == 100

    def test_no_ticks(self) -> None:
        assert core_load({"user": 0, "system": 0, "idle": 0, "nice": 0}) == 0


class TestThroughput:
    """Byte deltas to megabits per second."""

    def test_one_second(self) -> None:
        assert throughput_mbps(1_250_000, 1.0) == pytest.approx(10.0)

    def test_scales_with_elapsed(self) -> None:
        assert throughput_mbps(1_250_000, 2.0) == pytest.approx(5.0)

    def test_never_negative(self) -> None:
        assert throughput_mbps(-500, 1.0) == 0.0

    def test_zero_elapsed_does_not_divide(self) -> None:
        assert throughput_mbps(1000, 0.0) == 0.0

    def test_rate_equals_delta_over_elapsed(self, clock) -> None:
        """Consecutive non-decreasing readings yield delta / elapsed."""
        store = SnapshotStore(clock=clock)
        store.update(MetricSource.NETWORK_INTERFACE, {"ibytes": 10_000})
        clock.advance(0.75)
        delta = store.update(MetricSource.NETWORK_INTERFACE, {"ibytes": 760_000})

        expected = 750_000 * 8 / 1_000_000 / 0.75
        assert throughput_mbps(delta["ibytes"], delta.elapsed) == pytest.approx(expected)


class TestValidity:
    """Elapsed-time window and percent clamping."""

    @pytest.mark.parametrize(
        ("elapsed", "expected"),
        [
            (-1.0, False),
            (0.0, False),
            (1e-6, True),
            (100.0, True),
            (100.0001, False),
            (math.inf, False),
            (math.nan, False),
        ],
    )
    def test_is_valid_elapsed(self, elapsed: float, expected: bool) -> None:
        assert is_valid_elapsed(elapsed) is expected

    @pytest.mark.parametrize(
        ("value", "expected"), [(-5, 0), (0, 0), (42.9, 42), (100, 100), (150.0, 100)]
    )
    def test_clamp_percent(self, value: float, expected: int) -> None:
        assert clamp_percent(value) == expected


class TestRateHolder:
    """Retaining the last computed value across stale ticks."""

    def test_unavailable_until_computed(self) -> None:
        holder = RateHolder("download", "Mbps")
        sample = holder.update(None, None)
        assert sample.validity is Validity.UNAVAILABLE
        assert sample.value == 0.0

    def test_fresh_value(self) -> None:
        holder = RateHolder("download", "Mbps")
        sample = holder.update(12.5, 1.0)
        assert sample.validity is Validity.FRESH
        assert sample.value == 12.5
        assert sample.metric == "download"
        assert sample.unit == "Mbps"

    def test_stale_keeps_previous(self) -> None:
        holder = RateHolder("download", "Mbps")
        holder.update(12.5, 1.0)

        for elapsed in (0.0, 250.0):
            sample = holder.update(999.0, elapsed)
            assert sample.validity is Validity.STALE
            assert sample.value == 12.5

    def test_missing_value_after_computed_is_stale(self) -> None:
        holder = RateHolder("cpu", "%", initial=CPU_IDLE)
        holder.update(CpuLoad(10, 5, 15), 1.0)
        sample = holder.update(None, None)
        assert sample.validity is Validity.STALE
        assert sample.value == CpuLoad(10, 5, 15)

    def test_invalid_before_computed_keeps_initial(self) -> None:
        holder = RateHolder("cpu", "%", initial=CPU_IDLE)
        sample = holder.update(CpuLoad(90, 5, 95), 0.0)
        assert sample.validity is Validity.UNAVAILABLE
        assert sample.value == CPU_IDLE

    def test_reset_forgets_retained_value(self) -> None:
        holder = RateHolder("upload", "Mbps")
        holder.update(12.5, 1.0)
        holder.reset()

        sample = holder.update(None, None)
        assert sample.validity is Validity.UNAVAILABLE
        assert sample.value == 0.0

        sample = holder.update(3.0, 1.0)
        assert sample.validity is Validity.FRESH
        assert sample.value == 3.0

    def test_custom_window(self) -> None:
        holder = RateHolder("upload", "Mbps", stale_after=10.0)
        assert holder.update(1.0, 11.0).validity is Validity.UNAVAILABLE
        assert holder.update(1.0, 9.0).validity is Validity.FRESH
