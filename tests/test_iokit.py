"""Tests for IOKit GPU and thermal helpers."""

import math
import sys

import pytest

from bar_stats.iokit import (
    _PID_PATTERN,
    ThermalSensors,
    get_gpu_usage,
    get_gpu_utilization,
    summarize_temperatures,
)


class TestSummarizeTemperatures:
    """Reducing raw HID sensor readings."""

    def test_cpu_mean_gpu_max(self) -> None:
        readings = [
            ("PMU tdie1", 50.0),
            ("PMU tdie2", 51.0),
            ("PMU tdev1", 40.2),
            ("PMU tdev2", 44.5),
            ("NAND CH0 temp", 30.0),
        ]
        # 50.5 and 44.5 round half up
        assert summarize_temperatures(readings) == (51, 45)

    def test_no_sensors(self) -> None:
        assert summarize_temperatures([]) == (-1, -1)

    def test_ignores_bogus_readings(self) -> None:
        readings = [
            ("PMU tdie1", math.nan),
            ("PMU tdie2", -3.0),
            ("PMU tdie3", 0.0),
            ("PMU tdev1", math.inf),
        ]
        assert summarize_temperatures(readings) == (-1, -1)

    def test_only_cpu_sensors(self) -> None:
        assert summarize_temperatures([("PMU tdie4", 62.4)]) == (62, -1)


class TestPidPattern:
    """IOUserClientCreator parsing."""

    def test_extracts_pid(self) -> None:
        match = _PID_PATTERN.search("pid 410, WindowServer")
        assert match is not None
        assert int(match.group(1)) == 410

    def test_no_pid(self) -> None:
        assert _PID_PATTERN.search("kernel_task") is None


@pytest.mark.skipif(sys.platform == "darwin", reason="IOKit present")
class TestWithoutIOKit:
    """Off macOS every reader reports unavailable."""

    def test_gpu_usage_empty(self) -> None:
        assert get_gpu_usage() == {}

    def test_gpu_utilization_sentinel(self) -> None:
        assert get_gpu_utilization() == -1

    def test_thermal_sentinel(self) -> None:
        sensors = ThermalSensors()
        assert sensors.read() == (-1, -1)
        sensors.close()


@pytest.mark.skipif(sys.platform != "darwin", reason="macOS only")
class TestWithIOKit:
    """Live reads on macOS."""

    def test_gpu_usage_shape(self) -> None:
        usage = get_gpu_usage()
        assert all(pid > 0 and gpu_time > 0 for pid, gpu_time in usage.items())

    def test_gpu_utilization_range(self) -> None:
        assert -1 <= get_gpu_utilization() <= 100

    def test_thermal_read_twice_and_close(self) -> None:
        sensors = ThermalSensors()
        try:
            first = sensors.read()
            second = sensors.read()
        finally:
            sensors.close()
        for cpu, gpu in (first, second):
            assert cpu == -1 or 0 < cpu < 150
            assert gpu == -1 or 0 < gpu < 150
