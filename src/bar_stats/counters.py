"""Raw counter sources.

A counter source is the opaque read capability behind every metric. Reads
never raise for OS failures: a failed read returns None (or -1 for scalar
percentages and temperatures) and the sampler carries on.

Two implementations:
- MacCounterSource: native macOS reads via mach/sysctl/libproc/IOKit
- PsutilCounterSource: portable reads via psutil
"""

from __future__ import annotations

import re
import socket
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import psutil
import structlog

log = structlog.get_logger()

UNAVAILABLE = -1


class MetricSource(Enum):
    """Identifies which raw-counter capability a snapshot came from."""

    CPU_AGGREGATE = "cpu"
    CPU_CORES = "cpu_cores"
    NETWORK_INTERFACE = "network"
    MEMORY = "memory"
    GPU_UTILIZATION = "gpu_util"
    GPU_PROCESS = "gpu_process"
    TEMPERATURE = "temperature"


@dataclass(frozen=True)
class CpuTicks:
    """Cumulative CPU ticks for one core or the whole host."""

    user: int
    system: int
    idle: int
    nice: int = 0

    def as_counters(self) -> dict[str, int]:
        return {"user": self.user, "system": self.system, "idle": self.idle, "nice": self.nice}


@dataclass(frozen=True)
class NetworkBytes:
    """Cumulative byte counters for one interface."""

    ibytes: int
    obytes: int

    def as_counters(self) -> dict[str, int]:
        return {"ibytes": self.ibytes, "obytes": self.obytes}


@dataclass(frozen=True)
class MemoryReading:
    """Point-in-time memory usage in bytes."""

    used_bytes: int
    total_bytes: int


class CounterSource(Protocol):
    """Read capability for every raw counter the samplers consume."""

    def read_cpu(self) -> CpuTicks | None: ...

    def read_cores(self) -> list[CpuTicks] | None: ...

    def read_network(self, interface: str) -> NetworkBytes | None: ...

    def read_memory(self) -> MemoryReading | None: ...

    def read_gpu_utilization(self) -> int: ...

    def read_temperatures(self) -> tuple[int, int]: ...

    def list_pids(self) -> list[int]: ...

    def process_name(self, pid: int) -> str | None: ...

    def process_gpu_time(self, pid: int) -> int | None: ...

    def has_interface(self, interface: str) -> bool: ...

    def primary_interface(self) -> str | None: ...

    def close(self) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Primary interface resolution
# ─────────────────────────────────────────────────────────────────────────────

_ROUTE_INTERFACE = re.compile(r"^\s*interface:\s*(\S+)", re.MULTILINE)


def parse_route_interface(output: str) -> str | None:
    """Extract the interface name from `route -n get default` output."""
    match = _ROUTE_INTERFACE.search(output)
    return match.group(1) if match else None


def resolve_primary_interface() -> str | None:
    """Return the interface carrying the default route, or None."""
    try:
        result = subprocess.run(
            ["/sbin/route", "-n", "get", "default"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        log.debug("route_lookup_failed", error=str(e))
        return None
    if result.returncode != 0:
        return None
    return parse_route_interface(result.stdout)


# ─────────────────────────────────────────────────────────────────────────────
# macOS
# ─────────────────────────────────────────────────────────────────────────────


class MacCounterSource:
    """Native macOS counters.

    Owns the host port and the HID thermal client for the lifetime of the
    sampler; release them with close() (or use as a context manager).
    """

    def __init__(self) -> None:
        # Native bindings are loaded lazily so the package imports off macOS
        from bar_stats import mach
        from bar_stats.iokit import ThermalSensors

        self._mach = mach
        self._host = mach.host_self()
        self._thermal = ThermalSensors()
        self._page_size: int | None = None
        self._gpu_usage: dict[int, int] = {}

    def __enter__(self) -> MacCounterSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def read_cpu(self) -> CpuTicks | None:
        ticks = self._mach.get_cpu_load(self._host)
        if ticks is None:
            log.debug("cpu_read_failed")
            return None
        return CpuTicks(*ticks)

    def read_cores(self) -> list[CpuTicks] | None:
        cores = self._mach.get_core_loads(self._host)
        if cores is None:
            log.debug("core_read_failed")
            return None
        return [CpuTicks(*ticks) for ticks in cores]

    def read_network(self, interface: str) -> NetworkBytes | None:
        from bar_stats.sysctl import get_interface_data

        try:
            row = socket.if_nametoindex(interface)
        except OSError:
            return None
        data = get_interface_data(row)
        if data is None:
            return None
        return NetworkBytes(ibytes=data.ifmd_data.ifi_ibytes, obytes=data.ifmd_data.ifi_obytes)

    def read_memory(self) -> MemoryReading | None:
        from bar_stats.sysctl import sysctl_int

        total = sysctl_int("hw.memsize")
        if total is None:
            return None
        vmstat = self._mach.get_vm_statistics(self._host)
        if vmstat is None:
            return None
        if self._page_size is None:
            self._page_size = self._mach.get_page_size(self._host)
            if self._page_size is None:
                return None
        used_pages = vmstat.active_count + vmstat.wire_count + vmstat.compressor_page_count
        return MemoryReading(used_bytes=used_pages * self._page_size, total_bytes=total)

    def read_gpu_utilization(self) -> int:
        from bar_stats.iokit import get_gpu_utilization

        return get_gpu_utilization()

    def read_temperatures(self) -> tuple[int, int]:
        return self._thermal.read()

    def list_pids(self) -> list[int]:
        """List PIDs and refresh the per-process GPU table (one registry scan per call)."""
        from bar_stats.iokit import get_gpu_usage
        from bar_stats.libproc import list_all_pids

        self._gpu_usage = get_gpu_usage()
        return list_all_pids()

    def process_name(self, pid: int) -> str | None:
        from bar_stats.libproc import get_process_name

        return get_process_name(pid) or None

    def process_gpu_time(self, pid: int) -> int | None:
        return self._gpu_usage.get(pid)

    def has_interface(self, interface: str) -> bool:
        try:
            socket.if_nametoindex(interface)
        except OSError:
            return False
        return True

    def primary_interface(self) -> str | None:
        return resolve_primary_interface()

    def close(self) -> None:
        self._thermal.close()
        if self._host:
            self._mach.release_port(self._host)
            self._host = 0


# ─────────────────────────────────────────────────────────────────────────────
# psutil
# ─────────────────────────────────────────────────────────────────────────────

# psutil reports CPU times in seconds; scale to 100 Hz ticks
TICKS_PER_SECOND = 100

_CPU_SENSOR_GROUPS = ("coretemp", "k10temp", "cpu_thermal", "zenpower")
_GPU_SENSOR_GROUPS = ("amdgpu", "nouveau", "radeon")


def _ticks(cpu_times: object) -> CpuTicks:
    def scaled(name: str) -> int:
        return int(getattr(cpu_times, name, 0.0) * TICKS_PER_SECOND)

    return CpuTicks(
        user=scaled("user"),
        system=scaled("system"),
        idle=scaled("idle"),
        nice=scaled("nice"),
    )


class PsutilCounterSource:
    """Portable counters via psutil.

    Device GPU utilization and per-process GPU time are not available
    through psutil and always report as unavailable.
    """

    def __enter__(self) -> PsutilCounterSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def read_cpu(self) -> CpuTicks | None:
        try:
            return _ticks(psutil.cpu_times())
        except OSError as e:
            log.debug("cpu_read_failed", error=str(e))
            return None

    def read_cores(self) -> list[CpuTicks] | None:
        try:
            return [_ticks(t) for t in psutil.cpu_times(percpu=True)]
        except OSError as e:
            log.debug("core_read_failed", error=str(e))
            return None

    def read_network(self, interface: str) -> NetworkBytes | None:
        try:
            counters = psutil.net_io_counters(pernic=True).get(interface)
        except OSError:
            return None
        if counters is None:
            return None
        return NetworkBytes(ibytes=counters.bytes_recv, obytes=counters.bytes_sent)

    def read_memory(self) -> MemoryReading | None:
        try:
            mem = psutil.virtual_memory()
        except OSError:
            return None
        return MemoryReading(used_bytes=mem.used, total_bytes=mem.total)

    def read_gpu_utilization(self) -> int:
        return UNAVAILABLE

    def read_temperatures(self) -> tuple[int, int]:
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return UNAVAILABLE, UNAVAILABLE
        try:
            groups = sensors()
        except OSError:
            return UNAVAILABLE, UNAVAILABLE

        cpu = [t.current for name in _CPU_SENSOR_GROUPS for t in groups.get(name, [])]
        gpu = [t.current for name in _GPU_SENSOR_GROUPS for t in groups.get(name, [])]
        cpu = [c for c in cpu if c and c > 0]
        gpu = [g for g in gpu if g and g > 0]
        cpu_temp = round(sum(cpu) / len(cpu)) if cpu else UNAVAILABLE
        gpu_temp = round(max(gpu)) if gpu else UNAVAILABLE
        return cpu_temp, gpu_temp

    def list_pids(self) -> list[int]:
        return [pid for pid in psutil.pids() if pid > 0]

    def process_name(self, pid: int) -> str | None:
        try:
            return psutil.Process(pid).name() or None
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

    def process_gpu_time(self, pid: int) -> int | None:
        return None

    def has_interface(self, interface: str) -> bool:
        return interface in psutil.net_if_stats()

    def primary_interface(self) -> str | None:
        """Pick the first up, non-loopback interface (psutil has no routing table)."""
        stats = psutil.net_if_stats()
        for name in sorted(stats):
            if stats[name].isup and not name.startswith("lo"):
                return name
        return None

    def close(self) -> None:
        pass


def default_source() -> CounterSource:
    """Return the native source on macOS, the psutil source elsewhere."""
    if sys.platform == "darwin":
        return MacCounterSource()
    return PsutilCounterSource()
