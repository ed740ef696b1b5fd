"""Sampling loop drivers.

Each sampler owns its snapshot buffers and runs one tick at a time:
sample every metric in sequence, derive rates, format one message, hand it
to the event bus, then sleep for the interval. Ticks run in the default
executor so blocking OS reads never stall the event loop, and the next
tick is not scheduled until the previous message has been delivered.
"""

from __future__ import annotations

import asyncio
import signal
import threading
import time
from collections.abc import Callable

import structlog

from bar_stats import logging as console
from bar_stats.bus import EventBus
from bar_stats.config import Config
from bar_stats.cores import CoreLoadTracker
from bar_stats.counters import CounterSource, MetricSource
from bar_stats.formatting import (
    UNAVAILABLE,
    SystemStats,
    format_network_load,
    format_system_stats,
)
from bar_stats.ranker import BoundedBuffer, rank, serialize
from bar_stats.rates import (
    CPU_IDLE,
    CPU_UNAVAILABLE,
    CpuLoad,
    RateHolder,
    clamp_percent,
    cpu_percentages,
    throughput_mbps,
)
from bar_stats.snapshot import CounterDelta, SnapshotStore

log = structlog.get_logger()

AUTO_INTERFACES = frozenset({"auto", "default"})


class Sampler:
    """Base driver: tick/deliver/sleep loop with signal-driven shutdown."""

    kind = "sampler"

    def __init__(
        self,
        event: str,
        interval: float,
        source: CounterSource,
        bus: EventBus,
        config: Config | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.event = event
        self.interval = interval
        self.source = source
        self.bus = bus
        self.config = config or Config()
        self.snapshots = SnapshotStore(clock=clock, stale_after=self.config.sampler.stale_after)

        self.ticks = 0
        self.delivered = 0
        self.failed = 0
        self.last_message = ""

        self._shutdown_event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    def tick(self) -> str:
        """Sample, compute and format one message."""
        raise NotImplementedError

    def _tick(self) -> str:
        # Exactly one tick mutates the snapshot buffers at a time
        with self._lock:
            return self.tick()

    def stop(self) -> None:
        """Request shutdown. Safe to call from any thread."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
        else:
            self._shutdown_event.set()

    def close(self) -> None:
        """Release the counter source."""
        self.source.close()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    def _record(self, message: str, ok: bool) -> None:
        self.ticks += 1
        self.last_message = message
        if ok:
            self.delivered += 1
        else:
            self.failed += 1

        heartbeat_ticks = self.config.sampler.heartbeat_ticks
        if self.ticks % heartbeat_ticks == 0:
            log.info(
                "sampler_heartbeat",
                kind=self.kind,
                ticks=self.ticks,
                message_length=len(message),
                delivered=self.delivered,
                failed=self.failed,
            )
            console.heartbeat(self.ticks, len(message), self.delivered, self.failed)

    async def run(self) -> None:
        """Register the event, then tick until SIGTERM/SIGINT or stop()."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        try:
            if not await loop.run_in_executor(None, self.bus.register, self.event):
                console.bus_unavailable(self.bus.binary)
            log.info(
                "sampler_started", kind=self.kind, event_name=self.event, interval=self.interval
            )
            console.sampler_started(self.kind, self.event, self.interval)

            while not self._shutdown_event.is_set():
                try:
                    message = await loop.run_in_executor(None, self._tick)
                    ok = await loop.run_in_executor(None, self.bus.deliver, message)
                    self._record(message, ok)
                except asyncio.CancelledError:
                    log.info("sampler_cancelled", kind=self.kind)
                    break
                except Exception as e:
                    log.error("tick_failed", kind=self.kind, error=str(e))
                    console.tick_failed(str(e))

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
                    break  # Shutdown requested during sleep
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue to next tick
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            self._loop = None


# ─────────────────────────────────────────────────────────────────────────────
# System stats
# ─────────────────────────────────────────────────────────────────────────────


class SystemStatsSampler(Sampler):
    """CPU, per-core, memory, GPU, temperature and GPU-process telemetry."""

    kind = "system-stats"

    def __init__(
        self,
        event: str,
        interval: float,
        source: CounterSource,
        bus: EventBus,
        config: Config | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(event, interval, source, bus, config, clock)
        sampler = self.config.sampler
        self.cores = CoreLoadTracker(
            max_cores=sampler.max_cores, clock=clock, stale_after=sampler.stale_after
        )
        self._cpu = RateHolder("cpu", "%", initial=CPU_IDLE, stale_after=sampler.stale_after)

    def sample_cpu(self) -> CpuLoad:
        reading = self.source.read_cpu()
        if reading is None:
            return CPU_UNAVAILABLE
        delta = self.snapshots.update(MetricSource.CPU_AGGREGATE, reading.as_counters())
        if delta is None:
            return self._cpu.update(None, None).value
        return self._cpu.update(cpu_percentages(delta.deltas), delta.elapsed).value

    def sample_cores(self) -> str:
        self.cores.update(self.source.read_cores())
        buffer = BoundedBuffer(self.config.sampler.core_loads_capacity, ",")
        buffer.extend(str(load) for load in self.cores.loads)
        return str(buffer)

    def sample_gpu_processes(self) -> str:
        sampler = self.config.sampler
        top = rank(
            self.source.list_pids(),
            self.source.process_gpu_time,
            self.source.process_name,
            k=sampler.top_k,
        )
        return serialize(top, capacity=sampler.procs_capacity)

    def tick(self) -> str:
        cpu = self.sample_cpu()
        core_loads = self.sample_cores()

        stats = SystemStats(cpu=cpu, core_loads=core_loads, ncores=self.cores.ncores)

        memory = self.source.read_memory()
        if memory is not None and memory.total_bytes > 0:
            stats.mem_used_bytes = memory.used_bytes
            stats.mem_total_bytes = memory.total_bytes
            stats.mem_used_percent = clamp_percent(memory.used_bytes / memory.total_bytes * 100)

        stats.gpu_util = self.source.read_gpu_utilization()
        stats.cpu_temp, stats.gpu_temp = self.source.read_temperatures()
        stats.gpu_procs = self.sample_gpu_processes()

        return format_system_stats(self.event, stats, self.config.sampler.message_capacity)


# ─────────────────────────────────────────────────────────────────────────────
# Network load
# ─────────────────────────────────────────────────────────────────────────────


class NetworkLoadSampler(Sampler):
    """Upload/download Mbps for one interface, or the primary one in auto mode."""

    kind = "network-load"

    def __init__(
        self,
        interface: str,
        event: str,
        interval: float,
        source: CounterSource,
        bus: EventBus,
        config: Config | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(event, interval, source, bus, config, clock)
        self.auto = interface in AUTO_INTERFACES
        self.interface: str | None = None if self.auto else interface
        stale_after = self.config.sampler.stale_after
        self._upload = RateHolder("upload", "Mbps", stale_after=stale_after)
        self._download = RateHolder("download", "Mbps", stale_after=stale_after)

    def resolve_interface(self) -> str | None:
        """Follow the primary interface in auto mode; reset the baseline on change."""
        if not self.auto:
            return self.interface
        current = self.source.primary_interface()
        if current is None or current == self.interface:
            return self.interface
        log.info("interface_changed", old=self.interface, new=current)
        console.interface_changed(self.interface, current)
        self.interface = current
        self.snapshots.reset(MetricSource.NETWORK_INTERFACE)
        self._upload.reset()
        self._download.reset()
        return current

    def sample_throughput(self) -> tuple[float, float]:
        interface = self.resolve_interface()
        if interface is None:
            return UNAVAILABLE, UNAVAILABLE
        reading = self.source.read_network(interface)
        if reading is None:
            log.debug("network_read_failed", interface=interface)
            return UNAVAILABLE, UNAVAILABLE
        delta = self.snapshots.update(MetricSource.NETWORK_INTERFACE, reading.as_counters())
        upload = self._rate(self._upload, delta, "obytes")
        download = self._rate(self._download, delta, "ibytes")
        return upload, download

    @staticmethod
    def _rate(holder: RateHolder, delta: CounterDelta | None, category: str) -> float:
        if delta is None:
            return holder.update(None, None).value
        return holder.update(throughput_mbps(delta[category], delta.elapsed), delta.elapsed).value

    def tick(self) -> str:
        upload, download = self.sample_throughput()
        return format_network_load(self.event, upload, download)


# ─────────────────────────────────────────────────────────────────────────────
# Entry points
# ─────────────────────────────────────────────────────────────────────────────


async def run_sampler(sampler: Sampler) -> None:
    """Run a sampler until shutdown, then release its counter source."""
    try:
        await sampler.run()
    except Exception as e:
        log.exception("sampler_crashed", kind=sampler.kind, error=str(e))
        raise
    finally:
        console.sampler_stopping()
        sampler.close()
        log.info("sampler_stopped", kind=sampler.kind)
        console.sampler_stopped()
