"""Telemetry message formatting for the status bar.

Messages are SketchyBar argument strings: a command flag, the quoted event
name and a fixed, ordered list of key='value' tokens. Values are quoted
for shlex so the bus can split them back into argv.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from bar_stats.rates import CpuLoad

log = structlog.get_logger()

MESSAGE_CAPACITY = 8192
NETWORK_CAPACITY = 512
GIB = 1024**3
UNAVAILABLE = -1

_ESCAPED_QUOTE = "'\\''"


def quote(value: object) -> str:
    """Single-quote a value, escaping embedded quotes shell-style."""
    return "'" + str(value).replace("'", _ESCAPED_QUOTE) + "'"


def _size(text: str) -> int:
    return len(text.encode())


def clip_quoted(value: str, room: int) -> str:
    """Longest prefix of value whose quoted body fits in room UTF-8 bytes.

    Never splits a character or an escaped quote.
    """
    used = 0
    for i, ch in enumerate(value):
        used += len(_ESCAPED_QUOTE) if ch == "'" else _size(ch)
        if used > room:
            return value[:i]
    return value


def bounded_message(
    command: str, event: str, pairs: list[tuple[str, object]], capacity: int
) -> str:
    """Assemble ``command 'event' key='value' ...`` within capacity - 1 bytes.

    Tokens are added whole while they fit. The first token that does not
    fit has its value clipped inside its quotes, and everything after it is
    dropped, so the result always splits cleanly with shlex.
    """
    limit = capacity - 1
    tokens = [("", event), *((f"{key}=", value) for key, value in pairs)]
    message = command
    for i, (prefix, value) in enumerate(tokens):
        token = f" {prefix}{quote(value)}"
        if _size(message) + _size(token) <= limit:
            message += token
            continue
        room = limit - _size(message) - _size(f" {prefix}''")
        if room >= 0:
            message += f" {prefix}{quote(clip_quoted(str(value), room))}"
        log.debug(
            "message_truncated",
            length=_size(message),
            capacity=capacity,
            dropped=len(tokens) - i - 1,
        )
        break
    return message


@dataclass
class SystemStats:
    """Everything one system-stats message carries.

    Memory fields are None when the memory read failed; other unavailable
    numerics are -1.
    """

    cpu: CpuLoad
    core_loads: str = ""
    ncores: int = 0
    mem_used_bytes: int | None = None
    mem_total_bytes: int | None = None
    mem_used_percent: int = UNAVAILABLE
    gpu_util: int = UNAVAILABLE
    cpu_temp: int = UNAVAILABLE
    gpu_temp: int = UNAVAILABLE
    gpu_procs: str = ""

    @property
    def memory_available(self) -> bool:
        return self.mem_used_bytes is not None and self.mem_total_bytes is not None


def format_system_stats(event: str, stats: SystemStats, capacity: int = MESSAGE_CAPACITY) -> str:
    """Build the system-stats trigger message."""
    if stats.memory_available:
        mem = [
            ("mem_used_percent", stats.mem_used_percent),
            ("mem_used_bytes", stats.mem_used_bytes),
            ("mem_total_bytes", stats.mem_total_bytes),
            ("mem_used_gb", f"{stats.mem_used_bytes / GIB:.1f}"),
            ("mem_total_gb", f"{stats.mem_total_bytes / GIB:.0f}"),
        ]
    else:
        mem = [
            ("mem_used_percent", UNAVAILABLE),
            ("mem_used_bytes", 0),
            ("mem_total_bytes", 0),
            ("mem_used_gb", "0.0"),
            ("mem_total_gb", "0"),
        ]

    pairs: list[tuple[str, object]] = [
        ("cpu_user", stats.cpu.user),
        ("cpu_sys", stats.cpu.system),
        ("cpu_total", stats.cpu.total),
        ("cpu_ncores", stats.ncores),
        ("cpu_core_loads", stats.core_loads),
        *mem,
        ("gpu_util", stats.gpu_util),
        ("cpu_temp", stats.cpu_temp),
        ("gpu_temp", stats.gpu_temp),
        ("gpu_procs", stats.gpu_procs),
    ]
    return bounded_message("--trigger", event, pairs, capacity)


def format_network_load(
    event: str, upload_mbps: float, download_mbps: float, capacity: int = NETWORK_CAPACITY
) -> str:
    """Build the network-load trigger message (Mbps, two decimals)."""
    pairs = [("upload", f"{upload_mbps:.2f}"), ("download", f"{download_mbps:.2f}")]
    return bounded_message("--trigger", event, pairs, capacity)


def format_add_event(event: str) -> str:
    return f"--add event {quote(event)}"
