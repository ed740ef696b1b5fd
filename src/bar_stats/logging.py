"""Console and file logging for the samplers.

Two outputs, kept apart:
- the console: short Rich-marked lines for a human watching the sampler
  (timestamp, level tag, optional icon)
- the log file: structlog events rendered as JSON Lines into a rotating
  file under the state directory

Module code logs events with ``structlog.get_logger()`` and calls the
console helpers below for the handful of lifecycle moments worth seeing.
"""

from __future__ import annotations

import logging
import logging.handlers
import time
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from bar_stats.config import Config

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Rich-markup glyphs shown after the level tag."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    HEARTBEAT = "[magenta]♡[/]"
    SIGNAL = "⚡"
    NETWORK = "[cyan]⇅[/]"
    DISCONNECTED = "[red]⬤[/]"


_LEVEL_TAGS = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Console
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print one console line: ``HH:MM:SS [level] icon msg``."""
    tag = _LEVEL_TAGS.get(level, f"\\[{level}]")
    prefix = f"{tag} {icon}" if icon else tag
    _console.print(f"[dim]{time.strftime('%H:%M:%S')}[/] {prefix} {msg}")


def info(msg: str, icon: str = "") -> None:
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    log("error", msg, icon)


def sampler_started(kind: str, event: str, interval: float) -> None:
    info(f"[bold]{kind}[/] sampler started [dim](event {event}, every {interval}s)[/]", Icon.OK)


def sampler_stopping() -> None:
    info("Sampler stopping...", Icon.WAIT)


def sampler_stopped() -> None:
    info("Sampler stopped", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def heartbeat(ticks: int, message_length: int, delivered: int, failed: int) -> None:
    """Periodic liveness line with delivery counts since startup."""
    info(
        f"[cyan]{ticks}[/] ticks, "
        f"[dim]last message {message_length} bytes, "
        f"{delivered} delivered, {failed} failed[/]",
        Icon.HEARTBEAT,
    )


def tick_failed(error_msg: str) -> None:
    error(f"Tick failed: {error_msg}", Icon.FAIL)


def bus_unavailable(binary: str) -> None:
    warn(f"Event bus [cyan]{binary}[/] not found, messages will be dropped", Icon.DISCONNECTED)


def interface_changed(old: str | None, new: str) -> None:
    info(f"Interface [dim]{old or 'none'}[/] → [cyan]{new}[/]", Icon.NETWORK)


# ─────────────────────────────────────────────────────────────────────────────
# Log file
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Tag every record with the sampler that wrote it."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def _shared_chain(source: str) -> list[structlog.types.Processor]:
    # Applied to structlog events and to plain stdlib records alike
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source(source),
    ]


def configure(config: Config, source: str = "sampler") -> None:
    """Route structlog and stdlib logging into the rotating JSON Lines file.

    Records below INFO are dropped. Console output is not touched; it goes
    through the Rich helpers above.
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.log_max_bytes,
        backupCount=config.logging.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[*_shared_chain(source), structlog.processors.format_exc_info],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_chain(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog() -> structlog.stdlib.BoundLogger:
    return structlog.get_logger()
