"""SketchyBar event bus client.

Delivery is synchronous and best-effort: the call blocks until the
sketchybar process exits, with no timeout, and failures are logged rather
than raised so a missing or busy bar never stops the sampler.
"""

from __future__ import annotations

import shlex
import subprocess

import structlog

from bar_stats.formatting import format_add_event

log = structlog.get_logger()

DEFAULT_BINARY = "sketchybar"


class EventBus:
    """Hands formatted messages to the sketchybar binary."""

    def __init__(self, binary: str = DEFAULT_BINARY) -> None:
        self.binary = binary
        self.delivered = 0
        self.failed = 0

    def register(self, event: str) -> bool:
        """Declare a custom event so later triggers are accepted."""
        log.info("event_registered", event_name=event)
        return self.deliver(format_add_event(event))

    def deliver(self, message: str) -> bool:
        try:
            args = shlex.split(message)
        except ValueError as e:
            log.warning("message_unparseable", error=str(e), length=len(message))
            self.failed += 1
            return False

        try:
            completed = subprocess.run(
                [self.binary, *args],
                stdin=subprocess.DEVNULL,
                capture_output=True,
            )
        except FileNotFoundError:
            log.warning("bus_unavailable", binary=self.binary)
            self.failed += 1
            return False
        except OSError as e:
            log.warning("bus_delivery_failed", binary=self.binary, error=str(e))
            self.failed += 1
            return False

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            log.warning("bus_rejected", returncode=completed.returncode, stderr=stderr)
            self.failed += 1
            return False

        self.delivered += 1
        return True
