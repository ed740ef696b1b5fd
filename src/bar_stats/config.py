"""Configuration system for bar-stats."""

import math
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


class ConfigError(ValueError):
    """Raised when the config file cannot be parsed or holds invalid values."""


@dataclass
class SamplerConfig:
    """Sampling loop configuration."""

    heartbeat_ticks: int = 300  # Log heartbeat every N ticks
    stale_after: float = 100.0  # Elapsed seconds beyond which a delta is stale
    max_cores: int = 32  # Per-core slots tracked
    top_k: int = 10  # Processes in the ranked GPU list
    # Message buffer ceilings (bytes)
    message_capacity: int = 8192
    procs_capacity: int = 2048
    core_loads_capacity: int = 512


@dataclass
class BusConfig:
    """Event bus configuration."""

    binary: str = "sketchybar"  # Resolved through PATH unless absolute


@dataclass
class LoggingConfig:
    """Log file rotation."""

    log_max_bytes: int = 1024 * 1024  # Max log file size (1MB)
    log_backup_count: int = 2  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def validate_interval(value: float | str, name: str = "interval") -> float:
    """Return value as float if it is finite and positive, else raise ConfigError."""
    try:
        interval = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(interval) or interval <= 0:
        raise ConfigError(f"{name} must be a positive finite number, got {value!r}")
    return interval


@dataclass
class Config:
    """Main configuration container."""

    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    bus: BusConfig = field(default_factory=BusConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "bar-stats"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "bar-stats"

    @property
    def log_path(self) -> Path:
        """Sampler log path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "sampler.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampler", "bus", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        bus_data = data.get("bus", {})
        logging_data = data.get("logging", {})

        b = defaults.bus
        lg = defaults.logging

        config = cls(
            sampler=_load_sampler_config(data.get("sampler", {})),
            bus=BusConfig(binary=str(bus_data.get("binary", b.binary))),
            logging=LoggingConfig(
                log_max_bytes=logging_data.get("log_max_bytes", lg.log_max_bytes),
                log_backup_count=logging_data.get("log_backup_count", lg.log_backup_count),
            ),
        )
        if config.logging.log_max_bytes < 1:
            raise ConfigError(f"log_max_bytes must be >= 1, got {config.logging.log_max_bytes}")
        if config.logging.log_backup_count < 0:
            raise ConfigError(
                f"log_backup_count must be >= 0, got {config.logging.log_backup_count}"
            )
        return config


def _load_sampler_config(data: dict) -> SamplerConfig:
    """Load sampler config from TOML data, using dataclass defaults for missing fields."""
    d = SamplerConfig()
    config = SamplerConfig(
        heartbeat_ticks=data.get("heartbeat_ticks", d.heartbeat_ticks),
        stale_after=validate_interval(data.get("stale_after", d.stale_after), "stale_after"),
        max_cores=data.get("max_cores", d.max_cores),
        top_k=data.get("top_k", d.top_k),
        message_capacity=data.get("message_capacity", d.message_capacity),
        procs_capacity=data.get("procs_capacity", d.procs_capacity),
        core_loads_capacity=data.get("core_loads_capacity", d.core_loads_capacity),
    )

    for name in (
        "heartbeat_ticks",
        "max_cores",
        "top_k",
        "message_capacity",
        "procs_capacity",
        "core_loads_capacity",
    ):
        value = getattr(config, name)
        if not isinstance(value, int) or value < 1:
            raise ConfigError(f"{name} must be an integer >= 1, got {value!r}")
    return config
