"""Tests for configuration system."""

from pathlib import Path

import pytest

from bar_stats.config import (
    BusConfig,
    Config,
    ConfigError,
    LoggingConfig,
    SamplerConfig,
    validate_interval,
)


def test_sampler_config_defaults():
    """SamplerConfig has correct defaults."""
    config = SamplerConfig()
    assert config.stale_after == 100.0
    assert config.max_cores == 32
    assert config.top_k == 10
    assert config.message_capacity == 8192
    assert config.procs_capacity == 2048
    assert config.core_loads_capacity == 512


def test_bus_and_logging_defaults():
    """BusConfig and LoggingConfig have correct defaults."""
    assert BusConfig().binary == "sketchybar"
    assert LoggingConfig().log_backup_count == 2


def test_config_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Config paths live under the user's home directory."""
    monkeypatch.setenv("HOME", str(tmp_path))
    config = Config()
    assert config.config_path == tmp_path / ".config" / "bar-stats" / "config.toml"
    assert config.log_path == tmp_path / ".local" / "state" / "bar-stats" / "sampler.log"


def test_load_missing_file_returns_defaults(tmp_path: Path):
    """Missing config file yields the dataclass defaults."""
    assert Config.load(tmp_path / "nope.toml") == Config()


def test_save_load_roundtrip(tmp_path: Path):
    """Saved config loads back identically."""
    path = tmp_path / "config.toml"
    config = Config(
        sampler=SamplerConfig(heartbeat_ticks=10, stale_after=30.0, top_k=5),
        bus=BusConfig(binary="/opt/homebrew/bin/sketchybar"),
        logging=LoggingConfig(log_max_bytes=2048, log_backup_count=0),
    )
    config.save(path)

    loaded = Config.load(path)
    assert loaded == config


def test_partial_file_uses_defaults(tmp_path: Path):
    """Keys missing from the file fall back to defaults."""
    path = tmp_path / "config.toml"
    path.write_text("[sampler]\ntop_k = 3\n")

    loaded = Config.load(path)
    assert loaded.sampler.top_k == 3
    assert loaded.sampler.max_cores == 32
    assert loaded.bus.binary == "sketchybar"


def test_save_creates_parent_dirs(tmp_path: Path):
    """save() creates missing directories."""
    path = tmp_path / "a" / "b" / "config.toml"
    Config().save(path)
    assert path.exists()
    assert "[sampler]" in path.read_text()


@pytest.mark.parametrize(
    "body",
    [
        "[sampler]\ntop_k = 0\n",
        "[sampler]\nheartbeat_ticks = -1\n",
        "[sampler]\nmessage_capacity = 'big'\n",
        "[sampler]\nstale_after = 'soon'\n",
        "[sampler]\nstale_after = -5.0\n",
        "[logging]\nlog_max_bytes = 0\n",
        "[logging]\nlog_backup_count = -1\n",
    ],
)
def test_invalid_values_raise(tmp_path: Path, body: str):
    """Out-of-range values raise ConfigError."""
    path = tmp_path / "config.toml"
    path.write_text(body)
    with pytest.raises(ConfigError):
        Config.load(path)


def test_unparseable_file_raises(tmp_path: Path):
    """Malformed TOML raises ConfigError, which is a ValueError."""
    path = tmp_path / "config.toml"
    path.write_text("[sampler\n")
    with pytest.raises(ValueError, match="Failed to parse"):
        Config.load(path)


class TestValidateInterval:
    """Interval parsing shared by the CLI and config."""

    @pytest.mark.parametrize("value", ["0.5", "2", 1, 0.25])
    def test_valid(self, value) -> None:
        assert validate_interval(value) == float(value)

    @pytest.mark.parametrize("value", ["abc", "", "0", "-1", "nan", "inf", None])
    def test_invalid(self, value) -> None:
        with pytest.raises(ConfigError):
            validate_interval(value)
