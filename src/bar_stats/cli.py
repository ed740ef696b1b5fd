"""CLI commands for bar-stats."""

import click


def _load_config():
    """Load config, exiting with status 1 on invalid values."""
    from bar_stats.config import Config, ConfigError

    try:
        return Config.load()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def _parse_interval(ctx: click.Context, value: str | None) -> float:
    """Parse INTERVAL, printing usage to stderr and exiting 1 if missing or unusable."""
    from bar_stats.config import ConfigError, validate_interval

    if value is None:
        click.echo(ctx.get_usage(), err=True)
        click.echo("Error: Missing argument 'INTERVAL'.", err=True)
        raise SystemExit(1)
    try:
        return validate_interval(value)
    except ConfigError as e:
        click.echo(ctx.get_usage(), err=True)
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def _run(sampler, config) -> None:
    """Configure logging and run a sampler until it is signalled."""
    import asyncio

    from bar_stats.logging import configure
    from bar_stats.sampler import run_sampler

    configure(config, source=sampler.kind)
    asyncio.run(run_sampler(sampler))


@click.group()
@click.version_option(package_name="bar-stats")
def main() -> None:
    """Feed macOS system telemetry to SketchyBar."""
    pass


# Negative intervals must reach _parse_interval rather than parse as options
_POSITIONAL_NUMBERS = {"ignore_unknown_options": True}


@main.command("system-stats", context_settings=_POSITIONAL_NUMBERS)
@click.argument("event")
@click.argument("interval", required=False)
@click.pass_context
def system_stats(ctx, event: str, interval: str | None) -> None:
    """Emit CPU, memory, GPU and temperature stats as EVENT every INTERVAL seconds."""
    from bar_stats.bus import EventBus
    from bar_stats.counters import default_source
    from bar_stats.sampler import SystemStatsSampler

    seconds = _parse_interval(ctx, interval)
    config = _load_config()

    source = default_source()
    sampler = SystemStatsSampler(event, seconds, source, EventBus(config.bus.binary), config)
    _run(sampler, config)


@main.command("network-load", context_settings=_POSITIONAL_NUMBERS)
@click.argument("interface")
@click.argument("event")
@click.argument("interval", required=False)
@click.pass_context
def network_load(ctx, interface: str, event: str, interval: str | None) -> None:
    """Emit upload/download Mbps for INTERFACE as EVENT every INTERVAL seconds.

    INTERFACE may be "auto" (or "default") to follow the primary interface.
    """
    from bar_stats.bus import EventBus
    from bar_stats.counters import default_source
    from bar_stats.sampler import AUTO_INTERFACES, NetworkLoadSampler

    seconds = _parse_interval(ctx, interval)
    config = _load_config()

    source = default_source()
    if interface in AUTO_INTERFACES:
        if source.primary_interface() is None:
            source.close()
            click.echo("Error: Failed to resolve primary interface", err=True)
            raise SystemExit(1)
    elif not source.has_interface(interface):
        source.close()
        click.echo(f"Error: Interface not found: {interface}", err=True)
        raise SystemExit(1)

    sampler = NetworkLoadSampler(
        interface, event, seconds, source, EventBus(config.bus.binary), config
    )
    _run(sampler, config)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[sampler]")
    click.echo(f"  heartbeat_ticks = {cfg.sampler.heartbeat_ticks}")
    click.echo(f"  stale_after = {cfg.sampler.stale_after}")
    click.echo(f"  max_cores = {cfg.sampler.max_cores}")
    click.echo(f"  top_k = {cfg.sampler.top_k}")
    click.echo(f"  message_capacity = {cfg.sampler.message_capacity}")
    click.echo(f"  procs_capacity = {cfg.sampler.procs_capacity}")
    click.echo(f"  core_loads_capacity = {cfg.sampler.core_loads_capacity}")
    click.echo()
    click.echo("[bus]")
    click.echo(f"  binary = {cfg.bus.binary}")
    click.echo()
    click.echo("[logging]")
    click.echo(f"  log_max_bytes = {cfg.logging.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.logging.log_backup_count}")
    click.echo(f"  log_path = {cfg.log_path}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    cfg = _load_config()

    # Create config if it doesn't exist
    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from bar_stats.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
