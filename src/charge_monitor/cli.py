"""CLI commands for charge-monitor."""

import click

STOP_CONFIRM_PROMPT = "Stop charging? Any unused amount will be refunded to your wallet."


@click.group()
@click.version_option()
def main() -> None:
    """Monitor and stop live EV charging sessions."""
    pass


def _backend_client(cfg):
    from charge_monitor.backend import BackendClient

    return BackendClient(
        cfg.backend.base_url,
        token=cfg.backend.token,
        timeout=cfg.backend.request_timeout,
    )


@main.command()
@click.option("--station-id", default=None, help="Station to return to when the session ends")
@click.option("--station-name", default=None, help="Display name of that station")
@click.option("--customer-id", default=None, help="Customer whose push notifications to follow")
def monitor(station_id: str | None, station_name: str | None, customer_id: str | None) -> None:
    """Watch the active charging session live."""
    from charge_monitor import logging as cli_log
    from charge_monitor.config import Config
    from charge_monitor.models import Destination, TerminationEvent
    from charge_monitor.tui import run_tui

    cfg = Config.load()
    cli_log.configure(cfg)
    if not cfg.config_path.exists():
        cfg.save()
        cli_log.config_created(str(cfg.config_path))

    result = run_tui(
        cfg,
        customer_id=customer_id,
        fallback=Destination.fallback(station_id, station_name),
    )

    if isinstance(result, TerminationEvent):
        reason = result.reason.value
        if result.refund_amount:
            from charge_monitor.formatting import format_cost

            refund = format_cost(result.refund_amount, cfg.tui.currency_symbol)
            reason = f"{reason}, refund {refund}"
        cli_log.monitor_exited(result.destination.describe(), reason)
    elif isinstance(result, Destination):
        cli_log.no_active_session()
        cli_log.monitor_exited(result.describe())
    else:
        cli_log.info("Monitor closed; the session keeps charging")


@main.command()
def status() -> None:
    """Show the active charging session."""
    import asyncio

    from charge_monitor import logging as cli_log
    from charge_monitor.backend import BackendError
    from charge_monitor.config import Config

    cfg = Config.load()
    cli_log.configure(cfg)

    async def fetch():
        async with _backend_client(cfg) as client:
            return await client.fetch_active_session()

    try:
        snapshot = asyncio.run(fetch())
    except BackendError as e:
        cli_log.backend_failed(str(e))
        raise SystemExit(1)

    if snapshot is None:
        cli_log.no_active_session()
        return
    cli_log.session_summary(snapshot, cfg.tui.currency_symbol)


@main.command()
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip confirmation prompt")
def stop(assume_yes: bool) -> None:
    """Stop the active charging session."""
    import asyncio

    from charge_monitor import logging as cli_log
    from charge_monitor.backend import BackendError
    from charge_monitor.config import Config

    cfg = Config.load()
    cli_log.configure(cfg)
    currency = cfg.tui.currency_symbol

    async def fetch():
        async with _backend_client(cfg) as client:
            return await client.fetch_active_session()

    async def send_stop(snapshot):
        async with _backend_client(cfg) as client:
            return await client.stop_charging(
                snapshot.device_id, snapshot.connector_id, snapshot.transaction_id
            )

    try:
        snapshot = asyncio.run(fetch())
    except BackendError as e:
        cli_log.backend_failed(str(e))
        raise SystemExit(1)

    if snapshot is None or snapshot.is_terminal(grace=cfg.monitor.end_time_grace):
        cli_log.no_active_session()
        return

    cli_log.session_summary(snapshot, currency)
    if not assume_yes and not click.confirm(STOP_CONFIRM_PROMPT):
        click.echo("Aborted.")
        return

    try:
        result = asyncio.run(send_stop(snapshot))
    except BackendError as e:
        cli_log.backend_failed(str(e))
        raise SystemExit(1)

    cli_log.stop_outcome(result, currency)
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.argument("session_id")
def session(session_id: str) -> None:
    """Show final figures (billed amount, refund) for a session."""
    import asyncio

    from charge_monitor import logging as cli_log
    from charge_monitor.backend import BackendError
    from charge_monitor.config import Config

    cfg = Config.load()
    cli_log.configure(cfg)

    async def fetch():
        async with _backend_client(cfg) as client:
            return await client.fetch_session_detail(session_id)

    try:
        detail = asyncio.run(fetch())
    except BackendError as e:
        cli_log.backend_failed(str(e))
        raise SystemExit(1)

    cli_log.session_detail(detail, cfg.tui.currency_symbol)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from charge_monitor.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[backend]")
    click.echo(f"  base_url = {cfg.backend.base_url}")
    click.echo(f"  token = {'(set)' if cfg.backend.token else '(not set)'}")
    click.echo(f"  request_timeout = {cfg.backend.request_timeout}")
    click.echo()
    click.echo("[push]")
    click.echo(f"  enabled = {cfg.push.enabled}")
    click.echo(f"  url = {cfg.push.url}")
    click.echo()
    click.echo("[monitor]")
    click.echo(f"  poll_interval = {cfg.monitor.poll_interval}")
    click.echo(f"  smooth_interval = {cfg.monitor.smooth_interval}")
    click.echo(f"  auto_stop_ratio = {cfg.monitor.auto_stop_ratio}")
    click.echo(f"  startup_retry_delays = {cfg.monitor.startup_retry_delays}")
    click.echo(f"  suppress_window = {cfg.monitor.suppress_window}")
    click.echo()
    click.echo("[tui]")
    click.echo(f"  currency_symbol = {cfg.tui.currency_symbol}")
    click.echo(f"  exit_delay = {cfg.tui.exit_delay}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from charge_monitor.config import Config

    cfg = Config.load()

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
    from charge_monitor.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
