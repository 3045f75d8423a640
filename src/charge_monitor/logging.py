"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (session_summary, stop_outcome, etc.)
5. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

from charge_monitor.formatting import format_cost, format_elapsed, format_energy, format_price

if TYPE_CHECKING:
    from charge_monitor.config import Config
    from charge_monitor.models import SessionDetail, SessionSnapshot, StopResult

# Rich console for colorful human-readable output
_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    CHARGING = "[bright_green]⚡[/]"
    STOPPED = "[bright_red]■[/]"
    REFUND = "💰"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def no_active_session() -> None:
    """Log that the backend reports no live session."""
    info("No active charging session")


def session_summary(snapshot: SessionSnapshot, currency: str) -> None:
    """Log a one-session overview for the status command."""
    station = snapshot.station_name or "Unknown Station"
    info(
        f"[cyan]{station}[/] [dim]—[/] {snapshot.display_name} "
        f"[dim](connector {snapshot.connector_id})[/] [bold]{snapshot.status.value}[/]",
        Icon.CHARGING,
    )
    info(
        f"{format_energy(snapshot.energy)}, {format_cost(snapshot.cost, currency)} "
        f"of {format_cost(snapshot.amount_deducted, currency)} prepaid, "
        f"{format_price(snapshot.price_per_kwh, currency)}, "
        f"[dim]{format_elapsed(snapshot.start_time)} elapsed[/]"
    )


def session_detail(detail: SessionDetail, currency: str) -> None:
    """Log final settlement figures."""
    info(
        f"Session [cyan]{detail.session_id}[/]: {format_energy(detail.energy)}, "
        f"billed {format_cost(detail.billed_amount, currency)}, "
        f"refund {format_cost(detail.refund_amount, currency)}",
        Icon.REFUND,
    )


def stop_outcome(result: StopResult, currency: str) -> None:
    """Log the result of a stop command."""
    if not result.success:
        error(result.error or "Failed to stop charging", Icon.FAIL)
        return
    msg = "Charging stopped successfully"
    if result.refund_amount and result.refund_amount > 0:
        msg += f". Refund: {format_cost(result.refund_amount, currency)}"
    info(msg, Icon.OK)
    if result.remote_stop_unverified:
        warn("Charger remote-stop may have failed. Please verify charger status.")


def backend_failed(error_msg: str) -> None:
    """Log a failed backend call."""
    error(f"Backend request failed: {error_msg}", Icon.FAIL)


def monitor_exited(destination: str, reason: str | None = None) -> None:
    """Log where the user returns after the monitor closes."""
    if reason:
        info(
            f"Session ended [dim]({reason})[/] — returning to [cyan]{destination}[/]",
            Icon.STOPPED,
        )
    else:
        info(f"Returning to [cyan]{destination}[/]")


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Configure structlog to write JSON Lines to the rotating log file.

    The TUI owns the terminal while a session is monitored, so structured
    events never go to the console; Rich helpers above are for CLI output.

    Args:
        config: Application config with paths
    """
    # Ensure state directory exists for log file
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)

    # Clear any existing handlers
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("monitor"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("monitor"),
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
