"""Terminal UI for charge-monitor."""

from charge_monitor.tui.app import ChargeMonitorApp, run_tui

__all__ = ["ChargeMonitorApp", "run_tui"]
