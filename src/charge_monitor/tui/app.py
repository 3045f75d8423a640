"""Live charging session view for charge-monitor.

Philosophy: TUI = window onto one live session. Nothing more.
- Numbers come from the controller's smoother; the TUI never computes them
- The only action is Stop Charging (with confirmation)
- When the session ends, show the final message and leave
"""

import asyncio
from datetime import datetime
from typing import Any

from textual.app import App, ComposeResult
from textual.containers import Grid, Horizontal, Vertical
from textual.css.query import NoMatches
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, Header, Label, Static

from charge_monitor.backend import BackendClient
from charge_monitor.config import Config
from charge_monitor.controller import (
    Lifecycle,
    PollSource,
    SessionMonitorController,
    Severity,
    StopCommand,
)
from charge_monitor.formatting import format_cost, format_energy, format_price
from charge_monitor.models import Destination, TerminationEvent
from charge_monitor.push import PushClient, PushSource

# Textual notify() severities for each message level
_SEVERITY_MAP = {
    Severity.SUCCESS: "information",
    Severity.INFO: "information",
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
}


def format_start_time(start_time: datetime | None) -> str:
    """Local wall-clock start time, or a dash if unknown."""
    if start_time is None:
        return "-"
    return start_time.astimezone().strftime("%H:%M:%S")


class StatCard(Static):
    """One labelled number (energy, cost, duration or price)."""

    DEFAULT_CSS = """
    StatCard {
        width: 1fr;
        height: 5;
        border: round $primary;
        border-title-align: left;
        content-align: center middle;
        padding: 0 1;
    }

    StatCard Label {
        width: 100%;
        text-align: center;
        text-style: bold;
    }
    """

    def __init__(self, title: str, color: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._title = title
        self._color = color

    def compose(self) -> ComposeResult:
        yield Label("-", classes="value")

    def on_mount(self) -> None:
        self.border_title = self._title
        self.styles.border = ("round", self._color)

    def set_value(self, text: str) -> None:
        try:
            self.query_one(".value", Label).update(f"[{self._color}]{text}[/]")
        except NoMatches:
            pass


class SessionInfo(Static):
    """Station, charger and status for the monitored session."""

    DEFAULT_CSS = """
    SessionInfo {
        height: 7;
        border: solid $primary;
        border-title-align: left;
        padding: 0 1;
    }
    """

    def on_mount(self) -> None:
        self.border_title = "SESSION"
        self.update("[dim]Loading active session...[/]")

    def show(self, rows: list[tuple[str, str]]) -> None:
        self.update("\n".join(f"[dim]{label:<10}[/] {value}" for label, value in rows))


class ConfirmScreen(ModalScreen[bool]):
    """Yes/No dialog; dismisses with the user's answer."""

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }

    ConfirmScreen #dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: thick $warning;
        background: $surface;
    }

    ConfirmScreen #question {
        width: 100%;
        margin-bottom: 1;
    }

    ConfirmScreen Horizontal {
        height: auto;
        align-horizontal: right;
    }

    ConfirmScreen Button {
        margin-left: 2;
    }
    """

    BINDINGS = [
        ("y", "answer(True)", "Yes"),
        ("n", "answer(False)", "No"),
        ("escape", "answer(False)", "Cancel"),
    ]

    def __init__(self, message: str) -> None:
        super().__init__()
        self.message = message

    def compose(self) -> ComposeResult:
        yield Vertical(
            Label(self.message, id="question"),
            Horizontal(
                Button("Cancel", id="no"),
                Button("Stop Charging", variant="error", id="yes"),
            ),
            id="dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "yes")

    def action_answer(self, answer: bool) -> None:
        self.dismiss(answer)


class ChargeMonitorApp(App[TerminationEvent | Destination | None]):
    """Active charging session monitor.

    Implements both DisplayPort and UserPort for SessionMonitorController.
    Exits with the TerminationEvent (or the destination, if there was no
    session to monitor).
    """

    CSS = """
    Screen {
        layout: vertical;
    }

    #cards {
        height: 5;
        grid-size: 4;
        grid-gutter: 0 1;
    }

    #actions {
        height: 3;
        align-horizontal: center;
        margin-top: 1;
    }
    """

    BINDINGS = [
        ("s", "stop", "Stop charging"),
        ("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        *,
        poll_source: PollSource | None = None,
        stop_command: StopCommand | None = None,
        push_source: PushSource | None = None,
        customer_id: str | None = None,
        fallback: Destination | None = None,
    ) -> None:
        super().__init__()
        self.config = config or Config.load()
        self.currency = self.config.tui.currency_symbol

        self._backend: BackendClient | None = None
        if poll_source is None or stop_command is None:
            self._backend = BackendClient(
                self.config.backend.base_url,
                token=self.config.backend.token,
                timeout=self.config.backend.request_timeout,
            )
        self._push_client: PushClient | None = None
        if push_source is None and self.config.push.enabled:
            p = self.config.push
            self._push_client = PushClient(
                p.url,
                token=self.config.backend.token,
                heartbeat=p.heartbeat,
                connect_timeout=p.connect_timeout,
                reconnect_initial_delay=p.reconnect_initial_delay,
                reconnect_max_delay=p.reconnect_max_delay,
                reconnect_multiplier=p.reconnect_multiplier,
            )

        self.controller = SessionMonitorController(
            poll_source or self._backend,
            stop_command or self._backend,
            self,
            self,
            push_source=push_source or self._push_client,
            config=self.config.monitor,
            customer_id=customer_id,
            fallback=fallback,
            currency=self.currency,
        )
        self._start_task: asyncio.Task | None = None
        self._confirm: ConfirmScreen | None = None

    def compose(self) -> ComposeResult:
        cards = self.config.tui.colors.cards
        yield Header()
        yield SessionInfo(id="info")
        yield Grid(
            StatCard("ENERGY", cards.energy, id="energy"),
            StatCard("COST", cards.cost, id="cost"),
            StatCard("DURATION", cards.duration, id="duration"),
            StatCard("PRICE", cards.price, id="price"),
            id="cards",
        )
        yield Horizontal(
            Button("Stop Charging", variant="error", id="stop", disabled=True),
            id="actions",
        )
        yield Footer()

    def on_mount(self) -> None:
        self.title = "charge-monitor"
        self.sub_title = "Active Session"
        self._start_task = asyncio.create_task(self.controller.start())

    async def on_unmount(self) -> None:
        self.controller.close()
        if self._start_task and not self._start_task.done():
            self._start_task.cancel()
        if self._push_client is not None:
            await self._push_client.aclose()
        if self._backend is not None:
            await self._backend.close()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "stop":
            self.action_stop()

    def action_stop(self) -> None:
        try:
            if self._query_main("#stop", Button).disabled:
                return
        except NoMatches:
            return
        self.controller.spawn_manual_stop()

    def _query_main(self, selector: Any, expect_type: Any = None) -> Any:
        """Query the monitor screen, even while the confirm dialog is on top."""
        if not self.screen_stack:
            raise NoMatches(f"No screen mounted for {selector!r}")
        return self.screen_stack[0].query_one(selector, expect_type)

    # ─────────────────────────────────────────────────────────────────────
    # DisplayPort
    # ─────────────────────────────────────────────────────────────────────

    def _card(self, card_id: str, text: str) -> None:
        try:
            self._query_main(f"#{card_id}", StatCard).set_value(text)
        except NoMatches:
            pass

    def set_energy(self, value: float) -> None:
        self._card("energy", format_energy(value))

    def set_cost(self, value: float) -> None:
        self._card("cost", format_cost(value, self.currency))

    def set_duration(self, text: str) -> None:
        self._card("duration", text)
        self._refresh_info()

    def set_price(self, value: float) -> None:
        self._card("price", format_price(value, self.currency))

    def _refresh_info(self) -> None:
        snapshot = self.controller.snapshot
        if snapshot is None:
            return
        colors = self.config.tui.colors.status
        lifecycle = self.controller.state.lifecycle
        if lifecycle is Lifecycle.STOPPING:
            status = f"[{colors.stopping}]stopping...[/]"
        elif snapshot.status.is_terminal:
            status = f"[{colors.ended}]{snapshot.status.value}[/]"
        else:
            color = getattr(colors, snapshot.status.value, colors.active)
            status = f"[{color}]{snapshot.status.value}[/]"
        rows = [
            ("Station", snapshot.station_name or "Unknown Station"),
            ("Charger", f"{snapshot.display_name} (connector {snapshot.connector_id})"),
            ("Started", format_start_time(snapshot.start_time)),
            ("Prepaid", format_cost(snapshot.amount_deducted, self.currency)),
            ("Status", status),
        ]
        try:
            self._query_main("#info", SessionInfo).show(rows)
        except NoMatches:
            pass

    # ─────────────────────────────────────────────────────────────────────
    # UserPort
    # ─────────────────────────────────────────────────────────────────────

    def notify(  # type: ignore[override]
        self,
        message: str,
        severity: Severity | str = "information",
        *,
        title: str = "",
        timeout: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Show a toast. Accepts controller Severity values as well as Textual's."""
        if isinstance(severity, Severity):
            if severity is Severity.SUCCESS and not title:
                title = "Success"
            severity = _SEVERITY_MAP[severity]
        super().notify(message, title=title, severity=severity, timeout=timeout, **kwargs)

    async def confirm(self, message: str) -> bool:
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

        def answered(result: bool | None) -> None:
            self._confirm = None
            if not future.done():
                future.set_result(bool(result))

        self._confirm = ConfirmScreen(message)
        self.push_screen(self._confirm, callback=answered)
        try:
            return await future
        finally:
            self._dismiss_confirm()

    def _dismiss_confirm(self) -> None:
        """Close a still-open confirmation (the session ended while it was up)."""
        screen, self._confirm = self._confirm, None
        if screen is not None and screen.is_current:
            screen.dismiss(False)

    def set_stop_enabled(self, enabled: bool) -> None:
        try:
            self._query_main("#stop", Button).disabled = not enabled
        except NoMatches:
            pass

    def lock_chrome(self) -> None:
        self.sub_title = "Charging"
        try:
            self._query_main(Footer).display = False
        except NoMatches:
            pass

    def unlock_chrome(self) -> None:
        self.set_stop_enabled(False)
        try:
            self._query_main(Footer).display = True
        except NoMatches:
            pass

    def navigate(self, destination: Destination, event: TerminationEvent | None) -> None:
        self._dismiss_confirm()
        self._refresh_info()
        self.sub_title = f"Returning to {destination.describe()}"
        result = event if event is not None else destination
        self.set_timer(self.config.tui.exit_delay, lambda: self.exit(result))


def run_tui(
    config: Config | None = None,
    *,
    customer_id: str | None = None,
    fallback: Destination | None = None,
) -> TerminationEvent | Destination | None:
    """Run the monitor until the session ends or the user quits.

    Returns:
        The TerminationEvent if the session ended, the destination if there
        was no session to monitor, or None if the user quit
    """
    app = ChargeMonitorApp(config, customer_id=customer_id, fallback=fallback)
    return app.run()
