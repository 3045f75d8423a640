# src/charge_monitor/controller.py
"""Active charging session monitor.

Wires the poll loop, push listener, display smoother and auto-stop guard
around one live session and owns every transition out of it:

    ACTIVE --(user confirms stop)--> STOPPING --(stop ok)--> TERMINATING(manual)
    ACTIVE --(threshold reached)----> STOPPING --(stop ok)--> TERMINATING(auto)
    ACTIVE --(terminal snapshot, no local stop in flight)--> TERMINATING(external)
    STOPPING --(stop fails)--> ACTIVE

All paths end in _finish(): timers cancelled, push detached, chrome
unlocked, then navigation to the caller's fallback destination.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

import aiohttp
import structlog

from charge_monitor.backend import BackendError
from charge_monitor.config import MonitorConfig
from charge_monitor.formatting import format_cost, format_elapsed
from charge_monitor.guard import AutoStopGuard
from charge_monitor.models import (
    Destination,
    SessionDetail,
    SessionSnapshot,
    StopResult,
    TerminationEvent,
    TerminationReason,
)
from charge_monitor.poller import PollLoop
from charge_monitor.push import PushListener, PushSource
from charge_monitor.smoother import DisplayPort, DisplaySmoother

log = structlog.get_logger()

STOP_CONFIRM_MESSAGE = (
    "Are you sure you want to stop charging? "
    "Any unused amount will be refunded to your wallet."
)
REMOTE_STOP_CAVEAT = "Charger remote-stop may have failed. Please verify charger status."

_TRANSIENT_ERRORS = (BackendError, aiohttp.ClientError, asyncio.TimeoutError)


class Lifecycle(Enum):
    """Monitor lifecycle."""

    PENDING = "pending"  # Waiting for the first usable snapshot
    ACTIVE = "active"
    STOPPING = "stopping"  # Stop command in flight
    TERMINATING = "terminating"  # Session ended; tearing down
    EXITED = "exited"


class Severity(Enum):
    """User-visible message levels."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class PollSource(Protocol):
    async def fetch_active_session(self) -> SessionSnapshot | None: ...

    async def fetch_session_detail(self, session_id: str) -> SessionDetail: ...


class StopCommand(Protocol):
    async def stop_charging(
        self, device_id: str, connector_id: int, transaction_id: str | None = None
    ) -> StopResult: ...


class UserPort(Protocol):
    """Everything the monitor needs from the surrounding application."""

    def notify(self, message: str, severity: Severity) -> None: ...

    async def confirm(self, message: str) -> bool: ...

    def set_stop_enabled(self, enabled: bool) -> None: ...

    def lock_chrome(self) -> None: ...

    def unlock_chrome(self) -> None: ...

    def navigate(self, destination: Destination, event: TerminationEvent | None) -> None: ...


@dataclass
class MonitorState:
    """Mutable flags for one monitored session."""

    lifecycle: Lifecycle = Lifecycle.PENDING
    auto_stop_triggered: bool = False
    stop_in_flight: bool = False
    confirming: bool = False  # Stop confirmation dialog is open
    suppress_until: float | None = None  # Monotonic deadline for duplicate stop notices

    def open_suppress_window(self, seconds: float, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        self.suppress_until = now + seconds

    def close_suppress_window(self) -> None:
        self.suppress_until = None

    def suppressing(self, now: float | None = None) -> bool:
        """Whether a local stop just produced the canonical stop notice."""
        if self.suppress_until is None:
            return False
        now = time.monotonic() if now is None else now
        return now < self.suppress_until

    @property
    def manual_stop_suppress_window(self) -> bool:
        return self.suppressing()

    @property
    def live(self) -> bool:
        """Whether snapshots should still be reconciled."""
        return self.lifecycle in (Lifecycle.ACTIVE, Lifecycle.STOPPING)


class SessionMonitorController:
    """Monitors one active charging session.

    Args:
        poll_source: Reads the active session and final session detail
        stop_command: Issues stop-charging
        display: Renders energy/cost/duration/price
        ui: Notifications, confirmation, chrome and navigation
        push_source: Optional push channel; None means polling only
        config: Timing and threshold settings
        customer_id: Push room owner (falls back to the snapshot's customer)
        fallback: Where to go when the session ends (defaults to dashboard)
        currency: Symbol used in user-facing messages
    """

    def __init__(
        self,
        poll_source: PollSource,
        stop_command: StopCommand,
        display: DisplayPort,
        ui: UserPort,
        *,
        push_source: PushSource | None = None,
        config: MonitorConfig | None = None,
        customer_id: str | None = None,
        fallback: Destination | None = None,
        currency: str = "₹",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or MonitorConfig()
        self._source = poll_source
        self._stop_command = stop_command
        self._display = display
        self._ui = ui
        self._push_source = push_source
        self._customer_id = customer_id
        self.fallback = fallback or Destination.dashboard()
        self.currency = currency
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = MonitorState()
        self.guard = AutoStopGuard(self.config.auto_stop_ratio)
        self.smoother = DisplaySmoother(
            display,
            interval=self.config.smooth_interval,
            factor=self.config.interpolation_factor,
            energy_epsilon=self.config.energy_epsilon,
            cost_epsilon=self.config.cost_epsilon,
        )
        self.poll = PollLoop(
            self._source.fetch_active_session,
            self.reconcile,
            interval=self.config.poll_interval,
        )
        self.push: PushListener | None = None
        self.snapshot: SessionSnapshot | None = None
        self.termination: TerminationEvent | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def session_id(self) -> str | None:
        return self.snapshot.session_id if self.snapshot else None

    # ─────────────────────────────────────────────────────────────────────
    # Startup
    # ─────────────────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Acquire the session and start polling, smoothing and push.

        Returns:
            True if a live session is being monitored; False if none was
            found (the user has already been sent to the dashboard)
        """
        snapshot, errored = await self._acquire_session()
        if self.state.lifecycle is Lifecycle.EXITED:
            # Closed while still looking for the session
            return False
        if snapshot is None:
            self.state.lifecycle = Lifecycle.EXITED
            if errored:
                self._ui.notify("Failed to load active session", Severity.ERROR)
            else:
                self._ui.notify("No active charging session found", Severity.INFO)
            log.info("monitor_no_session", errored=errored)
            self._ui.navigate(Destination.dashboard(), None)
            return False

        self.snapshot = snapshot
        self.state.lifecycle = Lifecycle.ACTIVE
        log.info(
            "monitor_started",
            session_id=snapshot.session_id,
            status=snapshot.status.value,
            amount_deducted=snapshot.amount_deducted,
        )

        self._ui.lock_chrome()
        self._ui.set_stop_enabled(True)
        self.smoother.reset(snapshot.energy, snapshot.cost)
        self._render_static(snapshot)
        self.smoother.start()
        self.poll.start()

        self.push = PushListener(
            self._push_source,
            snapshot.session_id,
            on_meter_update=self.poll.trigger,
            on_charging_stopped=self.handle_external_stop,
        )
        await self.push.start(self._customer_id or snapshot.customer_id)
        if not self.state.live:
            # Session ended while we were subscribing
            self.push.detach()
        return True

    async def _acquire_session(self) -> tuple[SessionSnapshot | None, bool]:
        """Fetch the active session, retrying while the backend catches up.

        A freshly created session can be missing (or still look ended) for a
        few seconds. Retries use fixed delays from config.

        Returns:
            (snapshot or None, whether every attempt failed with an error)
        """
        delays = [0.0, *self.config.startup_retry_delays]
        errors = 0
        for attempt, delay in enumerate(delays, start=1):
            if delay > 0:
                log.info("startup_retry", attempt=attempt, delay=delay)
                await asyncio.sleep(delay)
            if self.state.lifecycle is Lifecycle.EXITED:
                break
            try:
                snapshot = await self._source.fetch_active_session()
            except _TRANSIENT_ERRORS as e:
                errors += 1
                log.warning("startup_fetch_failed", attempt=attempt, error=str(e))
                continue
            except Exception:
                errors += 1
                log.exception("startup_fetch_crashed", attempt=attempt)
                continue
            if snapshot is not None and not self._is_terminal(snapshot):
                return snapshot, False
            log.info("startup_no_session", attempt=attempt)
        return None, errors == len(delays)

    # ─────────────────────────────────────────────────────────────────────
    # Reconciliation
    # ─────────────────────────────────────────────────────────────────────

    async def reconcile(self, snapshot: SessionSnapshot | None) -> None:
        """Merge a freshly observed snapshot into monitor state.

        Called by both the poll loop and push-triggered polls; repeated or
        interleaved calls with the same snapshot are harmless.
        """
        if not self.state.live:
            return

        if self._session_ended(snapshot):
            if self.state.lifecycle is Lifecycle.STOPPING:
                # The in-flight stop command owns termination
                return
            await self.handle_external_stop()
            return

        assert snapshot is not None
        self.snapshot = snapshot
        self.smoother.set_target(snapshot.energy, snapshot.cost)
        self._render_static(snapshot)

        if self.state.lifecycle is Lifecycle.ACTIVE and self.guard.arm(snapshot):
            self.state.auto_stop_triggered = True
            threshold_amount = format_cost(snapshot.amount_deducted, self.currency)
            self._ui.notify(
                f"Prepaid amount ({threshold_amount}) exhausted. Stopping charging...",
                Severity.INFO,
            )
            await self._issue_stop(TerminationReason.AUTO)

    def _session_ended(self, snapshot: SessionSnapshot | None) -> bool:
        if snapshot is None:
            return True
        if self.snapshot is not None and snapshot.session_id != self.snapshot.session_id:
            return True
        return self._is_terminal(snapshot)

    def _is_terminal(self, snapshot: SessionSnapshot) -> bool:
        return snapshot.is_terminal(now=self._clock(), grace=self.config.end_time_grace)

    def _render_static(self, snapshot: SessionSnapshot) -> None:
        self._display.set_duration(format_elapsed(snapshot.start_time, now=self._clock()))
        self._display.set_price(snapshot.price_per_kwh)

    # ─────────────────────────────────────────────────────────────────────
    # Stop paths
    # ─────────────────────────────────────────────────────────────────────

    async def request_manual_stop(self) -> bool:
        """User-initiated stop: confirm, then issue the stop command.

        Returns:
            True if the session was stopped
        """
        state = self.state
        if state.lifecycle is not Lifecycle.ACTIVE or state.stop_in_flight or state.confirming:
            return False

        state.confirming = True
        self._ui.set_stop_enabled(False)
        try:
            confirmed = await self._ui.confirm(STOP_CONFIRM_MESSAGE)
        finally:
            state.confirming = False
        if not confirmed:
            if state.lifecycle is Lifecycle.ACTIVE:
                self._ui.set_stop_enabled(True)
            return False
        if state.lifecycle is not Lifecycle.ACTIVE or state.stop_in_flight:
            # Ended or auto-stopped while the dialog was open
            return False

        return await self._issue_stop(TerminationReason.MANUAL)

    async def _issue_stop(self, reason: TerminationReason) -> bool:
        """Send the stop command once and settle the outcome."""
        snapshot = self.snapshot
        assert snapshot is not None

        self.state.lifecycle = Lifecycle.STOPPING
        self.state.stop_in_flight = True
        self.state.open_suppress_window(self.config.suppress_window)
        log.info("stop_issued", session_id=snapshot.session_id, reason=reason.value)

        try:
            result = await self._stop_command.stop_charging(
                snapshot.device_id, snapshot.connector_id, snapshot.transaction_id
            )
        except _TRANSIENT_ERRORS as e:
            result = StopResult(success=False, error=str(e) or None)
        except Exception as e:
            log.exception("stop_command_crashed", session_id=snapshot.session_id)
            result = StopResult(success=False, error=f"Failed to stop charging: {e}")
        finally:
            self.state.stop_in_flight = False

        if self.state.lifecycle is not Lifecycle.STOPPING:
            # Torn down (e.g. user quit) while the command was in flight
            return result.success

        if not result.success:
            self._stop_failed(reason, result)
            return False

        self._announce_stop(reason, result)
        self._finish(reason, result.refund_amount)
        return True

    def _stop_failed(self, reason: TerminationReason, result: StopResult) -> None:
        log.warning(
            "stop_failed", session_id=self.session_id, reason=reason.value, error=result.error
        )
        self.state.lifecycle = Lifecycle.ACTIVE
        self.state.close_suppress_window()
        if reason is TerminationReason.AUTO:
            self.guard.reset()
            self.state.auto_stop_triggered = False
            self._ui.notify(
                result.error or "Failed to auto-stop charging. Please stop manually.",
                Severity.ERROR,
            )
        else:
            self._ui.notify(result.error or "Failed to stop charging", Severity.ERROR)
        self._ui.set_stop_enabled(True)

    def _announce_stop(self, reason: TerminationReason, result: StopResult) -> None:
        if reason is TerminationReason.AUTO:
            message = "Charging stopped automatically - prepaid amount exhausted"
        else:
            message = "Charging stopped successfully"
        if result.refund_amount and result.refund_amount > 0:
            message += f". Refund: {format_cost(result.refund_amount, self.currency)}"
        self._ui.notify(message, Severity.SUCCESS)
        if result.remote_stop_unverified:
            log.warning("remote_stop_unverified", session_id=self.session_id)
            self._ui.notify(REMOTE_STOP_CAVEAT, Severity.WARNING)

    async def handle_external_stop(self) -> None:
        """The session ended outside this client (management system, charger, push)."""
        if self.state.lifecycle is not Lifecycle.ACTIVE:
            # Already ending, or a local stop is in flight and will finish the job
            return

        self.state.lifecycle = Lifecycle.TERMINATING
        self._cancel_timers()
        session_id = self.session_id
        log.info("external_stop_detected", session_id=session_id)

        refund: float | None = None
        if session_id:
            try:
                detail = await self._source.fetch_session_detail(session_id)
                refund = detail.refund_amount
            except _TRANSIENT_ERRORS as e:
                log.warning("detail_fetch_failed", session_id=session_id, error=str(e))
            except Exception:
                log.exception("detail_fetch_crashed", session_id=session_id)

        if self.state.lifecycle is not Lifecycle.TERMINATING:
            return

        if self.state.suppressing():
            log.info("stop_notice_suppressed", session_id=session_id)
        elif refund and refund > 0:
            self._ui.notify(
                "Charging session has been stopped. Refund of "
                f"{format_cost(refund, self.currency)} has been processed "
                "and added to your wallet.",
                Severity.SUCCESS,
            )
        else:
            self._ui.notify("Charging session has been stopped.", Severity.INFO)

        self._finish(TerminationReason.EXTERNAL, refund)

    # ─────────────────────────────────────────────────────────────────────
    # Teardown
    # ─────────────────────────────────────────────────────────────────────

    def _cancel_timers(self) -> None:
        self.poll.cancel()
        self.smoother.cancel()

    def close(self) -> None:
        """Tear down synchronously: timers, push subscription, chrome lock.

        Safe to call more than once and from inside any monitor task.
        """
        if self.state.lifecycle is Lifecycle.EXITED:
            return
        was_locked = self.state.lifecycle is not Lifecycle.PENDING
        self.state.lifecycle = Lifecycle.EXITED
        self._cancel_timers()
        if self.push is not None:
            self.push.detach()
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()
        if was_locked:
            self._ui.unlock_chrome()

    def _finish(self, reason: TerminationReason, refund: float | None) -> None:
        session_id = self.session_id or ""
        self.close()
        self.termination = TerminationEvent(
            reason=reason,
            session_id=session_id,
            destination=self.fallback,
            refund_amount=refund,
        )
        log.info(
            "monitor_terminated",
            session_id=session_id,
            reason=reason.value,
            refund_amount=refund,
            destination=self.fallback.view,
        )
        self._ui.navigate(self.fallback, self.termination)

    def spawn_manual_stop(self) -> asyncio.Task:
        """Run request_manual_stop() as a tracked task (for UI button handlers)."""
        task = asyncio.create_task(self.request_manual_stop())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
