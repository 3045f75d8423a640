"""Shared test fixtures for charge-monitor."""

import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone

import pytest

from charge_monitor.backend import BackendError
from charge_monitor.config import MonitorConfig
from charge_monitor.models import (
    SessionDetail,
    SessionSnapshot,
    SessionStatus,
    StopResult,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_snapshot(
    session_id: str = "sess-1",
    status: SessionStatus = SessionStatus.ACTIVE,
    energy: float = 1.0,
    cost: float = 10.0,
    amount_deducted: float = 100.0,
    end_time: datetime | None = None,
    start_time: datetime | None = None,
    customer_id: str | None = "cust-1",
    transaction_id: str | None = "42",
    **kwargs,
) -> SessionSnapshot:
    """Create a SessionSnapshot for testing."""
    return SessionSnapshot(
        session_id=session_id,
        device_id=kwargs.pop("device_id", "CP-001"),
        connector_id=kwargs.pop("connector_id", 1),
        status=status,
        start_time=start_time or NOW - timedelta(minutes=75),
        end_time=end_time,
        energy=energy,
        cost=cost,
        amount_deducted=amount_deducted,
        transaction_id=transaction_id,
        customer_id=customer_id,
        **kwargs,
    )


def fast_monitor_config(**overrides) -> MonitorConfig:
    """MonitorConfig with no startup delays and a long poll interval.

    The long interval means only the immediate first tick runs on its own;
    tests drive further reconciliations explicitly.
    """
    values = {
        "poll_interval": 60.0,
        "smooth_interval": 60.0,
        "startup_retry_delays": [0.0, 0.0],
    }
    values.update(overrides)
    return MonitorConfig(**values)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSessionSource:
    """PollSource that replays scripted fetch results.

    Each scripted item is a snapshot, None, or an exception to raise. Once
    the script is exhausted the last item repeats.
    """

    def __init__(self, *results, detail: SessionDetail | Exception | None = None) -> None:
        self.results = deque(results)
        self._last = None
        self.detail = detail
        self.fetch_count = 0
        self.detail_calls: list[str] = []

    def push(self, *results) -> None:
        self.results.extend(results)

    async def fetch_active_session(self) -> SessionSnapshot | None:
        self.fetch_count += 1
        if self.results:
            self._last = self.results.popleft()
        item = self._last
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_session_detail(self, session_id: str) -> SessionDetail:
        self.detail_calls.append(session_id)
        if isinstance(self.detail, Exception):
            raise self.detail
        if self.detail is None:
            raise BackendError("no detail scripted")
        return self.detail


class FakeStopCommand:
    """StopCommand recording calls; optionally blocks until released."""

    def __init__(self, *results: StopResult | Exception, block: bool = False) -> None:
        self.results = deque(results) or deque([StopResult(success=True)])
        self.calls: list[tuple[str, int, str | None]] = []
        self.release = asyncio.Event()
        if not block:
            self.release.set()

    async def stop_charging(
        self, device_id: str, connector_id: int, transaction_id: str | None = None
    ) -> StopResult:
        self.calls.append((device_id, connector_id, transaction_id))
        await self.release.wait()
        result = self.results.popleft() if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeSubscription:
    def __init__(self, source: "FakePushSource") -> None:
        self.source = source

    def unsubscribe(self) -> None:
        self.source.unsubscribed += 1
        self.source.handler = None


class FakePushSource:
    """PushSource that lets tests deliver payloads by hand."""

    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.rooms: list[str] = []
        self.handler = None
        self.unsubscribed = 0

    async def subscribe(self, room, handler):
        if self.fail is not None:
            raise self.fail
        self.rooms.append(room)
        self.handler = handler
        return FakeSubscription(self)

    async def deliver(self, payload) -> None:
        if self.handler is not None:
            await self.handler(payload)


class RecordingDisplay:
    """DisplayPort that records every render call."""

    def __init__(self) -> None:
        self.energy: list[float] = []
        self.cost: list[float] = []
        self.durations: list[str] = []
        self.prices: list[float] = []

    def set_energy(self, value: float) -> None:
        self.energy.append(value)

    def set_cost(self, value: float) -> None:
        self.cost.append(value)

    def set_duration(self, text: str) -> None:
        self.durations.append(text)

    def set_price(self, value: float) -> None:
        self.prices.append(value)


class RecordingUI:
    """UserPort that records notifications and answers confirmations."""

    def __init__(self, confirm_answer: bool = True) -> None:
        self.confirm_answer = confirm_answer
        self.confirm_gate: asyncio.Event | None = None
        self.messages: list[tuple[str, object]] = []
        self.confirm_prompts: list[str] = []
        self.stop_enabled: list[bool] = []
        self.locked = False
        self.lock_calls = 0
        self.unlock_calls = 0
        self.navigations: list[tuple[object, object]] = []

    def notify(self, message, severity) -> None:
        self.messages.append((message, severity))

    async def confirm(self, message: str) -> bool:
        self.confirm_prompts.append(message)
        if self.confirm_gate is not None:
            await self.confirm_gate.wait()
        return self.confirm_answer

    def set_stop_enabled(self, enabled: bool) -> None:
        self.stop_enabled.append(enabled)

    def lock_chrome(self) -> None:
        self.locked = True
        self.lock_calls += 1

    def unlock_chrome(self) -> None:
        self.locked = False
        self.unlock_calls += 1

    def navigate(self, destination, event) -> None:
        self.navigations.append((destination, event))

    def texts(self, severity=None) -> list[str]:
        return [m for m, s in self.messages if severity is None or s == severity]


@pytest.fixture
def display() -> RecordingDisplay:
    return RecordingDisplay()


@pytest.fixture
def ui() -> RecordingUI:
    return RecordingUI()
