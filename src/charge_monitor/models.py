# src/charge_monitor/models.py
"""Session data shapes exchanged with the backend and the push channel."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """Backend-reported status of a charging session."""

    PENDING = "pending"
    ACTIVE = "active"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the status alone marks the session as ended."""
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: Any) -> "SessionStatus":
        """Parse a status string, treating missing or unknown values as active.

        The backend omits status on some freshly created records; those are
        live sessions as far as the monitor is concerned.
        """
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.ACTIVE


TERMINAL_STATUSES = frozenset(
    {SessionStatus.STOPPED, SessionStatus.COMPLETED, SessionStatus.FAILED}
)

# Sentinel strings some clients send in place of a missing transaction id
_NULL_TRANSACTION_IDS = {"", "null", "undefined", "none"}


def parse_amount(value: Any) -> float:
    """Parse a numeric field leniently: missing, garbage, NaN or infinite becomes 0.0."""
    amount = parse_optional_amount(value)
    return 0.0 if amount is None else amount


def parse_optional_amount(value: Any) -> float | None:
    """Parse a numeric field that may legitimately be absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive timestamps are assumed to be UTC. Returns None for missing or
    unparsable values.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_transaction_id(value: Any) -> str | None:
    """Return a usable transaction id, or None for empty/null-ish values."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _NULL_TRANSACTION_IDS:
        return None
    return text


@dataclass(frozen=True)
class Tariff:
    """Rate basis attached to a session."""

    base_charges: float
    tax: float  # percent

    @property
    def price_per_kwh(self) -> float:
        """Effective rate including tax."""
        return self.base_charges * (1 + self.tax / 100)

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> Tariff | None:
        if not data:
            return None
        return cls(
            base_charges=parse_amount(data.get("baseCharges")),
            tax=parse_amount(data.get("tax")),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time read of a charging session.

    Immutable: every poll or push produces a new snapshot, and the monitor
    compares snapshots rather than mutating them.
    """

    session_id: str
    device_id: str
    connector_id: int
    status: SessionStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    energy: float = 0.0  # kWh
    cost: float = 0.0
    amount_deducted: float = 0.0  # Prepaid reservation, fixed at session start
    transaction_id: str | None = None
    tariff: Tariff | None = None
    refund_amount: float | None = None
    billed_amount: float | None = None
    customer_id: str | None = None
    station_name: str | None = None
    device_name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> SessionSnapshot:
        """Build a snapshot from the backend's session payload.

        Raises:
            ValueError: If the payload carries no session id
        """
        session_id = data.get("sessionId") or data.get("id")
        if session_id is None:
            raise ValueError("Session payload has no sessionId")

        customer = data.get("customer") or {}
        station = data.get("station") or {}
        customer_id = data.get("customerId") or customer.get("id")

        try:
            connector_id = int(data.get("connectorId") or 0)
        except (TypeError, ValueError):
            connector_id = 0

        return cls(
            session_id=str(session_id),
            device_id=str(data.get("deviceId") or ""),
            connector_id=connector_id,
            status=SessionStatus.parse(data.get("status")),
            start_time=parse_timestamp(data.get("startTime")),
            end_time=parse_timestamp(data.get("endTime")),
            energy=parse_amount(data.get("energy")),
            cost=parse_amount(data.get("cost")),
            amount_deducted=parse_amount(data.get("amountDeducted")),
            transaction_id=normalize_transaction_id(data.get("transactionId")),
            tariff=Tariff.from_api(data.get("tariff")),
            refund_amount=parse_optional_amount(data.get("refundAmount")),
            billed_amount=parse_optional_amount(data.get("billedAmount")),
            customer_id=str(customer_id) if customer_id is not None else None,
            station_name=station.get("stationName") or data.get("stationName"),
            device_name=data.get("deviceName"),
        )

    def is_terminal(self, now: datetime | None = None, grace: float = 1.0) -> bool:
        """Whether the session has ended server-side.

        True when the status is stopped/completed/failed, or when end_time is
        more than ``grace`` seconds in the past. The grace period tolerates
        clock skew between client and backend.
        """
        if self.status.is_terminal:
            return True
        if self.end_time is None:
            return False
        now = now or datetime.now(timezone.utc)
        return (now - self.end_time).total_seconds() > grace

    @property
    def price_per_kwh(self) -> float:
        """Effective price: tariff rate if known, else derived from cost/energy."""
        if self.tariff is not None:
            return self.tariff.price_per_kwh
        if self.cost > 0 and self.energy > 0:
            return self.cost / self.energy
        return 0.0

    @property
    def display_name(self) -> str:
        """Charger label for display."""
        return self.device_name or self.device_id


@dataclass(frozen=True)
class SessionDetail:
    """Final settlement figures for an ended session."""

    session_id: str
    refund_amount: float = 0.0
    billed_amount: float = 0.0
    energy: float = 0.0

    @classmethod
    def from_api(cls, session_id: str, data: dict[str, Any]) -> SessionDetail:
        return cls(
            session_id=session_id,
            refund_amount=parse_amount(data.get("refundAmount")),
            billed_amount=parse_amount(data.get("billedAmount")),
            energy=parse_amount(data.get("energy")),
        )


@dataclass(frozen=True)
class StopResult:
    """Outcome of a stop-charging command."""

    success: bool
    stop_success: bool | None = None  # None/True: accepted; False: charger may not have stopped
    refund_amount: float | None = None
    error: str | None = None

    @property
    def remote_stop_unverified(self) -> bool:
        """Backend closed the session but the charger may not have responded."""
        return self.success and self.stop_success is False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> StopResult:
        session = data.get("session") or {}
        stop_success = data.get("stopSuccess")
        return cls(
            success=bool(data.get("success")),
            stop_success=stop_success if isinstance(stop_success, bool) else None,
            refund_amount=parse_optional_amount(session.get("refundAmount")),
            error=data.get("error") or data.get("message"),
        )


# Push message types
METER_VALUES_UPDATED = "meter.values.updated"
CHARGING_STOPPED = "charging.stopped"


@dataclass(frozen=True)
class PushMessage:
    """Notification received on the customer push channel."""

    type: str
    session_id: str | None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Any) -> PushMessage | None:
        """Parse a push payload, returning None if it is not a notification."""
        if not isinstance(payload, dict):
            return None
        # Accept both bare notifications and {"event": "notification", "data": {...}}
        if payload.get("event") == "notification" and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        msg_type = payload.get("type")
        if not isinstance(msg_type, str):
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}
        session_id = data.get("sessionId")
        return cls(
            type=msg_type,
            session_id=str(session_id) if session_id is not None else None,
            data=data,
        )


class TerminationReason(str, Enum):
    """Why the monitor ended."""

    MANUAL = "manual"
    AUTO = "auto"
    EXTERNAL = "external"


@dataclass(frozen=True)
class Destination:
    """Where the user goes after leaving the monitor."""

    view: str  # "station" or "dashboard"
    station_id: str | None = None
    station_name: str | None = None

    @classmethod
    def dashboard(cls) -> Destination:
        return cls(view="dashboard")

    @classmethod
    def station(cls, station_id: str, station_name: str | None = None) -> Destination:
        return cls(view="station", station_id=station_id, station_name=station_name)

    @classmethod
    def fallback(cls, station_id: str | None, station_name: str | None = None) -> Destination:
        """Prior station page if known, else the dashboard."""
        if station_id:
            return cls.station(station_id, station_name)
        return cls.dashboard()

    def describe(self) -> str:
        if self.view == "station":
            return f"station {self.station_name or self.station_id}"
        return "dashboard"


@dataclass(frozen=True)
class TerminationEvent:
    """Emitted once when a monitored session ends."""

    reason: TerminationReason
    session_id: str
    destination: Destination
    refund_amount: float | None = None
