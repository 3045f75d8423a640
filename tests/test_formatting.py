"""Tests for formatting utilities."""

from datetime import datetime, timedelta, timezone

from charge_monitor.formatting import format_cost, format_elapsed, format_energy, format_price

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestFormatElapsed:
    """Tests for format_elapsed (duration card)."""

    def test_minutes_only(self) -> None:
        assert format_elapsed(NOW - timedelta(minutes=42, seconds=30), now=NOW) == "42m"

    def test_hours_and_minutes(self) -> None:
        assert format_elapsed(NOW - timedelta(hours=1, minutes=5), now=NOW) == "1h 5m"

    def test_exact_hour(self) -> None:
        assert format_elapsed(NOW - timedelta(hours=2), now=NOW) == "2h 0m"

    def test_unknown_start(self) -> None:
        assert format_elapsed(None, now=NOW) == "0m"

    def test_future_start(self) -> None:
        """Clock skew can put the start slightly in the future."""
        assert format_elapsed(NOW + timedelta(seconds=30), now=NOW) == "0m"

    def test_defaults_to_current_time(self) -> None:
        start = datetime.now(timezone.utc) - timedelta(minutes=3, seconds=10)
        assert format_elapsed(start) == "3m"


def test_format_energy() -> None:
    assert format_energy(12.3456) == "12.346 kWh"
    assert format_energy(0) == "0.000 kWh"


def test_format_cost() -> None:
    assert format_cost(95.5) == "₹95.50"
    assert format_cost(3, currency="$") == "$3.00"


def test_format_price() -> None:
    assert format_price(17.7) == "₹17.70/kWh"
    assert format_price(-1.0) == "₹0.00/kWh"
