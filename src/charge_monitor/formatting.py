"""Formatting utilities for consistent output across CLI and TUI."""

from datetime import datetime, timezone

DEFAULT_CURRENCY = "₹"


def format_elapsed(
    start_time: datetime | None,
    *,
    now: datetime | None = None,
) -> str:
    """Format time since session start.

    Args:
        start_time: Session start, or None if unknown
        now: Current time (defaults to datetime.now(timezone.utc))

    Returns:
        "1h 5m" for an hour or more, "42m" below that, "0m" when the start
        time is unknown or in the future.
    """
    if start_time is None:
        return "0m"
    if now is None:
        now = datetime.now(timezone.utc)
    elapsed = (now - start_time).total_seconds()
    if elapsed <= 0:
        return "0m"
    minutes = int(elapsed // 60)
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def format_energy(kwh: float) -> str:
    """Format energy for stat cards: "12.345 kWh"."""
    return f"{kwh:.3f} kWh"


def format_cost(amount: float, currency: str = DEFAULT_CURRENCY) -> str:
    """Format a currency amount: "₹95.50"."""
    return f"{currency}{amount:.2f}"


def format_price(price_per_kwh: float, currency: str = DEFAULT_CURRENCY) -> str:
    """Format an effective rate: "₹18.00/kWh" (zero when unknown)."""
    if price_per_kwh <= 0:
        price_per_kwh = 0.0
    return f"{currency}{price_per_kwh:.2f}/kWh"
