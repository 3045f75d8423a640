# src/charge_monitor/guard.py
"""Prepaid-balance safety stop."""

from __future__ import annotations

import structlog

from charge_monitor.models import SessionSnapshot, SessionStatus

log = structlog.get_logger()

# Stop short of the full prepaid amount: metering and settlement lag means
# energy already delivered may not be reflected in cost yet.
DEFAULT_STOP_RATIO = 0.95


class AutoStopGuard:
    """Decides, at most once per session, that charging must be stopped.

    The caller must act on a True from ``arm()`` by issuing the stop command,
    and must call ``reset()`` if that command fails so a later reconciliation
    can retry.
    """

    def __init__(self, ratio: float = DEFAULT_STOP_RATIO) -> None:
        if not 0 < ratio <= 1:
            raise ValueError(f"ratio must be in (0, 1], got {ratio}")
        self.ratio = ratio
        self.triggered = False

    def threshold(self, amount_deducted: float) -> float:
        """Cost at which the prepaid amount counts as exhausted."""
        return amount_deducted * self.ratio

    def should_stop(self, snapshot: SessionSnapshot) -> bool:
        """Whether this active snapshot crosses the threshold (ignores the triggered flag)."""
        if snapshot.amount_deducted <= 0:
            return False
        if snapshot.status is not SessionStatus.ACTIVE:
            return False
        return snapshot.cost >= self.threshold(snapshot.amount_deducted)

    def arm(self, snapshot: SessionSnapshot) -> bool:
        """Check the snapshot and latch the triggered flag if a stop is due.

        The flag is set here, before the caller awaits anything, so a
        reconciliation interleaved during the stop request sees it and
        does not issue a second stop.

        Returns:
            True exactly once per trigger: the caller must now stop charging
        """
        if self.triggered or not self.should_stop(snapshot):
            return False
        self.triggered = True
        log.info(
            "auto_stop_triggered",
            session_id=snapshot.session_id,
            cost=snapshot.cost,
            amount_deducted=snapshot.amount_deducted,
            threshold=self.threshold(snapshot.amount_deducted),
        )
        return True

    def reset(self) -> None:
        """Allow the guard to fire again (after a failed stop command)."""
        self.triggered = False
