# src/charge_monitor/smoother.py
"""Animated display values for energy and cost."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import structlog

log = structlog.get_logger()


class DisplayPort(Protocol):
    """Rendering target for the live session view."""

    def set_energy(self, value: float) -> None: ...

    def set_cost(self, value: float) -> None: ...

    def set_duration(self, text: str) -> None: ...

    def set_price(self, value: float) -> None: ...


@dataclass
class DisplayState:
    """Values shown to the user and the values they are converging on."""

    current_energy: float = 0.0
    current_cost: float = 0.0
    target_energy: float = 0.0
    target_cost: float = 0.0


def _step(current: float, target: float, factor: float, epsilon: float) -> float | None:
    """Return the next value toward target, or None if already within epsilon."""
    gap = target - current
    if abs(gap) <= epsilon:
        return None
    return current + gap * factor


class DisplaySmoother:
    """Interpolates rendered energy/cost toward the latest authoritative values.

    Pure rendering: no business decisions are made from current_* values.
    The tick loop runs as its own task so it can outlive the poll loop
    while a stop command is in flight.
    """

    def __init__(
        self,
        display: DisplayPort,
        *,
        interval: float = 0.1,
        factor: float = 0.15,
        energy_epsilon: float = 0.001,
        cost_epsilon: float = 0.01,
    ) -> None:
        if not 0 < factor <= 1:
            raise ValueError(f"factor must be in (0, 1], got {factor}")
        self.display = display
        self.interval = interval
        self.factor = factor
        self.energy_epsilon = energy_epsilon
        self.cost_epsilon = cost_epsilon
        self.state = DisplayState()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        """Whether the tick loop is scheduled."""
        return self._task is not None and not self._task.done()

    def reset(self, energy: float, cost: float) -> None:
        """Jump straight to the given values (no animation) and render them."""
        self.state = DisplayState(
            current_energy=energy,
            current_cost=cost,
            target_energy=energy,
            target_cost=cost,
        )
        self.display.set_energy(energy)
        self.display.set_cost(cost)

    def set_target(self, energy: float, cost: float) -> None:
        """Record the latest authoritative values; ticks animate toward them."""
        self.state.target_energy = energy
        self.state.target_cost = cost

    def tick(self) -> bool:
        """Advance one interpolation step.

        Returns:
            True if either value moved (and was re-rendered)
        """
        s = self.state
        moved = False

        energy = _step(s.current_energy, s.target_energy, self.factor, self.energy_epsilon)
        if energy is not None:
            s.current_energy = energy
            self.display.set_energy(energy)
            moved = True

        cost = _step(s.current_cost, s.target_cost, self.factor, self.cost_epsilon)
        if cost is not None:
            s.current_cost = cost
            self.display.set_cost(cost)
            moved = True

        return moved

    def start(self) -> None:
        """Start the periodic tick task (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        """Stop ticking. Safe to call repeatedly."""
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        try:
            while self._task is not None:
                try:
                    self.tick()
                except Exception:
                    # A broken render target must not kill the animation loop
                    log.exception("display_tick_failed")
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            pass
