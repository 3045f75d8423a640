# src/charge_monitor/poller.py
"""Periodic fetch of the authoritative session snapshot."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import aiohttp
import structlog

from charge_monitor.backend import BackendError
from charge_monitor.models import SessionSnapshot

log = structlog.get_logger()

FetchFunc = Callable[[], Awaitable[SessionSnapshot | None]]
SnapshotHandler = Callable[[SessionSnapshot | None], Awaitable[None]]


class PollLoop:
    """Fetches the active session on a fixed period and hands it to a handler.

    Ticks never overlap: the next one is scheduled only after the previous
    fetch and its handler have completed. A failed fetch is logged and
    skipped; the handler is not called, so the previous state stands.
    """

    def __init__(
        self,
        fetch: FetchFunc,
        on_snapshot: SnapshotHandler,
        interval: float = 1.0,
    ) -> None:
        self._fetch = fetch
        self._on_snapshot = on_snapshot
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._out_of_band: set[asyncio.Task] = set()
        self._running = False
        self.tick_count = 0
        self.failure_count = 0

    @property
    def running(self) -> bool:
        """Whether the periodic loop is active."""
        return self._running

    def start(self) -> None:
        """Start polling. The first tick runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    def trigger(self) -> None:
        """Poll now, outside the regular cadence (e.g. on a push event)."""
        if not self._running:
            return
        task = asyncio.create_task(self.poll_once())
        self._out_of_band.add(task)
        task.add_done_callback(self._out_of_band.discard)

    def cancel(self) -> None:
        """Stop polling synchronously.

        Safe to call from inside a tick: the calling task is left to finish
        its current handler and the loop exits at its next check.
        """
        self._running = False
        current = asyncio.current_task()
        tasks = [self._task, *self._out_of_band]
        self._task = None
        for task in tasks:
            if task is not None and not task.done() and task is not current:
                task.cancel()

    async def poll_once(self) -> bool:
        """Fetch one snapshot and hand it to the handler.

        Returns:
            True if the fetch succeeded and the handler ran
        """
        try:
            snapshot = await self._fetch()
        except (BackendError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.failure_count += 1
            log.warning("poll_failed", error=str(e), failures=self.failure_count)
            return False

        if not self._running:
            return False
        self.tick_count += 1
        await self._on_snapshot(snapshot)
        return True

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._running:
                started = loop.time()
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    log.exception("poll_tick_failed")
                if not self._running:
                    break
                elapsed = loop.time() - started
                await asyncio.sleep(max(0.0, self.interval - elapsed))
        except asyncio.CancelledError:
            pass
