# src/charge_monitor/push.py
"""Push notification channel for live session events."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import aiohttp
import structlog

from charge_monitor.models import CHARGING_STOPPED, METER_VALUES_UPDATED, PushMessage

log = structlog.get_logger()

PushHandler = Callable[[Any], Awaitable[None]]


class PushUnavailable(Exception):
    """The push channel could not be reached; fall back to polling alone."""


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class PushSource(Protocol):
    """Anything that can deliver raw push payloads for a room."""

    async def subscribe(self, room: str, handler: PushHandler) -> Subscription: ...


def customer_room(customer_id: str) -> str:
    """Room name for a customer's notifications."""
    return f"customer:{customer_id}"


class PushListener:
    """Filters a customer's push stream down to events for one session.

    Two reactions:
    - meter.values.updated: poll immediately instead of waiting for the next tick
    - charging.stopped: run the external-stop path right away

    Everything else, including events for other sessions, is ignored.
    """

    def __init__(
        self,
        source: PushSource | None,
        session_id: str,
        on_meter_update: Callable[[], None],
        on_charging_stopped: Callable[[], Awaitable[None]],
    ) -> None:
        self._source = source
        self.session_id = session_id
        self._on_meter_update = on_meter_update
        self._on_charging_stopped = on_charging_stopped
        self._subscription: Subscription | None = None

    @property
    def subscribed(self) -> bool:
        """Whether a live subscription is attached."""
        return self._subscription is not None

    async def start(self, customer_id: str | None) -> bool:
        """Subscribe to the customer's room.

        Returns:
            True if subscribed; False means the monitor runs on polling alone
        """
        if self._source is None:
            log.info("push_disabled", session_id=self.session_id)
            return False
        if not customer_id:
            log.warning("push_no_customer", session_id=self.session_id)
            return False

        room = customer_room(customer_id)
        try:
            self._subscription = await self._source.subscribe(room, self.handle)
        except PushUnavailable as e:
            log.warning("push_unavailable", room=room, error=str(e))
            return False
        log.info("push_subscribed", room=room, session_id=self.session_id)
        return True

    async def handle(self, payload: Any) -> None:
        """Dispatch one raw push payload."""
        message = PushMessage.from_api(payload)
        if message is None:
            log.debug("push_ignored_malformed")
            return
        if message.session_id != self.session_id:
            return

        if message.type == METER_VALUES_UPDATED:
            log.debug("push_meter_values", session_id=self.session_id)
            self._on_meter_update()
        elif message.type == CHARGING_STOPPED:
            log.info("push_charging_stopped", session_id=self.session_id)
            await self._on_charging_stopped()

    def detach(self) -> None:
        """Drop the subscription synchronously. Safe to call repeatedly."""
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            subscription.unsubscribe()


class PushSubscription:
    """Handle returned by PushClient.subscribe()."""

    def __init__(self, client: PushClient, room: str) -> None:
        self._client = client
        self.room = room

    def unsubscribe(self) -> None:
        self._client.close()


class PushClient:
    """WebSocket push client with automatic reconnection.

    Joins one room per connection by sending {"type": "join-room", "room": ...}
    and forwards every JSON text frame to the subscriber's handler.

    The first connection must succeed (subscribe() raises PushUnavailable
    otherwise). Later drops are retried with exponential backoff:
    1s → 2s → 4s → ... → 30s (capped).
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        *,
        heartbeat: float = 15.0,
        connect_timeout: float = 5.0,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        reconnect_multiplier: float = 2.0,
    ) -> None:
        self.url = url
        self.token = token or None
        self.heartbeat = heartbeat
        self.connect_timeout = connect_timeout
        self.reconnect_initial_delay = reconnect_initial_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.reconnect_multiplier = reconnect_multiplier

        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._room: str | None = None
        self._handler: PushHandler | None = None
        self._read_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._shutdown_task: asyncio.Task | None = None
        self._stopping = False

    @property
    def connected(self) -> bool:
        """Whether the WebSocket is open."""
        return self._ws is not None and not self._ws.closed

    async def subscribe(self, room: str, handler: PushHandler) -> PushSubscription:
        """Connect, join the room and start forwarding messages.

        Raises:
            PushUnavailable: If the initial connection fails
        """
        self._room = room
        self._handler = handler
        self._stopping = False

        try:
            await asyncio.wait_for(self._connect(), timeout=self.connect_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self._shutdown()
            raise PushUnavailable(f"Push connection to {self.url} failed: {e}") from e

        self._read_task = asyncio.create_task(self._read_loop())
        return PushSubscription(self, room)

    async def _connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        self._ws = await self._session.ws_connect(
            self.url, heartbeat=self.heartbeat, headers=headers
        )
        await self._ws.send_json({"type": "join-room", "room": self._room})
        log.info("push_connected", url=self.url, room=self._room)

    async def _read_loop(self) -> None:
        """Forward frames until the socket closes, then schedule a reconnect."""
        ws = self._ws
        if ws is None:
            return
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise ConnectionError(f"WS error: {ws.exception()}")
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING):
                    break
        except asyncio.CancelledError:
            return
        except (ConnectionError, aiohttp.ClientError) as e:
            log.warning("push_connection_lost", error=str(e))

        if not self._stopping:
            log.info("push_disconnected", url=self.url)
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _dispatch(self, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            log.debug("push_non_json_frame")
            return
        if self._handler is None:
            return
        try:
            await self._handler(payload)
        except Exception:
            log.exception("push_handler_failed")

    async def _reconnect_loop(self) -> None:
        """Reconnect with exponential backoff until connected or closed."""
        delay = self.reconnect_initial_delay
        try:
            while not self._stopping:
                await asyncio.sleep(delay)
                if self._stopping:
                    return
                try:
                    await asyncio.wait_for(self._connect(), timeout=self.connect_timeout)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    log.info("push_reconnect_failed", error=str(e), next_delay=delay)
                    delay = min(delay * self.reconnect_multiplier, self.reconnect_max_delay)
                    continue
                self._read_task = asyncio.create_task(self._read_loop())
                return
        except asyncio.CancelledError:
            return

    def close(self) -> None:
        """Stop forwarding and reconnecting immediately.

        Socket teardown finishes in the background; no handler is called
        after this returns.
        """
        self._stopping = True
        self._handler = None
        current = asyncio.current_task()
        for task in (self._read_task, self._reconnect_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._read_task = None
        self._reconnect_task = None
        if self._ws is not None or self._session is not None:
            self._shutdown_task = asyncio.create_task(self._shutdown())

    async def aclose(self) -> None:
        """Close and wait for the socket and HTTP session to shut down."""
        self.close()
        if self._shutdown_task is not None:
            await self._shutdown_task
            self._shutdown_task = None

    async def _shutdown(self) -> None:
        ws, self._ws = self._ws, None
        session, self._session = self._session, None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, ConnectionError):
                pass
        if session is not None and not session.closed:
            await session.close()
