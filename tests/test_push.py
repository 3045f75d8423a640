"""Tests for the push listener and WebSocket push client."""

import asyncio

import pytest
from aiohttp import test_utils, web

from charge_monitor.push import PushClient, PushListener, PushUnavailable, customer_room
from tests.conftest import FakePushSource


async def wait_until(condition, timeout=2.0, interval=0.01):
    """Wait until condition() returns True, or timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


class ListenerCalls:
    def __init__(self) -> None:
        self.meter = 0
        self.stopped = 0

    def on_meter_update(self) -> None:
        self.meter += 1

    async def on_charging_stopped(self) -> None:
        self.stopped += 1


def make_listener(source=None, session_id="sess-1"):
    calls = ListenerCalls()
    listener = PushListener(
        source,
        session_id,
        on_meter_update=calls.on_meter_update,
        on_charging_stopped=calls.on_charging_stopped,
    )
    return listener, calls


def test_customer_room():
    assert customer_room("77") == "customer:77"


class TestPushListener:
    """Tests for session-level push filtering."""

    @pytest.mark.asyncio
    async def test_subscribes_to_customer_room(self):
        source = FakePushSource()
        listener, _ = make_listener(source)

        assert await listener.start("cust-1") is True
        assert source.rooms == ["customer:cust-1"]
        assert listener.subscribed

    @pytest.mark.asyncio
    async def test_no_source_means_polling_only(self):
        listener, _ = make_listener(None)
        assert await listener.start("cust-1") is False
        assert not listener.subscribed

    @pytest.mark.asyncio
    async def test_no_customer_id(self):
        source = FakePushSource()
        listener, _ = make_listener(source)
        assert await listener.start(None) is False
        assert source.rooms == []

    @pytest.mark.asyncio
    async def test_unavailable_channel(self):
        listener, _ = make_listener(FakePushSource(fail=PushUnavailable("refused")))
        assert await listener.start("cust-1") is False

    @pytest.mark.asyncio
    async def test_meter_update_for_session(self):
        listener, calls = make_listener()
        await listener.handle({"type": "meter.values.updated", "data": {"sessionId": "sess-1"}})
        assert calls.meter == 1
        assert calls.stopped == 0

    @pytest.mark.asyncio
    async def test_charging_stopped_for_session(self):
        listener, calls = make_listener()
        await listener.handle(
            {
                "event": "notification",
                "data": {"type": "charging.stopped", "data": {"sessionId": "sess-1"}},
            }
        )
        assert calls.stopped == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "charging.stopped", "data": {"sessionId": "other"}},
            {"type": "meter.values.updated", "data": {}},
            {"type": "wallet.credited", "data": {"sessionId": "sess-1"}},
            {"nonsense": True},
            "not a dict",
        ],
    )
    async def test_ignored_payloads(self, payload):
        listener, calls = make_listener()
        await listener.handle(payload)
        assert (calls.meter, calls.stopped) == (0, 0)

    @pytest.mark.asyncio
    async def test_detach_is_idempotent(self):
        source = FakePushSource()
        listener, _ = make_listener(source)
        await listener.start("cust-1")

        listener.detach()
        listener.detach()

        assert source.unsubscribed == 1
        assert not listener.subscribed


class PushServer:
    """In-process WebSocket endpoint recording joins and sending scripted frames."""

    def __init__(self, frames=(), drop_first=False) -> None:
        self.frames = list(frames)
        self.drop_first = drop_first
        self.joins: list[dict] = []
        self.auth_headers: list[str | None] = []
        self.connections = 0
        self.server: test_utils.TestServer | None = None

    async def handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections += 1
        self.auth_headers.append(request.headers.get("Authorization"))
        self.joins.append(await ws.receive_json())

        if self.drop_first and self.connections == 1:
            await ws.close()
            return ws

        for frame in self.frames:
            if isinstance(frame, str):
                await ws.send_str(frame)
            else:
                await ws.send_json(frame)
        async for _ in ws:
            pass
        return ws

    async def start(self) -> str:
        app = web.Application()
        app.router.add_get("/ws", self.handler)
        self.server = test_utils.TestServer(app)
        await self.server.start_server()
        return str(self.server.make_url("/ws"))

    async def close(self) -> None:
        if self.server is not None:
            await self.server.close()


class TestPushClient:
    """Tests for PushClient against a real WebSocket endpoint."""

    @pytest.mark.asyncio
    async def test_joins_room_and_forwards_frames(self):
        frames = [
            "not json",
            {"type": "meter.values.updated", "data": {"sessionId": "sess-1"}},
        ]
        server = PushServer(frames)
        url = await server.start()
        client = PushClient(url, token="tok")
        received = []

        async def handler(payload):
            received.append(payload)

        try:
            await client.subscribe("customer:cust-1", handler)
            await wait_until(lambda: received)
        finally:
            await client.aclose()
            await server.close()

        assert server.joins == [{"type": "join-room", "room": "customer:cust-1"}]
        assert server.auth_headers == ["Bearer tok"]
        assert received == [{"type": "meter.values.updated", "data": {"sessionId": "sess-1"}}]

    @pytest.mark.asyncio
    async def test_initial_failure_raises_unavailable(self):
        server = PushServer()
        url = await server.start()
        await server.close()

        client = PushClient(url, connect_timeout=1.0)
        with pytest.raises(PushUnavailable):
            await client.subscribe("customer:cust-1", lambda payload: None)
        assert not client.connected

    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self):
        server = PushServer(drop_first=True)
        url = await server.start()
        client = PushClient(url, reconnect_initial_delay=0.01, reconnect_max_delay=0.05)

        async def handler(payload):
            pass

        try:
            await client.subscribe("customer:cust-1", handler)
            await wait_until(lambda: server.connections >= 2)
            await wait_until(lambda: client.connected)
        finally:
            await client.aclose()
            await server.close()

        assert len(server.joins) == 2
        assert all(join["room"] == "customer:cust-1" for join in server.joins)

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self):
        server = PushServer()
        url = await server.start()
        client = PushClient(url, reconnect_initial_delay=0.01)

        async def handler(payload):
            pass

        try:
            subscription = await client.subscribe("customer:cust-1", handler)
            subscription.unsubscribe()
            await wait_until(lambda: not client.connected)
            await asyncio.sleep(0.05)
        finally:
            await client.aclose()
            await server.close()

        assert server.connections == 1
