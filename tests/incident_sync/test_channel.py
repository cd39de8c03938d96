"""
Tests for the push channel.

Tests cover:
- Backoff strategy
- Frame serialization
- Inbound dispatch and acknowledgements
- Reconnection bounds and transitions
- End-to-end against a local aiohttp WebSocket server
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp import test_utils

from src.incident_sync.channel import (
    BackoffStrategy,
    BroadcastRequest,
    ChannelFrame,
    ChannelState,
    ChannelTransition,
    PushChannel,
)
from src.incident_sync.errors import ChannelConnectionError


# ====================
# Backoff Tests
# ====================

class TestBackoffStrategy:
    """Tests for BackoffStrategy."""

    def test_exponential_growth_capped(self):
        backoff = BackoffStrategy(base_delay=2.0, max_delay=10.0)
        assert [backoff.base_delay_for(n) for n in range(5)] == [2.0, 4.0, 8.0, 10.0, 10.0]

    def test_jitter_always_positive_and_bounded(self):
        backoff = BackoffStrategy(base_delay=30.0, max_delay=300.0, max_jitter=5.0)
        for attempt in range(12):
            delay = backoff.delay_for(attempt)
            base = backoff.base_delay_for(attempt)
            assert base < delay <= base + 5.0

    def test_get_delay_advances_attempts(self):
        backoff = BackoffStrategy(base_delay=1.0, max_delay=8.0, max_attempts=2)
        backoff.get_delay()
        assert not backoff.exhausted
        backoff.get_delay()
        assert backoff.exhausted
        backoff.reset()
        assert backoff.attempts == 0


class TestFrames:
    """Tests for wire frames."""

    def test_frame_to_json(self):
        parsed = json.loads(ChannelFrame(event="x", data={"a": 1}).to_json())
        assert parsed == {"event": "x", "data": {"a": 1}}

    def test_frame_with_ack_id(self):
        parsed = json.loads(ChannelFrame(event="x", data=None, ack_id=3).to_json())
        assert parsed["ackId"] == 3

    def test_broadcast_payload(self):
        payload = BroadcastRequest("Drill", "At noon", targets=["p1"]).to_payload()
        assert payload == {"title": "Drill", "message": "At noon", "type": "info", "targets": ["p1"]}


# ====================
# Inbound Tests
# ====================

class TestInboundDispatch:
    """Tests for PushChannel.handle_incoming_raw."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        channel = PushChannel(uri="ws://test")
        received = []

        async def async_handler(data):
            received.append(("async", data))

        channel.subscribe("incident:created", lambda data: received.append(("sync", data)))
        channel.subscribe("incident:created", async_handler)

        await channel.handle_incoming_raw(json.dumps({"event": "incident:created", "data": {"id": "I1"}}))

        assert received == [("sync", {"id": "I1"}), ("async", {"id": "I1"})]

    @pytest.mark.asyncio
    async def test_malformed_frames_ignored(self):
        channel = PushChannel(uri="ws://test")
        handler = MagicMock()
        channel.subscribe("incident:created", handler)

        await channel.handle_incoming_raw("not json")
        await channel.handle_incoming_raw("[1, 2]")
        await channel.handle_incoming_raw(json.dumps({"data": {}}))

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self):
        channel = PushChannel(uri="ws://test")
        after = MagicMock()
        channel.subscribe("alert:critical", MagicMock(side_effect=RuntimeError("boom")))
        channel.subscribe("alert:critical", after)

        await channel.handle_incoming_raw(json.dumps({"event": "alert:critical", "data": {}}))

        after.assert_called_once_with({})

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        channel = PushChannel(uri="ws://test")
        handler = MagicMock()
        channel.subscribe("incident:deleted", handler)
        channel.unsubscribe("incident:deleted", handler)

        await channel.handle_incoming_raw(json.dumps({"event": "incident:deleted", "data": "I1"}))

        handler.assert_not_called()


# ====================
# Outbound Tests
# ====================

class TestOutbound:
    """Tests for acknowledged emits."""

    def _connected_channel(self, ack_timeout=1.0):
        channel = PushChannel(uri="ws://test", ack_timeout=ack_timeout)
        channel._state = ChannelState.CONNECTED
        channel._ws = MagicMock()
        return channel

    @pytest.mark.asyncio
    async def test_broadcast_acknowledged(self):
        channel = self._connected_channel()
        sent = []

        async def fake_send(raw):
            frame = json.loads(raw)
            sent.append(frame)
            await channel.handle_incoming_raw(json.dumps({"ack": frame["ackId"], "data": {"success": True}}))

        channel._ws.send_str = AsyncMock(side_effect=fake_send)

        assert await channel.send_broadcast(BroadcastRequest("Drill", "At noon"))
        assert sent[0]["event"] == "notification:broadcast"
        assert sent[0]["data"]["title"] == "Drill"

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self):
        channel = self._connected_channel()

        async def fake_send(raw):
            frame = json.loads(raw)
            await channel.handle_incoming_raw(json.dumps({"ack": frame["ackId"], "data": {"success": False}}))

        channel._ws.send_str = AsyncMock(side_effect=fake_send)

        assert not await channel.send_broadcast(BroadcastRequest("Drill", "At noon"))

    @pytest.mark.asyncio
    async def test_ack_timeout(self):
        channel = self._connected_channel(ack_timeout=0.01)
        channel._ws.send_str = AsyncMock()

        with pytest.raises(ChannelConnectionError):
            await channel.emit_with_ack("notification:broadcast", {})
        assert channel._pending_acks == {}

    @pytest.mark.asyncio
    async def test_not_connected(self):
        channel = PushChannel(uri="ws://test")
        assert not await channel.send_broadcast(BroadcastRequest("Drill", "At noon"))


# ====================
# Connection Tests
# ====================

class TestReconnection:
    """Tests for the connection loop."""

    @pytest.mark.asyncio
    async def test_gives_up_after_bounded_attempts(self):
        channel = PushChannel(
            uri="ws://test",
            reconnect_delay=0.001,
            reconnect_delay_max=0.002,
            reconnect_attempts=2,
        )
        channel._open_connection = AsyncMock(side_effect=ChannelConnectionError("refused"))
        transitions = []
        channel.add_transition_listener(lambda t, e: transitions.append(t))

        await channel.start()
        await asyncio.wait_for(channel._task, timeout=2.0)

        assert channel._open_connection.await_count == 3
        assert transitions == [ChannelTransition.ERROR] * 3
        assert channel.state == ChannelState.DISCONNECTED
        await channel.stop()

    @pytest.mark.asyncio
    async def test_drop_after_connect_reports_disconnected(self):
        channel = PushChannel(uri="ws://test")
        channel._state = ChannelState.CONNECTED
        transitions = []
        channel.add_transition_listener(lambda t, e: transitions.append((t, str(e))))

        await channel._handle_failure(ChannelConnectionError("Connection closed by server"))

        assert transitions == [(ChannelTransition.DISCONNECTED, "Connection closed by server")]
        assert not channel.is_connected


class TestLiveServer:
    """End-to-end tests against a local WebSocket server."""

    @pytest.mark.asyncio
    async def test_receive_event_and_broadcast(self):
        seen_auth = []

        async def ws_handler(request):
            seen_auth.append(request.headers.get("Authorization"))
            ws = web.WebSocketResponse()
            await ws.prepare(request)
            await ws.send_str(json.dumps({"event": "incident:created", "data": {"id": "I1"}}))
            async for msg in ws:
                frame = json.loads(msg.data)
                await ws.send_str(json.dumps({"ack": frame["ackId"], "data": {"success": True}}))
            return ws

        app = web.Application()
        app.router.add_get("/ws", ws_handler)
        server = test_utils.TestServer(app)
        await server.start_server()

        channel = PushChannel(uri=str(server.make_url("/ws")), auth_token="secret")
        received = asyncio.Event()
        channel.subscribe("incident:created", lambda data: received.set())
        try:
            await channel.start()
            await asyncio.wait_for(received.wait(), timeout=5.0)
            assert channel.is_connected
            assert await channel.send_broadcast(BroadcastRequest("Drill", "At noon"))
        finally:
            await channel.stop()
            await server.close()

        assert seen_auth == ["Bearer secret"]

    @pytest.mark.asyncio
    async def test_rejected_token_reported_as_error(self):
        async def ws_handler(request):
            return web.Response(status=401)

        app = web.Application()
        app.router.add_get("/ws", ws_handler)
        server = test_utils.TestServer(app)
        await server.start_server()

        channel = PushChannel(
            uri=str(server.make_url("/ws")),
            auth_token="expired",
            reconnect_attempts=1,
            reconnect_delay=0.001,
        )
        errors = []
        channel.add_transition_listener(lambda t, e: errors.append((t, str(e))))
        try:
            await channel.start()
            await asyncio.wait_for(channel._task, timeout=5.0)
        finally:
            await channel.stop()
            await server.close()

        assert errors[0][0] == ChannelTransition.ERROR
        assert "Authentication rejected" in errors[0][1]
