"""
Tests for the Connection Health Monitor.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.incident_sync.channel import ChannelTransition, PushChannel
from src.incident_sync.errors import ChannelConnectionError
from src.incident_sync.health import ConnectionHealthMonitor


class TestConnectivity:
    """Connectivity derived from channel transitions."""

    def test_starts_disconnected(self):
        assert not ConnectionHealthMonitor().is_connected

    def test_follows_transitions(self):
        monitor = ConnectionHealthMonitor()
        monitor.on_transition(ChannelTransition.CONNECTED)
        assert monitor.is_connected

        error = ChannelConnectionError("dropped")
        monitor.on_transition(ChannelTransition.DISCONNECTED, error)
        assert not monitor.is_connected
        assert monitor.last_error is error
        assert monitor.get_status()["last_transition"] == "disconnected"

    def test_reconnect_clears_error(self):
        monitor = ConnectionHealthMonitor()
        monitor.on_transition(ChannelTransition.ERROR, ChannelConnectionError("refused"))
        monitor.on_transition(ChannelTransition.CONNECTED)
        assert monitor.last_error is None

    @pytest.mark.asyncio
    async def test_attach_to_channel(self):
        channel = PushChannel(uri="ws://test")
        monitor = ConnectionHealthMonitor()
        monitor.attach(channel)

        await channel._emit_transition(ChannelTransition.CONNECTED)

        assert monitor.is_connected


class TestProbe:
    """Tests for the liveness probe."""

    @pytest.mark.asyncio
    async def test_healthy(self):
        monitor = ConnectionHealthMonitor(liveness_check=AsyncMock(return_value=True))
        assert await monitor.probe()
        assert monitor.last_probe_result is True

    @pytest.mark.asyncio
    async def test_check_error_is_unhealthy(self):
        monitor = ConnectionHealthMonitor(liveness_check=AsyncMock(side_effect=OSError("unreachable")))
        assert not await monitor.probe()

    @pytest.mark.asyncio
    async def test_probe_bounded_by_timeout(self):
        async def slow_check():
            await asyncio.sleep(5)
            return True

        monitor = ConnectionHealthMonitor(liveness_check=slow_check, probe_timeout=0.01)
        assert not await monitor.probe()
        assert monitor.last_probe_result is False

    @pytest.mark.asyncio
    async def test_without_check_uses_channel_state(self):
        monitor = ConnectionHealthMonitor()
        assert not await monitor.probe()
        monitor.on_transition(ChannelTransition.CONNECTED)
        assert await monitor.probe()
