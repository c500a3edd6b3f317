"""
Tests for the liveness monitor and heartbeat handling.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest

from relay_gateway.components.connection.heartbeat import LivenessMonitor, handle_heartbeat
from relay_gateway.components.core.constants import MSG_PONG_JSON, WSCloseCode


@pytest.fixture
def monitor(registry, router, metrics, lifecycle):
    async def evict(peer_id, error):
        return await lifecycle.teardown(peer_id, reason="heartbeat_timeout")

    return LivenessMonitor(
        registry=registry,
        router=router,
        metrics=metrics,
        evict_callback=evict,
        interval=30.0,
        timeout=60.0,
    )


async def _join(lifecycle, ws, at):
    peer_id = lifecycle.admit(ws)
    await lifecycle.accept(ws, peer_id)
    await lifecycle.announce(peer_id)
    lifecycle._registry.touch(peer_id, timestamp=at)
    return peer_id


class TestSweep:
    """Tests for one sweep over the registry."""

    @pytest.mark.asyncio
    async def test_silent_peer_is_evicted_once(self, monitor, lifecycle, registry, make_ws, metrics):
        now = time.time()
        ws_stale, ws_b, ws_c = make_ws(), make_ws(), make_ws()
        stale = await _join(lifecycle, ws_stale, at=now - 61)
        await _join(lifecycle, ws_b, at=now)
        await _join(lifecycle, ws_c, at=now)

        evicted = await monitor.sweep(now=now)

        assert evicted == 1
        assert stale not in registry
        assert ws_stale.close_code == WSCloseCode.GOING_AWAY
        assert ws_stale.close_reason == "Heartbeat timeout"
        for ws in (ws_b, ws_c):
            assert [m["id"] for m in ws.messages_of_type("peer-left")] == [stale]
        assert metrics.get_snapshot()["connections_evicted"] == 1

        # A second sweep finds nothing left to evict
        assert await monitor.sweep(now=now) == 0
        assert len(ws_b.messages_of_type("peer-left")) == 1

    @pytest.mark.asyncio
    async def test_fresh_peers_get_a_probe(self, monitor, lifecycle, make_ws, metrics):
        now = time.time()
        ws_a, ws_b = make_ws(), make_ws()
        await _join(lifecycle, ws_a, at=now - 59)
        await _join(lifecycle, ws_b, at=now)

        evicted = await monitor.sweep(now=now)

        assert evicted == 0
        for ws in (ws_a, ws_b):
            [probe] = ws.messages_of_type("ping")
            assert "timestamp" in probe
        assert metrics.get_snapshot()["deliveries_probes_sent"] == 2

    @pytest.mark.asyncio
    async def test_evict_callback_failure_does_not_stop_sweep(self, registry, router, metrics, make_ws):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        monitor = LivenessMonitor(registry, router, metrics, failing, interval=30.0, timeout=60.0)
        now = time.time()
        registry.activate(registry.admit(make_ws(), timestamp=now - 120))
        fresh = make_ws()
        registry.activate(registry.admit(fresh, timestamp=now))

        assert await monitor.sweep(now=now) == 0
        assert len(fresh.messages_of_type("ping")) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, monitor):
        monitor.start()
        assert monitor.running

        await monitor.stop()
        await monitor.stop()

        assert not monitor.running


class TestHandleHeartbeat:
    """Tests for heartbeat frames from clients."""

    @pytest.mark.asyncio
    async def test_plain_ping_gets_pong(self, make_ws):
        ws = make_ws()
        assert await handle_heartbeat(ws, "ping") is True
        assert ws.sent == [MSG_PONG_JSON]

    @pytest.mark.asyncio
    async def test_json_ping_gets_pong(self, make_ws):
        ws = make_ws()
        assert await handle_heartbeat(ws, {"type": "ping"}) is True
        assert json.loads(ws.sent[0]) == {"type": "pong"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame", ["pong", {"type": "pong"}])
    async def test_pong_is_absorbed(self, make_ws, frame):
        ws = make_ws()
        assert await handle_heartbeat(ws, frame) is True
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_other_frames_pass_through(self, make_ws):
        ws = make_ws()
        assert await handle_heartbeat(ws, "hello") is False
        assert await handle_heartbeat(ws, {"type": "offer"}) is False
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_pong_send_failure_is_swallowed(self, make_ws):
        ws = make_ws(fail_send=True)
        assert await handle_heartbeat(ws, "ping") is True

    @pytest.mark.asyncio
    async def test_binary_plain_ping_gets_pong(self, make_ws):
        ws = make_ws()
        assert await handle_heartbeat(ws, b"ping") is True
        assert ws.sent == [MSG_PONG_JSON]

    @pytest.mark.asyncio
    async def test_undecodable_binary_is_not_a_heartbeat(self, make_ws):
        ws = make_ws()
        assert await handle_heartbeat(ws, b"\xff\xfe") is False
        assert ws.sent == []
