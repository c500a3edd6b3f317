"""
Tests for the connection lifecycle.

Tests verify:
- Welcome / peer-joined use the snapshot taken once the handshake is done
- Peers joining or leaving during a handshake are never lost
- Teardown is idempotent and announces peer-left once
- Failed handshakes are discarded silently
- Shutdown notifies, closes and refuses new admissions
"""

import asyncio

import pytest

from relay_gateway.components.core.constants import WSCloseCode
from relay_gateway.components.core.errors import CapacityError, ShutdownError


async def _join(lifecycle, ws):
    peer_id = lifecycle.admit(ws)
    assert await lifecycle.accept(ws, peer_id)
    assert await lifecycle.announce(peer_id)
    return peer_id


class TestAnnouncements:
    """Tests for welcome and peer-joined."""

    @pytest.mark.asyncio
    async def test_welcome_lists_existing_peers(self, lifecycle, make_ws):
        ws_a, ws_b = make_ws(), make_ws()
        a = await _join(lifecycle, ws_a)
        b = await _join(lifecycle, ws_b)

        [welcome_a] = ws_a.messages_of_type("id")
        [welcome_b] = ws_b.messages_of_type("id")
        assert welcome_a["id"] == a
        assert welcome_a["peers"] == []
        assert welcome_b["id"] == b
        assert welcome_b["peers"] == [a]
        assert "timestamp" in welcome_b

    @pytest.mark.asyncio
    async def test_peer_joined_goes_to_others_only(self, lifecycle, make_ws):
        ws_a, ws_b = make_ws(), make_ws()
        await _join(lifecycle, ws_a)
        b = await _join(lifecycle, ws_b)

        assert [m["id"] for m in ws_a.messages_of_type("peer-joined")] == [b]
        assert ws_b.messages_of_type("peer-joined") == []


def _membership(ws) -> set[str]:
    """Peers a client knows about from its welcome and later announcements."""
    known: set[str] = set()
    for message in ws.messages():
        if message["type"] == "id":
            known.update(message["peers"])
        elif message["type"] == "peer-joined":
            known.add(message["id"])
        elif message["type"] == "peer-left":
            known.discard(message["id"])
    return known


class TestConcurrentHandshakes:
    """Membership stays consistent while handshakes are in flight."""

    @pytest.mark.asyncio
    async def test_peer_joining_during_handshake_is_seen(self, lifecycle, registry, make_ws):
        gate = asyncio.Event()
        ws_a = make_ws(handshake=gate)
        a = lifecycle.admit(ws_a)
        accepting = asyncio.create_task(lifecycle.accept(ws_a, a))
        await asyncio.sleep(0)

        ws_b = make_ws()
        b = await _join(lifecycle, ws_b)

        gate.set()
        assert await accepting
        assert await lifecycle.announce(a)

        assert ws_a.messages()[0]["type"] == "id"
        assert _membership(ws_a) == {b}
        assert _membership(ws_b) == {a}

    @pytest.mark.asyncio
    async def test_peer_leaving_during_handshake_is_not_listed(self, lifecycle, make_ws):
        ws_a = make_ws()
        a = await _join(lifecycle, ws_a)

        gate = asyncio.Event()
        ws_c = make_ws(handshake=gate)
        c = lifecycle.admit(ws_c)
        accepting = asyncio.create_task(lifecycle.accept(ws_c, c))
        await asyncio.sleep(0)

        assert await lifecycle.teardown(a)

        gate.set()
        assert await accepting
        assert await lifecycle.announce(c)

        [welcome] = ws_c.messages_of_type("id")
        assert welcome["peers"] == []
        assert _membership(ws_c) == set()

    @pytest.mark.asyncio
    async def test_failed_handshake_is_never_listed(self, lifecycle, make_ws):
        gate = asyncio.Event()
        broken = make_ws(handshake=gate)
        pending = lifecycle.admit(broken)

        ws_b = make_ws()
        await _join(lifecycle, ws_b)

        async def refuse():
            raise RuntimeError("handshake failed")

        broken.accept = refuse
        assert await lifecycle.accept(broken, pending) is False

        [welcome] = ws_b.messages_of_type("id")
        assert welcome["peers"] == []
        assert ws_b.messages_of_type("peer-left") == []

    @pytest.mark.asyncio
    async def test_simultaneous_announcements_agree(self, lifecycle, make_ws):
        sockets = [make_ws(yield_on_send=True) for _ in range(3)]
        ids = [lifecycle.admit(ws) for ws in sockets]
        for ws, peer_id in zip(sockets, ids):
            assert await lifecycle.accept(ws, peer_id)

        await asyncio.gather(*[lifecycle.announce(peer_id) for peer_id in ids])

        for ws, peer_id in zip(sockets, ids):
            assert ws.messages()[0]["type"] == "id"
            assert _membership(ws) == set(ids) - {peer_id}

    @pytest.mark.asyncio
    async def test_announce_after_shutdown_is_refused(self, lifecycle, make_ws):
        ws = make_ws()
        peer_id = lifecycle.admit(ws)
        assert await lifecycle.accept(ws, peer_id)

        await lifecycle.shutdown("bye")

        assert await lifecycle.announce(peer_id) is False
        assert ws.messages_of_type("id") == []


class TestAdmission:
    """Tests for refusals before accept."""

    @pytest.mark.asyncio
    async def test_capacity_refusal(self, lifecycle, registry, make_ws, metrics):
        for _ in range(registry.capacity):
            await _join(lifecycle, make_ws())

        rejected = make_ws()
        with pytest.raises(CapacityError):
            lifecycle.admit(rejected)

        assert registry.size() == registry.capacity
        assert rejected.sent == []
        assert metrics.get_snapshot()["connections_rejected_capacity"] == 1

    @pytest.mark.asyncio
    async def test_failed_accept_discards_reservation(self, lifecycle, registry, make_ws, metrics):
        ws_a = make_ws()
        await _join(lifecycle, ws_a)

        broken = make_ws()

        async def refuse():
            raise RuntimeError("handshake failed")

        broken.accept = refuse
        peer_id = lifecycle.admit(broken)

        assert await lifecycle.accept(broken, peer_id) is False
        assert peer_id not in registry
        assert ws_a.messages_of_type("peer-left") == []
        assert metrics.get_snapshot()["connections_accept_failures"] == 1

    @pytest.mark.asyncio
    async def test_accept_timeout(self, lifecycle, registry, make_ws):
        slow = make_ws()

        async def hang():
            await asyncio.sleep(10)

        slow.accept = hang
        lifecycle._accept_timeout = 0.05
        peer_id = lifecycle.admit(slow)

        assert await lifecycle.accept(slow, peer_id) is False
        assert registry.size() == 0


class TestTeardown:
    """Tests for the single exit path."""

    @pytest.mark.asyncio
    async def test_teardown_is_idempotent(self, lifecycle, registry, make_ws):
        ws_a, ws_b = make_ws(), make_ws()
        a = await _join(lifecycle, ws_a)
        await _join(lifecycle, ws_b)

        first = await lifecycle.teardown(a)
        size_after_first = registry.size()
        second = await lifecycle.teardown(a)

        assert first is True
        assert second is False
        assert registry.size() == size_after_first == 1
        assert [m["id"] for m in ws_b.messages_of_type("peer-left")] == [a]

    @pytest.mark.asyncio
    async def test_teardown_closes_open_handle(self, lifecycle, make_ws):
        ws_a = make_ws()
        a = await _join(lifecycle, ws_a)

        await lifecycle.teardown(a, reason="transport_error")

        assert ws_a.close_code == WSCloseCode.NORMAL

    @pytest.mark.asyncio
    async def test_concurrent_teardowns_announce_once(self, lifecycle, make_ws):
        ws_a, ws_b = make_ws(), make_ws()
        a = await _join(lifecycle, ws_a)
        await _join(lifecycle, ws_b)

        results = await asyncio.gather(
            lifecycle.teardown(a, "client_disconnect"),
            lifecycle.teardown(a, "heartbeat_timeout"),
        )

        assert sorted(results) == [False, True]
        assert len(ws_b.messages_of_type("peer-left")) == 1


class TestShutdown:
    """Tests for draining every peer."""

    @pytest.mark.asyncio
    async def test_shutdown_notifies_and_closes(self, lifecycle, registry, make_ws):
        sockets = [make_ws() for _ in range(3)]
        for ws in sockets:
            await _join(lifecycle, ws)

        closed = await lifecycle.shutdown("bye")

        assert closed == 3
        assert registry.size() == 0
        for ws in sockets:
            [notice] = ws.messages_of_type("server-shutdown")
            assert notice["message"] == "bye"
            assert ws.close_code == WSCloseCode.GOING_AWAY
            assert ws.messages_of_type("peer-left") == []

    @pytest.mark.asyncio
    async def test_shutdown_survives_failing_peers(self, lifecycle, registry, make_ws):
        healthy = make_ws()
        await _join(lifecycle, healthy)
        await _join(lifecycle, make_ws())
        registry.get(registry.ids()[-1]).websocket.fail_send = True

        await lifecycle.shutdown("bye")

        assert registry.size() == 0
        assert healthy.close_code == WSCloseCode.GOING_AWAY

    @pytest.mark.asyncio
    async def test_admission_refused_after_shutdown(self, lifecycle, make_ws, metrics):
        await lifecycle.shutdown("bye")

        with pytest.raises(ShutdownError):
            lifecycle.admit(make_ws())
        assert metrics.get_snapshot()["connections_rejected_shutdown"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_twice(self, lifecycle, make_ws):
        await _join(lifecycle, make_ws())

        assert await lifecycle.shutdown("bye") == 1
        assert await lifecycle.shutdown("bye") == 0
