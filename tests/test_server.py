"""
Tests for in-process server control.

These run a real uvicorn server on an ephemeral port and talk to it with
the websockets client.
"""

import json
import socket

import pytest
import pytest_asyncio
import websockets

from relay_gateway.components.core.constants import WSCloseCode
from relay_gateway.components.core.errors import BindError
from relay_gateway.server import RelayServer


@pytest_asyncio.fixture
async def server(relay_settings):
    relay = RelayServer(relay_settings)
    yield relay
    await relay.stop()


class TestStartStop:
    """Tests for the start / stop contract."""

    @pytest.mark.asyncio
    async def test_start_binds_ephemeral_port(self, server):
        port = await server.start(0)

        assert port > 0
        assert server.running
        assert server.port == port

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_port(self, server):
        first = await server.start(0)
        second = await server.start(0)

        assert first == second

    @pytest.mark.asyncio
    async def test_stop_twice_is_safe(self, server):
        await server.start(0)

        await server.stop()
        await server.stop()

        assert not server.running
        assert server.port is None

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, server):
        await server.stop()
        assert not server.running

    @pytest.mark.asyncio
    async def test_occupied_port_raises_bind_error(self, server):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            port = blocker.getsockname()[1]
            with pytest.raises(BindError) as exc_info:
                await server.start(port)
            assert exc_info.value.port == port
            assert not server.running
        finally:
            blocker.close()

    @pytest.mark.asyncio
    async def test_port_is_released_after_stop(self, server):
        port = await server.start(0)
        await server.stop()

        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            probe.bind(("127.0.0.1", port))
        finally:
            probe.close()


class TestOverTheWire:
    """Relay behavior through a real socket."""

    @pytest.mark.asyncio
    async def test_relay_and_shutdown_notice(self, server):
        port = await server.start(0)
        uri = f"ws://127.0.0.1:{port}/"

        async with websockets.connect(uri) as ws_a, websockets.connect(uri) as ws_b:
            a = json.loads(await ws_a.recv())["id"]
            welcome_b = json.loads(await ws_b.recv())
            assert welcome_b["peers"] == [a]
            assert json.loads(await ws_a.recv())["type"] == "peer-joined"

            await ws_a.send(json.dumps({"type": "candidate", "to": welcome_b["id"], "candidate": "c"}))
            relayed = json.loads(await ws_b.recv())
            assert relayed["from"] == a
            assert relayed["candidate"] == "c"

            await server.stop()

            for ws in (ws_a, ws_b):
                notice = json.loads(await ws.recv())
                assert notice["type"] == "server-shutdown"
                assert notice["message"] == "Server is shutting down"
                with pytest.raises(websockets.ConnectionClosed) as exc_info:
                    await ws.recv()
                assert exc_info.value.rcvd.code == WSCloseCode.GOING_AWAY
