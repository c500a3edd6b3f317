"""
Pytest configuration and fixtures for relay tests.
"""

import asyncio
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from shared.config.settings import Settings
from relay_gateway.components.broadcast.router import MessageRouter
from relay_gateway.components.connection.registry import PeerRegistry
from relay_gateway.components.metrics.collector import MetricsCollector
from relay_gateway.core.connection.lifecycle import ConnectionLifecycle
from relay_gateway.main import create_app


class FakeWebSocket:
    """
    In-memory stand-in for a Starlette WebSocket.

    Records every text frame sent and the close code. `fail_send` makes
    send_text raise, like a connection that died mid-write. With a
    `handshake` event the socket stays CONNECTING and accept() blocks until
    the event is set. `yield_on_send` makes every send give up the event
    loop once, like a real transport write.
    """

    _next_port = 50000

    def __init__(
        self,
        fail_send: bool = False,
        origin: str | None = None,
        handshake: asyncio.Event | None = None,
        yield_on_send: bool = False,
    ):
        FakeWebSocket._next_port += 1
        self.client = SimpleNamespace(host="127.0.0.1", port=FakeWebSocket._next_port)
        self.headers = {"origin": origin} if origin else {}
        initial = WebSocketState.CONNECTING if handshake is not None else WebSocketState.CONNECTED
        self.client_state = initial
        self.application_state = initial
        self.handshake = handshake
        self.yield_on_send = yield_on_send
        self.fail_send = fail_send
        self.accepted = False
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None

    async def accept(self):
        if self.handshake is not None:
            await self.handshake.wait()
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, text: str):
        if self.yield_on_send:
            await asyncio.sleep(0)
        if self.fail_send:
            raise RuntimeError("connection reset")
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str | None = None):
        self.close_code = code
        self.close_reason = reason
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    @property
    def closed(self) -> bool:
        return self.close_code is not None

    def messages(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]

    def messages_of_type(self, message_type: str) -> list[dict]:
        return [m for m in self.messages() if m.get("type") == message_type]


@pytest.fixture
def make_ws():
    """Factory for FakeWebSocket instances."""
    def _make(**kwargs) -> FakeWebSocket:
        return FakeWebSocket(**kwargs)
    return _make


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def registry():
    return PeerRegistry(capacity=3)


@pytest.fixture
def router(registry, metrics):
    return MessageRouter(registry=registry, metrics=metrics)


@pytest.fixture
def lifecycle(registry, router, metrics):
    return ConnectionLifecycle(
        registry=registry,
        router=router,
        metrics=metrics,
        accept_timeout=1.0,
        close_timeout=1.0,
    )


@pytest.fixture
def relay_settings():
    """Settings for end-to-end tests: small capacity, monitor effectively idle."""
    return Settings(
        host="127.0.0.1",
        port=0,
        max_clients=3,
        heartbeat_interval=3600.0,
        heartbeat_timeout=7200.0,
        environment="test",
        debug=False,
    )


@pytest.fixture
def client(relay_settings):
    """
    Test client running the relay app, lifespan included.
    """
    app = create_app(relay_settings)
    with TestClient(app) as test_client:
        yield test_client
