"""
Connection Lifecycle Management.

Per-peer state machine: Connecting -> Admitted -> Active -> Closed.

- Connecting -> Admitted: capacity-gated slot reservation, before accept()
- Admitted -> Active: accept(), then activation + membership snapshot,
  welcome + peer-joined announcements
- Active -> Closed: teardown(), the single exit path for close, transport
  error and heartbeat eviction
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from relay_gateway.components.broadcast.router import is_ws_connected
from relay_gateway.components.core.constants import WSCloseCode, WSConstants
from relay_gateway.components.core.errors import CapacityError, ShutdownError
from relay_gateway.components.messages.envelope import (
    peer_joined_envelope,
    peer_left_envelope,
    server_shutdown_envelope,
    welcome_envelope,
)

if TYPE_CHECKING:
    from fastapi import WebSocket
    from relay_gateway.components.broadcast.router import MessageRouter
    from relay_gateway.components.connection.registry import Peer, PeerRegistry
    from relay_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class ConnectionLifecycle:
    """
    Manages the lifecycle of peer connections.

    Responsibilities:
    - Admit new connections against the registry capacity
    - Accept the WebSocket and announce the new peer
    - Tear down peers exactly once and announce their departure
    - Drain every peer on shutdown
    """

    def __init__(
        self,
        registry: "PeerRegistry",
        router: "MessageRouter",
        metrics: "MetricsCollector",
        accept_timeout: float = WSConstants.WS_ACCEPT_TIMEOUT,
        close_timeout: float = WSConstants.SHUTDOWN_CLOSE_TIMEOUT,
    ) -> None:
        """
        Initialize lifecycle manager with dependencies.

        Args:
            registry: Peer registry
            router: Send primitives for system envelopes
            metrics: Collects connection metrics
            accept_timeout: Timeout for completing the WebSocket handshake
            close_timeout: Per-peer bound on shutdown notify + close
        """
        self._registry = registry
        self._router = router
        self._metrics = metrics
        self._accept_timeout = accept_timeout
        self._close_timeout = close_timeout
        self._shutdown = False

    @property
    def is_shutdown(self) -> bool:
        """Whether shutdown has been initiated."""
        return self._shutdown

    def admit(
        self,
        websocket: "WebSocket",
        remote_address: str | None = None,
    ) -> str:
        """
        Reserve a registry slot for a connection that is not accepted yet.

        Returns:
            The reserved peer id. The peer stays invisible to others until
            announce().

        Raises:
            ShutdownError: Relay is shutting down.
            CapacityError: Registry is at MAX_CLIENTS.
        """
        if self._shutdown:
            self._metrics.increment_rejected_shutdown()
            raise ShutdownError()

        try:
            peer_id = self._registry.admit(websocket, remote_address)
        except CapacityError:
            self._metrics.increment_rejected_capacity()
            logger.warning(
                "Connection refused - relay at capacity",
                capacity=self._registry.capacity,
            )
            raise

        return peer_id

    async def accept(self, websocket: "WebSocket", peer_id: str) -> bool:
        """
        Complete the handshake for an admitted peer.

        On failure the reservation is dropped without announcing anything:
        no peer-joined was sent, so no peer-left is owed.

        Returns:
            True if the WebSocket is now open.
        """
        try:
            await asyncio.wait_for(websocket.accept(), timeout=self._accept_timeout)
            return True
        except asyncio.TimeoutError:
            reason = "accept timed out"
        except Exception as e:
            reason = f"accept failed: {e}"

        self._registry.remove(peer_id)
        self._metrics.increment_accept_failures()
        logger.warning("WebSocket handshake failed", peer_id=peer_id, reason=reason)
        return False

    async def announce(self, peer_id: str) -> bool:
        """
        Activate an accepted peer, then send the welcome to it and
        peer-joined to the others.

        The membership snapshot is taken at activation, after the handshake,
        and both announcements use it. Peers that join or leave afterwards
        reach the new peer as their own peer-joined / peer-left, which queue
        behind the welcome on the peer's send lock.

        Returns:
            False if the peer was dropped (shutdown) before it could be
            activated.
        """
        others = self._registry.activate(peer_id)
        if others is None:
            return False

        # No await between activation and queuing the welcome
        self._metrics.increment_admitted()
        await self._router.send_to_peer(peer_id, welcome_envelope(peer_id, others))
        await self._router.broadcast_to_others(
            peer_id,
            peer_joined_envelope(peer_id),
            recipients=others,
        )
        logger.info(
            "Peer connected",
            peer_id=peer_id,
            total=self._registry.size(),
        )
        return True

    async def teardown(self, peer_id: str, reason: str = "client_disconnect") -> bool:
        """
        Remove a peer, announce its departure and release its connection.

        Idempotent: only the call that actually removes the peer announces
        peer-left, later calls return False and do nothing. A peer that was
        never activated was never announced, so no peer-left is owed.

        Returns:
            True if this call tore the peer down.
        """
        peer = self._registry.remove(peer_id)
        if peer is None:
            return False

        self._metrics.increment_disconnected()
        logger.info(
            "Peer disconnected",
            peer_id=peer_id,
            reason=reason,
            remaining=self._registry.size(),
        )

        if peer.active:
            await self._router.broadcast_to_others(peer_id, peer_left_envelope(peer_id))
        await self._release(peer)
        return True

    async def _release(self, peer: "Peer") -> None:
        """Close the connection handle if it is still open."""
        if not is_ws_connected(peer.websocket):
            return
        try:
            await peer.websocket.close(code=WSCloseCode.NORMAL)
        except Exception as e:
            logger.debug("Failed to close connection", peer_id=peer.id, error=str(e))

    async def shutdown(self, message: str) -> int:
        """
        Notify and close every peer, then empty the registry.

        The registry is drained first so receive loops ending during the
        shutdown find nothing to tear down and no peer-left is broadcast.
        Individual send or close failures do not stop the sequence.

        Returns:
            Number of connections closed cleanly.
        """
        self._shutdown = True
        peers = self._registry.clear()
        if not peers:
            return 0

        payload = server_shutdown_envelope(message)

        async def notify_and_close(peer: "Peer") -> bool:
            try:
                await asyncio.wait_for(
                    self._router.send_to_websocket(peer, payload),
                    timeout=self._close_timeout,
                )
            except asyncio.TimeoutError:
                logger.debug("Shutdown notice timed out", peer_id=peer.id)
            try:
                await asyncio.wait_for(
                    peer.websocket.close(code=WSCloseCode.GOING_AWAY, reason="Server shutdown"),
                    timeout=self._close_timeout,
                )
                return True
            except Exception as e:
                logger.debug("Failed to close connection on shutdown", peer_id=peer.id, error=str(e))
                return False

        results = await asyncio.gather(
            *[notify_and_close(peer) for peer in peers],
            return_exceptions=True,
        )
        closed = sum(1 for r in results if r is True)
        logger.info("Closed peer connections", closed=closed, total=len(peers))
        return closed
