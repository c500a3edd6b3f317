"""
Relay Connection Manager.

Thin orchestrator that composes the relay components:
- PeerRegistry: who is connected
- MessageRouter: unicast / broadcast delivery
- ConnectionLifecycle: admit / accept / announce / teardown / shutdown
- LivenessMonitor: periodic heartbeat sweep
- MetricsCollector: counters for health and Prometheus endpoints

One manager is owned by each application instance and handed to the
endpoints explicitly; there is no module-level instance.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

from shared.config.logging import audit_ws_connection, get_logger
from shared.config.settings import Settings, settings as default_settings
from relay_gateway.components.broadcast.router import MessageRouter
from relay_gateway.components.connection.heartbeat import LivenessMonitor
from relay_gateway.components.connection.registry import Peer, PeerRegistry
from relay_gateway.components.core.constants import WSConstants
from relay_gateway.components.core.errors import HeartbeatTimeoutError
from relay_gateway.components.metrics.collector import MetricsCollector
from relay_gateway.core.connection.lifecycle import ConnectionLifecycle

if TYPE_CHECKING:
    from fastapi import WebSocket
    from relay_gateway.components.messages.envelope import Envelope

logger = get_logger(__name__)

__all__ = ["RelayManager"]


class RelayManager:
    """
    Manages peer connections for the relay.

    Configuration from settings:
    - max_clients: Registry capacity (default: 10)
    - heartbeat_interval: Seconds between liveness sweeps (default: 30)
    - heartbeat_timeout: Seconds of silence before eviction (default: 60)
    - ws_accept_timeout: Handshake timeout (default: 5)
    - shutdown_message: Text of the server-shutdown envelope
    """

    def __init__(self, config: Settings | None = None) -> None:
        """Initialize the manager with composed components."""
        self._settings = config or default_settings

        # Core components
        self._metrics = MetricsCollector()
        self._registry = PeerRegistry(capacity=self._settings.max_clients)
        self._router = MessageRouter(registry=self._registry, metrics=self._metrics)

        # Lifecycle component
        self._lifecycle = ConnectionLifecycle(
            registry=self._registry,
            router=self._router,
            metrics=self._metrics,
            accept_timeout=self._settings.ws_accept_timeout,
            close_timeout=WSConstants.SHUTDOWN_CLOSE_TIMEOUT,
        )

        # Monitor component (evicts through the lifecycle teardown)
        self._monitor = LivenessMonitor(
            registry=self._registry,
            router=self._router,
            metrics=self._metrics,
            evict_callback=self._evict,
            interval=self._settings.heartbeat_interval,
            timeout=self._settings.heartbeat_timeout,
        )

    # =========================================================================
    # Component access
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def registry(self) -> PeerRegistry:
        return self._registry

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def monitor(self) -> LivenessMonitor:
        return self._monitor

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def total_connections(self) -> int:
        """Number of registered peers."""
        return self._registry.size()

    def is_shutting_down(self) -> bool:
        """Check if the manager is in shutdown mode."""
        return self._lifecycle.is_shutdown

    # =========================================================================
    # Liveness monitor
    # =========================================================================

    def start_monitor(self) -> None:
        """Start the heartbeat sweep. Call from the running event loop."""
        self._monitor.start()

    async def stop_monitor(self) -> None:
        await self._monitor.stop()

    async def _evict(self, peer_id: str, error: HeartbeatTimeoutError) -> bool:
        peer = self._registry.get(peer_id)
        removed = await self._lifecycle.teardown(peer_id, reason="heartbeat_timeout")
        if removed:
            audit_ws_connection(
                "EVICTED",
                endpoint=self._settings.ws_path,
                peer_id=peer_id,
                remote_address=peer.remote_address if peer else None,
                reason=str(error),
            )
        return removed

    # =========================================================================
    # Connection management (delegate to lifecycle)
    # =========================================================================

    def admit(
        self,
        websocket: "WebSocket",
        remote_address: str | None = None,
    ) -> str:
        """Reserve a slot for a connection. Raises AdmissionError on refusal."""
        return self._lifecycle.admit(websocket, remote_address)

    async def accept(self, websocket: "WebSocket", peer_id: str) -> bool:
        """Complete the handshake for an admitted peer."""
        return await self._lifecycle.accept(websocket, peer_id)

    async def announce(self, peer_id: str) -> bool:
        """Activate a newly accepted peer and send welcome and peer-joined."""
        return await self._lifecycle.announce(peer_id)

    async def teardown(self, peer_id: str, reason: str = "client_disconnect") -> bool:
        """Single idempotent exit path for a peer."""
        return await self._lifecycle.teardown(peer_id, reason)

    def get_peer(self, peer_id: str) -> Peer | None:
        return self._registry.get(peer_id)

    # =========================================================================
    # Heartbeat and routing
    # =========================================================================

    def record_heartbeat(self, peer_id: str) -> bool:
        """Record a sign of life from a peer."""
        return self._registry.touch(peer_id)

    async def route(self, sender_id: str, envelope: "Envelope") -> int:
        """Deliver a validated envelope from a peer."""
        return await self._router.route(sender_id, envelope)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics (sync, for the health check)."""
        registry_stats = self._registry.get_stats()
        return {
            "total_connections": registry_stats["peers"],
            "max_connections": registry_stats["capacity"],
            "utilization_percent": registry_stats["utilization_percent"],
            "shutting_down": self.is_shutting_down(),
            "heartbeat_stats": {
                **self._monitor.get_stats(),
                "oldest_heartbeat_age": registry_stats["oldest_heartbeat_age"],
                "newest_heartbeat_age": registry_stats["newest_heartbeat_age"],
            },
            "metrics": self._metrics.get_snapshot(),
        }

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> int:
        """
        Graceful shutdown: stop the monitor, notify and close every peer.

        Safe to call more than once.
        """
        logger.info("Relay manager shutting down...")
        await self._monitor.stop()
        closed = await self._lifecycle.shutdown(self._settings.shutdown_message)
        logger.info("Relay shutdown complete", closed=closed)
        return closed
