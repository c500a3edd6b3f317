"""
Liveness Monitor for the relay.

Periodically sweeps the registry: peers silent for longer than the timeout
are closed and torn down, every other peer gets a liveness probe. A missed
pong is only noticed by a later sweep, so the worst case between the last
sign of life and eviction is timeout + interval.

Also hosts handle_heartbeat(), which answers client pings and absorbs pongs
so heartbeat frames never reach the router.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Mapping, TYPE_CHECKING

from shared.config.logging import get_logger
from relay_gateway.components.core.constants import (
    MSG_PING_PLAIN,
    MSG_PONG_JSON,
    MSG_PONG_PLAIN,
    ServerMessageType,
    WSCloseCode,
    WSConstants,
)
from relay_gateway.components.core.errors import HeartbeatTimeoutError
from relay_gateway.components.messages.envelope import ping_envelope

if TYPE_CHECKING:
    from fastapi import WebSocket
    from relay_gateway.components.broadcast.router import MessageRouter
    from relay_gateway.components.connection.registry import Peer, PeerRegistry
    from relay_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)

# Called with the evicted peer id and the timeout error; returns whether the
# teardown actually ran
EvictCallback = Callable[[str, HeartbeatTimeoutError], Awaitable[bool]]


class LivenessMonitor:
    """
    Periodic heartbeat sweep over the peer registry.

    The sweep works on a snapshot of the active peers and sends outside the
    registry lock, so a slow peer delays nothing but its own probe. Peers
    still handshaking are bounded by the accept timeout instead.

    Usage:
        monitor = LivenessMonitor(registry, router, metrics, evict_callback)
        monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        registry: "PeerRegistry",
        router: "MessageRouter",
        metrics: "MetricsCollector",
        evict_callback: EvictCallback,
        interval: float = WSConstants.HEARTBEAT_INTERVAL,
        timeout: float = WSConstants.HEARTBEAT_TIMEOUT,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            registry: Peers to watch.
            router: Used to send probes.
            metrics: Collects eviction and probe counts.
            evict_callback: Single teardown path for evicted peers.
            interval: Seconds between sweeps.
            timeout: Seconds of silence before a peer is evicted.
        """
        self._registry = registry
        self._router = router
        self._metrics = metrics
        self._evict = evict_callback
        self._interval = interval
        self._timeout = timeout
        self._task: asyncio.Task | None = None
        self._cycles = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def running(self) -> bool:
        """Whether the sweep task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic sweep on the running loop. No-op if running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="liveness_monitor")
        logger.info(
            "Liveness monitor started",
            interval=self._interval,
            timeout=self._timeout,
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Liveness monitor stopped", cycles=self._cycles)

    async def _run(self) -> None:
        """Sweep loop. Errors in one cycle never stop the next one."""
        while True:
            try:
                await asyncio.sleep(self._interval)
                self._cycles += 1
                evicted = await self.sweep()
                if evicted > 0:
                    logger.info("Evicted stale peers", count=evicted)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in liveness sweep", error=str(e), exc_info=True)

    async def sweep(self, now: float | None = None) -> int:
        """
        Run one sweep.

        Args:
            now: Optional Unix timestamp to evaluate against. If None, uses
                current time.

        Returns:
            Number of peers evicted.
        """
        now = now if now is not None else time.time()
        evicted = 0
        to_probe: list["Peer"] = []

        for peer_id, _ in self._registry.all():
            # Re-read: a pong may have landed since the snapshot
            peer = self._registry.get(peer_id)
            if peer is None:
                continue

            silence = now - peer.last_heartbeat
            if silence > self._timeout:
                if await self._evict_peer(peer, silence):
                    evicted += 1
            else:
                to_probe.append(peer)

        if to_probe:
            await asyncio.gather(
                *[self._probe(peer) for peer in to_probe],
                return_exceptions=True,
            )

        return evicted

    async def _evict_peer(self, peer: "Peer", silence: float) -> bool:
        """Force-close a silent peer and run it through teardown."""
        error = HeartbeatTimeoutError(peer.id, silence)
        logger.warning(
            "Peer heartbeat timeout",
            peer_id=peer.id,
            silence=round(silence, 1),
            timeout=self._timeout,
        )

        try:
            await peer.websocket.close(
                code=WSCloseCode.GOING_AWAY, reason="Heartbeat timeout"
            )
        except Exception as e:
            logger.debug("Failed to close stale connection", peer_id=peer.id, error=str(e))

        try:
            removed = await self._evict(peer.id, error)
        except Exception as e:
            logger.error("Failed to tear down stale peer", peer_id=peer.id, error=str(e))
            return False

        if removed:
            self._metrics.increment_evicted()
        return removed

    async def _probe(self, peer: "Peer") -> None:
        if await self._router.send_to_websocket(peer, ping_envelope()):
            self._metrics.increment_probes_sent()

    def get_stats(self) -> dict[str, Any]:
        """Get monitor statistics."""
        return {
            "running": self.running,
            "interval_seconds": self._interval,
            "timeout_seconds": self._timeout,
            "cycles": self._cycles,
        }


async def handle_heartbeat(ws: "WebSocket", message: str | bytes | Mapping[str, Any]) -> bool:
    """
    Centralized heartbeat handling.

    Answers pings with a pong and absorbs pongs. Accepts both the plain text
    forms ("ping" / "pong"), in text or UTF-8 binary frames, and parsed JSON
    objects with type ping/pong.

    Args:
        ws: The WebSocket connection.
        message: Raw text or binary frame, or parsed JSON object.

    Returns:
        True if the message was a heartbeat and was handled, False otherwise.
    """
    if isinstance(message, (bytes, bytearray)):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError:
            return False

    if isinstance(message, str):
        kind = message.strip()
        if kind not in (MSG_PING_PLAIN, MSG_PONG_PLAIN):
            return False
    else:
        kind = message.get("type")

    if kind == ServerMessageType.PONG:
        return True

    if kind == ServerMessageType.PING:
        try:
            await ws.send_text(MSG_PONG_JSON)
        except (ConnectionError, RuntimeError, OSError):
            # Connection may have closed - the receive loop handles cleanup
            pass
        except Exception as e:
            logger.warning(
                "Unexpected error sending heartbeat response",
                error=type(e).__name__,
                message=str(e),
            )
        return True

    return False
