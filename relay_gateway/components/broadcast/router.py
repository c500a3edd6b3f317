"""
Message Router.

Decides unicast vs broadcast delivery for peer envelopes and provides the
send primitives the lifecycle uses for system envelopes.

Every send is isolated: a failure to reach one peer is logged and counted,
never raised, and never stops delivery to the other targets.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, TYPE_CHECKING

from starlette.websockets import WebSocketState

from shared.config.logging import get_logger
from relay_gateway.components.core.errors import DeliveryError
from relay_gateway.components.messages.envelope import now_ms

if TYPE_CHECKING:
    from fastapi import WebSocket
    from relay_gateway.components.connection.registry import Peer, PeerRegistry
    from relay_gateway.components.messages.envelope import Envelope
    from relay_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


def is_ws_connected(ws: "WebSocket") -> bool:
    """
    Check if WebSocket is in connected state before sending.

    Starlette only exposes CONNECTING / CONNECTED / DISCONNECTED, so a
    connection may still look connected briefly after the peer went away.
    The send itself is the final check.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


def serialize(payload: dict[str, Any]) -> str:
    """Encode an envelope as a compact JSON text frame."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class MessageRouter:
    """
    Routes envelopes to peers in the registry.

    Responsibilities:
    - Stamp sender and timestamp on peer envelopes
    - Unicast when `to` resolves, broadcast-to-others otherwise
    - Serialize once per delivery, send outside the registry lock
    """

    def __init__(
        self,
        registry: "PeerRegistry",
        metrics: "MetricsCollector",
    ) -> None:
        """
        Initialize router with dependencies.

        Args:
            registry: Peer registry used to resolve targets
            metrics: Collects delivery metrics
        """
        self._registry = registry
        self._metrics = metrics

    async def route(self, sender_id: str, envelope: "Envelope") -> int:
        """
        Deliver a validated peer envelope.

        Args:
            sender_id: Registry id of the sending peer.
            envelope: Validated envelope variant.

        Returns:
            Number of peers the envelope was delivered to.
        """
        payload = envelope.to_wire(sender_id, now_ms())

        target_id = envelope.target
        if target_id is not None:
            target = self._registry.get_active(target_id)
            if target is not None:
                sent = 1 if await self._deliver(target, serialize(payload)) else 0
                self._metrics.record_relayed(unicast=True)
                self._metrics.record_delivery(sent, 1 - sent)
                logger.debug(
                    "Relayed unicast",
                    sender_id=sender_id,
                    target_id=target_id,
                    message_type=envelope.message_type,
                )
                return sent
            logger.debug(
                "Unicast target not active, broadcasting",
                sender_id=sender_id,
                target_id=target_id,
                message_type=envelope.message_type,
            )

        sent = await self.broadcast_to_others(sender_id, payload)
        self._metrics.record_relayed(unicast=False)
        logger.debug(
            "Relayed broadcast",
            sender_id=sender_id,
            message_type=envelope.message_type,
            recipients=sent,
        )
        return sent

    async def send_to_peer(self, peer_id: str, payload: dict[str, Any]) -> bool:
        """
        Send one envelope to one registered peer.

        Returns:
            True if sent, False if the peer is gone or the send failed.
        """
        peer = self._registry.get(peer_id)
        if peer is None:
            return False
        ok = await self._deliver(peer, serialize(payload))
        self._metrics.record_delivery(int(ok), int(not ok))
        return ok

    async def broadcast_to_others(
        self,
        sender_id: str | None,
        payload: dict[str, Any],
        recipients: list[str] | None = None,
    ) -> int:
        """
        Send one envelope to every registered peer except the sender.

        Args:
            sender_id: Peer to exclude (None excludes nobody).
            payload: Envelope to send. Serialized once.
            recipients: Restrict delivery to these ids (e.g. an activation
                snapshot). Ids no longer active are skipped.

        Returns:
            Number of peers that received the envelope.
        """
        if recipients is None:
            targets = [peer for pid, peer in self._registry.all() if pid != sender_id]
        else:
            targets = [
                peer
                for peer in (self._registry.get_active(pid) for pid in recipients if pid != sender_id)
                if peer is not None
            ]

        if not targets:
            return 0

        text = serialize(payload)
        results = await asyncio.gather(
            *[self._deliver(peer, text) for peer in targets],
            return_exceptions=True,
        )

        sent = sum(1 for r in results if r is True)
        failed = len(results) - sent
        self._metrics.record_delivery(sent, failed)
        if failed:
            logger.debug(
                "Broadcast completed with failures",
                message_type=payload.get("type"),
                sent=sent,
                failed=failed,
            )
        return sent

    async def send_to_websocket(self, peer: "Peer", payload: dict[str, Any]) -> bool:
        """Send to a Peer object directly, even if it left the registry."""
        return await self._deliver(peer, serialize(payload))

    async def _deliver(self, peer: "Peer", text: str) -> bool:
        """
        Send a serialized frame to one peer.

        Frames to the same peer are written one at a time, in the order the
        senders reached the peer's send lock.

        Returns:
            True if sent successfully, False otherwise.
        """
        try:
            async with peer.send_lock:
                if not is_ws_connected(peer.websocket):
                    raise DeliveryError(peer.id, "connection not open")
                await peer.websocket.send_text(text)
            return True
        except DeliveryError as e:
            logger.debug("Delivery skipped", peer_id=peer.id, reason=e.reason)
            return False
        except Exception as e:
            error = DeliveryError(peer.id, f"{type(e).__name__}: {e}")
            logger.warning("Delivery failed", peer_id=peer.id, error=str(error))
            return False
