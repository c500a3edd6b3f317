"""
Peer Registry for the relay.

Single source of truth for who is connected: peer id -> Peer (connection
handle + liveness timestamp), bounded by MAX_CLIENTS.

A peer is pending from admission until its handshake completes. Pending
peers hold a slot but are never listed or targeted. activate()
turns a pending peer active and takes the membership snapshot in the same
lock acquisition.

All mutations take one threading.Lock and never await while holding it, so
the registry is safe for the per-peer receive loops, the liveness monitor and
plain threads alike. Readers get copies, never live views.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from shared.config.logging import get_logger
from relay_gateway.components.core.errors import CapacityError

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


@dataclass(eq=False)
class Peer:
    """
    One connected endpoint.

    Attributes:
        id: Opaque unique identity (UUID4), never reused.
        websocket: Exclusively-owned connection handle.
        last_heartbeat: Unix timestamp of last pong or inbound frame.
        remote_address: Diagnostic metadata only.
        connected_at: Unix timestamp of admission.
        active: Handshake done and announced. False while pending.
        send_lock: Serializes frames written to this connection.
    """

    id: str
    websocket: "WebSocket"
    last_heartbeat: float
    remote_address: str | None = None
    connected_at: float = field(default_factory=time.time)
    active: bool = False
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class PeerRegistry:
    """
    Capacity-bounded mapping of peer id -> Peer.

    Invariants:
    - size() never exceeds capacity
    - remove() is the only way an id disappears
    - ids are generated here, so a removed id is never reinserted
    - pending peers are never listed or addressable

    Usage:
        registry = PeerRegistry(capacity=10)
        peer_id = registry.admit(websocket, "10.0.0.5:53211")
        others = registry.activate(peer_id)
        registry.touch(peer_id)
        peer = registry.remove(peer_id)
    """

    def __init__(self, capacity: int):
        """
        Initialize an empty registry.

        Args:
            capacity: Maximum number of simultaneously registered peers.
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._peers: dict[str, Peer] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """Maximum number of registered peers."""
        return self._capacity

    def size(self) -> int:
        """Number of registered peers."""
        with self._lock:
            return len(self._peers)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._peers

    def admit(
        self,
        websocket: "WebSocket",
        remote_address: str | None = None,
        timestamp: float | None = None,
    ) -> str:
        """
        Reserve a slot for a new connection under a fresh id.

        The peer starts pending. It counts against capacity but is not
        visible to other peers until activate().

        Args:
            websocket: Connection handle for the new peer.
            remote_address: Optional diagnostic address.
            timestamp: Initial heartbeat time. Defaults to now.

        Returns:
            The assigned peer id.

        Raises:
            CapacityError: Registry is full. The registry is not modified.
        """
        now = timestamp if timestamp is not None else time.time()
        peer_id = str(uuid.uuid4())

        with self._lock:
            if len(self._peers) >= self._capacity:
                raise CapacityError(self._capacity)
            self._peers[peer_id] = Peer(
                id=peer_id,
                websocket=websocket,
                last_heartbeat=now,
                remote_address=remote_address,
                connected_at=now,
            )
            total = len(self._peers)

        logger.debug("Peer reserved", peer_id=peer_id, total=total)
        return peer_id

    def activate(self, peer_id: str) -> list[str] | None:
        """
        Make a pending peer visible and snapshot the membership it joins.

        Marking the peer active and listing the other active peers happen
        under one lock acquisition. Every other peer is therefore either in
        the snapshot or activates later and will see this peer in its own.

        Returns:
            Ids of the other active peers, or None if the peer is no longer
            registered.
        """
        with self._lock:
            peer = self._peers.get(peer_id)
            if peer is None:
                return None
            peer.active = True
            return [pid for pid, p in self._peers.items() if p.active and pid != peer_id]

    def get(self, peer_id: str) -> Peer | None:
        """Look up a peer by id, pending or active."""
        with self._lock:
            return self._peers.get(peer_id)

    def get_active(self, peer_id: str) -> Peer | None:
        """Look up a peer that can be addressed by other peers."""
        with self._lock:
            peer = self._peers.get(peer_id)
            return peer if peer is not None and peer.active else None

    def remove(self, peer_id: str) -> Peer | None:
        """
        Remove a peer.

        Returns:
            The removed Peer, or None if the id was not registered. Only the
            first caller for a given id gets the Peer back, which is what
            makes teardown exactly-once.
        """
        with self._lock:
            return self._peers.pop(peer_id, None)

    def all(self) -> list[tuple[str, Peer]]:
        """Snapshot of active (id, Peer) pairs, safe to iterate while peers leave."""
        with self._lock:
            return [(pid, p) for pid, p in self._peers.items() if p.active]

    def ids(self, exclude: str | None = None) -> list[str]:
        """Snapshot of active ids, optionally without one of them."""
        with self._lock:
            return [pid for pid, p in self._peers.items() if p.active and pid != exclude]

    def touch(self, peer_id: str, timestamp: float | None = None) -> bool:
        """
        Record liveness for a peer.

        Args:
            peer_id: Peer that showed a sign of life.
            timestamp: Optional Unix timestamp. If None, uses current time.

        Returns:
            True if the peer is registered, False otherwise.
        """
        now = timestamp if timestamp is not None else time.time()
        with self._lock:
            peer = self._peers.get(peer_id)
            if peer is None:
                return False
            peer.last_heartbeat = now
            return True

    def clear(self) -> list[Peer]:
        """Remove every peer at once and return them (shutdown path)."""
        with self._lock:
            peers = list(self._peers.values())
            self._peers.clear()
        return peers

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            now = time.time()
            ages = [now - p.last_heartbeat for p in self._peers.values()]
            total = len(self._peers)
            pending = sum(1 for p in self._peers.values() if not p.active)

        return {
            "peers": total,
            "pending": pending,
            "capacity": self._capacity,
            "utilization_percent": round(total / self._capacity * 100, 1),
            "oldest_heartbeat_age": round(max(ages), 3) if ages else 0,
            "newest_heartbeat_age": round(min(ages), 3) if ages else 0,
        }
