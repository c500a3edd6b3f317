"""
Metrics Collector for the relay.

Centralizes counters for observability. All operations take a
threading.Lock, so they are safe from the event loop and from threads.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ConnectionMetrics:
    """Metrics for peer admission and departure."""
    admitted: int = 0
    rejected_capacity: int = 0
    rejected_shutdown: int = 0
    accept_failures: int = 0
    disconnected: int = 0
    evicted: int = 0
    transport_errors: int = 0


@dataclass
class MessageMetrics:
    """Metrics for relayed messages."""
    relayed: int = 0
    unicast: int = 0
    broadcast: int = 0
    heartbeats: int = 0
    oversized: int = 0
    # kind -> count, kinds are ValidationError.kind values
    invalid: dict[str, int] = field(default_factory=dict)


@dataclass
class DeliveryMetrics:
    """Metrics for outbound sends."""
    sent: int = 0
    failed: int = 0
    probes_sent: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector for the relay.

    Usage:
        metrics = MetricsCollector()
        metrics.increment_admitted()
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connection = ConnectionMetrics()
        self._message = MessageMetrics()
        self._delivery = DeliveryMetrics()

    # ==========================================================================
    # Connection Metrics
    # ==========================================================================

    def increment_admitted(self) -> None:
        with self._lock:
            self._connection.admitted += 1

    def increment_rejected_capacity(self) -> None:
        """Handshake refused because the registry was full."""
        with self._lock:
            self._connection.rejected_capacity += 1

    def increment_rejected_shutdown(self) -> None:
        """Handshake refused because the relay was shutting down."""
        with self._lock:
            self._connection.rejected_shutdown += 1

    def increment_accept_failures(self) -> None:
        with self._lock:
            self._connection.accept_failures += 1

    def increment_disconnected(self) -> None:
        """Peer torn down (any reason)."""
        with self._lock:
            self._connection.disconnected += 1

    def increment_evicted(self) -> None:
        """Peer evicted by the liveness monitor."""
        with self._lock:
            self._connection.evicted += 1

    def increment_transport_errors(self) -> None:
        with self._lock:
            self._connection.transport_errors += 1

    # ==========================================================================
    # Message Metrics
    # ==========================================================================

    def record_relayed(self, unicast: bool) -> None:
        """Record a peer message that passed validation and was routed."""
        with self._lock:
            self._message.relayed += 1
            if unicast:
                self._message.unicast += 1
            else:
                self._message.broadcast += 1

    def increment_heartbeats(self) -> None:
        with self._lock:
            self._message.heartbeats += 1

    def increment_oversized(self) -> None:
        with self._lock:
            self._message.oversized += 1

    def record_invalid(self, kind: str) -> None:
        """Record a dropped frame by validation failure kind."""
        with self._lock:
            self._message.invalid[kind] = self._message.invalid.get(kind, 0) + 1

    # ==========================================================================
    # Delivery Metrics
    # ==========================================================================

    def record_delivery(self, sent: int, failed: int) -> None:
        """Record the outcome of a unicast or broadcast."""
        with self._lock:
            self._delivery.sent += sent
            self._delivery.failed += failed

    def increment_probes_sent(self) -> None:
        with self._lock:
            self._delivery.probes_sent += 1

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Names follow {category}_{metric} with plural categories.
        """
        with self._lock:
            return {
                # Connection metrics
                "connections_admitted": self._connection.admitted,
                "connections_rejected_capacity": self._connection.rejected_capacity,
                "connections_rejected_shutdown": self._connection.rejected_shutdown,
                "connections_accept_failures": self._connection.accept_failures,
                "connections_disconnected": self._connection.disconnected,
                "connections_evicted": self._connection.evicted,
                "connections_transport_errors": self._connection.transport_errors,
                # Message metrics
                "messages_relayed": self._message.relayed,
                "messages_unicast": self._message.unicast,
                "messages_broadcast": self._message.broadcast,
                "messages_heartbeats": self._message.heartbeats,
                "messages_oversized": self._message.oversized,
                "messages_invalid": sum(self._message.invalid.values()),
                "messages_invalid_by_kind": dict(self._message.invalid),
                # Delivery metrics
                "deliveries_sent": self._delivery.sent,
                "deliveries_failed": self._delivery.failed,
                "deliveries_probes_sent": self._delivery.probes_sent,
            }

    def reset(self) -> dict[str, Any]:
        """Reset all metrics and return the previous values."""
        snapshot = self.get_snapshot()
        with self._lock:
            self._connection = ConnectionMetrics()
            self._message = MessageMetrics()
            self._delivery = DeliveryMetrics()
        return snapshot
