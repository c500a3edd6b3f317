"""
Connection management components.

Peer registry and the periodic liveness monitor.
"""

from relay_gateway.components.connection.registry import Peer, PeerRegistry
from relay_gateway.components.connection.heartbeat import LivenessMonitor, handle_heartbeat

__all__ = [
    "Peer",
    "PeerRegistry",
    "LivenessMonitor",
    "handle_heartbeat",
]
