"""
WebSocket endpoint components.

The peer endpoint is composed from single-concern mixins.
"""

from relay_gateway.components.endpoints.mixins import (
    MessageValidationMixin,
    ConnectionLifecycleMixin,
)
from relay_gateway.components.endpoints.peer import PeerEndpoint

__all__ = [
    "MessageValidationMixin",
    "ConnectionLifecycleMixin",
    "PeerEndpoint",
]
