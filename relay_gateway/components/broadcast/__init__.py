"""
Message routing components.
"""

from relay_gateway.components.broadcast.router import MessageRouter, is_ws_connected, serialize

__all__ = [
    "MessageRouter",
    "is_ws_connected",
    "serialize",
]
