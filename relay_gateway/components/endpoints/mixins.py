"""
Relay Endpoint Mixins.

Each mixin handles a single concern for the peer endpoint.

Mixins:
    MessageValidationMixin: Frame size checks
    ConnectionLifecycleMixin: Lifecycle logging and audit
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from fastapi import WebSocket

from shared.config.logging import get_logger
from relay_gateway.components.core.constants import WSCloseCode

if TYPE_CHECKING:
    from relay_gateway.connection_manager import RelayManager
    from relay_gateway.components.core.context import PeerContext

logger = get_logger(__name__)


# =============================================================================
# Protocols for mixin dependencies
# =============================================================================


class HasWebSocket(Protocol):
    """Protocol for classes with websocket attribute."""

    websocket: WebSocket
    endpoint_name: str
    context: "PeerContext | None"


class HasManager(Protocol):
    """Protocol for classes with manager attribute."""

    manager: "RelayManager"
    max_message_size: int


# =============================================================================
# MessageValidationMixin
# =============================================================================


class MessageValidationMixin:
    """
    Mixin for frame size validation.

    Requires:
        - self.websocket: WebSocket
        - self.manager: RelayManager
        - self.max_message_size: int
        - self.context: PeerContext | None
    """

    async def validate_message_size(self: "HasWebSocket & HasManager", data: str | bytes) -> bool:
        """
        Validate frame size against configured limit.

        The limit is in bytes: text frames are measured by their UTF-8
        encoding, the way they travel on the wire.

        Returns:
            True if valid, False if too large (connection closed).
        """
        size = len(data.encode("utf-8")) if isinstance(data, str) else len(data)
        if size > self.max_message_size:
            logger.warning(
                "Message size exceeded limit",
                endpoint=self.endpoint_name,
                identifier=self.context.identifier if self.context else "unknown",
                size=size,
                max_size=self.max_message_size,
            )
            self.manager.metrics.increment_oversized()
            await self.websocket.close(
                code=WSCloseCode.MESSAGE_TOO_BIG,
                reason="Message too large",
            )
            return False
        return True


# =============================================================================
# ConnectionLifecycleMixin
# =============================================================================


class ConnectionLifecycleMixin:
    """
    Mixin for connection lifecycle logging.

    Requires:
        - self.endpoint_name: str
        - self.context: PeerContext | None
    """

    def log_connect(self: HasWebSocket) -> None:
        """Log connection event."""
        if self.context:
            self.context.audit("CONNECT")

    def log_disconnect(self: HasWebSocket, reason: str = "client_disconnect") -> None:
        """Log disconnection event."""
        if self.context:
            self.context.audit("DISCONNECT", reason=reason)

    def log_connect_rejected(self: HasWebSocket, reason: str) -> None:
        """Log connection rejection event."""
        logger.warning(
            "Connection rejected",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            reason=reason,
        )
        if self.context:
            self.context.audit("CONNECT_REJECTED", reason=reason)


__all__ = [
    "MessageValidationMixin",
    "ConnectionLifecycleMixin",
    # Protocols
    "HasWebSocket",
    "HasManager",
]
