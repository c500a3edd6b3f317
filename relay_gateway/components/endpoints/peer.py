"""
Peer WebSocket Endpoint.

Drives one connection through its whole life:
1. Admission against the registry, before the handshake is accepted
2. Accept and announce (welcome to the peer, peer-joined to the others)
3. Receive loop: size check, heartbeat, validation, routing
4. Teardown, whatever ended the loop
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import WebSocket

from shared.config.logging import bind_peer_id, get_logger, unbind_peer_id
from relay_gateway.components.connection.heartbeat import handle_heartbeat
from relay_gateway.components.core.constants import WSCloseCode
from relay_gateway.components.core.context import PeerContext, sanitize_log_data
from relay_gateway.components.core.errors import (
    AdmissionError,
    CapacityError,
    TransportError,
    ValidationError,
)
from relay_gateway.components.endpoints.mixins import (
    ConnectionLifecycleMixin,
    MessageValidationMixin,
)
from relay_gateway.components.messages.validator import parse_frame, validate_message

if TYPE_CHECKING:
    from relay_gateway.connection_manager import RelayManager

logger = get_logger(__name__)


class PeerEndpoint(MessageValidationMixin, ConnectionLifecycleMixin):
    """
    Handler for one relay peer connection.

    Usage:
        endpoint = PeerEndpoint(websocket, manager, "/")
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "RelayManager",
        endpoint_name: str = "/",
        max_message_size: int | None = None,
    ):
        """
        Initialize the endpoint handler.

        Args:
            websocket: The WebSocket connection (not yet accepted).
            manager: RelayManager owning the registry.
            endpoint_name: Path for logging.
            max_message_size: Frame size limit, defaults to the setting.
        """
        self.websocket = websocket
        self.manager = manager
        self.endpoint_name = endpoint_name
        self.max_message_size = (
            max_message_size
            if max_message_size is not None
            else manager.settings.ws_max_message_size
        )

        self.context: PeerContext | None = None
        self.peer_id: str | None = None

    async def run(self) -> None:
        """
        Main entry point - run the peer endpoint until the connection ends.
        """
        self.context = PeerContext.from_websocket(self.websocket, self.endpoint_name)

        # Step 1: Admission (refusal closes before accept -> HTTP 403)
        try:
            peer_id = self.manager.admit(self.websocket, self.context.remote_address)
        except AdmissionError as e:
            self.log_connect_rejected(str(e))
            code = (
                WSCloseCode.SERVER_OVERLOADED
                if isinstance(e, CapacityError)
                else WSCloseCode.GOING_AWAY
            )
            await self.websocket.close(code=code)
            return

        self.peer_id = peer_id
        self.context.peer_id = peer_id

        # Step 2: Handshake
        if not await self.manager.accept(self.websocket, peer_id):
            return

        token = bind_peer_id(peer_id)
        reason = "client_disconnect"
        try:
            # Step 3: Announce, then serve frames
            if not await self.manager.announce(peer_id):
                reason = "server_shutdown"
                return
            self.log_connect()
            reason = await self._message_loop()
        except TransportError as e:
            reason = "transport_error"
            self.manager.metrics.increment_transport_errors()
            logger.warning("Transport error", peer_id=peer_id, error=str(e))
        finally:
            # Step 4: Teardown (no-op if the monitor already evicted us)
            await self.manager.teardown(peer_id, reason)
            self.log_disconnect(reason)
            unbind_peer_id(token)

    async def _message_loop(self) -> str:
        """
        Receive loop with explicit dispatch on the ASGI message type.

        Frames are handled one at a time, so a peer's messages are routed in
        the order they arrived.

        Returns:
            Reason the loop ended.
        """
        while True:
            message = await self._receive()
            message_type = message.get("type")

            if message_type == "websocket.disconnect":
                logger.debug(
                    "Peer closed connection",
                    peer_id=self.peer_id,
                    code=message.get("code"),
                )
                return "client_disconnect"

            if message_type != "websocket.receive":
                continue

            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            if data is None:
                continue

            if not await self.validate_message_size(data):
                return "message_too_big"

            # Any inbound frame counts as a sign of life
            self.manager.record_heartbeat(self.peer_id)

            await self.handle_message(data)

    async def _receive(self) -> dict[str, Any]:
        """Receive the next ASGI message, mapping failures to TransportError."""
        try:
            return await self.websocket.receive()
        except Exception as e:
            raise TransportError(self.peer_id or "unknown", e) from e

    async def handle_message(self, data: str | bytes) -> None:
        """
        Handle one frame: heartbeat, or validate and route.

        Invalid frames are logged and dropped, the sender is never told.
        """
        if await handle_heartbeat(self.websocket, data):
            self.manager.metrics.increment_heartbeats()
            return

        try:
            parsed = parse_frame(data)
            if await handle_heartbeat(self.websocket, parsed):
                self.manager.metrics.increment_heartbeats()
                return
            envelope = validate_message(parsed)
        except ValidationError as e:
            self.manager.metrics.record_invalid(e.kind)
            logger.warning(
                "Dropped invalid message",
                peer_id=self.peer_id,
                kind=e.kind,
                error=str(e),
                message=sanitize_log_data(data),
            )
            return

        await self.manager.route(self.peer_id, envelope)
