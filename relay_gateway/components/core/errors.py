"""
Relay error taxonomy.

Every error is scoped to a single peer except BindError, which is the only
condition the relay cannot recover from.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""


# =============================================================================
# Admission
# =============================================================================


class AdmissionError(RelayError):
    """A handshake was refused before the WebSocket was accepted."""


class CapacityError(AdmissionError):
    """Registry is at MAX_CLIENTS."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Relay at capacity ({capacity} peers)")


class ShutdownError(AdmissionError):
    """Relay is shutting down and no longer admits peers."""

    def __init__(self) -> None:
        super().__init__("Relay is shutting down")


# =============================================================================
# Validation
# =============================================================================


class ValidationError(RelayError):
    """
    An inbound frame failed validation.

    Validation errors never travel back to the sender: the frame is logged
    and dropped.
    """

    kind = "invalid"

    def __init__(self, message: str, message_type: str | None = None):
        self.message_type = message_type
        super().__init__(message)


class MalformedPayload(ValidationError):
    """Frame is not a JSON object."""

    kind = "malformed_payload"


class UnknownType(ValidationError):
    """`type` missing, not a string or not in the allowed set."""

    kind = "unknown_type"


class MissingField(ValidationError):
    """A field required by the message type is absent."""

    kind = "missing_field"

    def __init__(self, message_type: str, field: str):
        self.field = field
        super().__init__(f"'{message_type}' message requires '{field}'", message_type)


# =============================================================================
# Delivery and transport
# =============================================================================


class DeliveryError(RelayError):
    """Sending to one peer failed. Isolated to that target."""

    def __init__(self, peer_id: str, reason: str):
        self.peer_id = peer_id
        self.reason = reason
        super().__init__(f"Delivery to {peer_id} failed: {reason}")


class TransportError(RelayError):
    """Connection-level failure reported while receiving from a peer."""

    def __init__(self, peer_id: str, cause: BaseException | None = None):
        self.peer_id = peer_id
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause else "connection lost"
        super().__init__(f"Transport error on {peer_id}: {detail}")


class HeartbeatTimeoutError(TransportError):
    """Peer stayed silent past the heartbeat timeout."""

    def __init__(self, peer_id: str, silence: float):
        self.silence = silence
        super().__init__(peer_id)
        self.args = (f"Peer {peer_id} silent for {silence:.1f}s",)


# =============================================================================
# Process control
# =============================================================================


class BindError(RelayError):
    """The listening socket could not be bound."""

    def __init__(self, host: str, port: int, cause: OSError):
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(f"Cannot listen on {host}:{port}: {cause}")
