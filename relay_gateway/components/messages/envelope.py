"""
Envelope Value Objects for the relay.

Each client message type is a frozen variant carrying exactly the fields its
type requires as typed attributes. The complete sender payload is kept
alongside so fields the relay does not interpret (text content, custom
metadata) are forwarded verbatim.

System envelopes (id, peer-joined, peer-left, server-shutdown, ping) are
plain dicts built by the helpers at the bottom of this module.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Self

from relay_gateway.components.core.constants import ClientMessageType, ServerMessageType
from relay_gateway.components.core.errors import MissingField

# Stamped by the relay on every relayed envelope, never taken from the sender
SERVER_STAMPED_FIELDS: frozenset[str] = frozenset({"type", "from", "timestamp"})


def now_ms() -> int:
    """Current Unix time in milliseconds (the wire timestamp format)."""
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True, kw_only=True)
class Envelope:
    """
    Base variant for peer-originated envelopes.

    Attributes:
        to: Requested unicast target, as sent (may be None or any JSON value).
        payload: Every sender field except type/from/timestamp.
    """

    TYPE: ClassVar[ClientMessageType]
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ()

    to: Any = None
    payload: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Self:
        """
        Build the variant from a parsed JSON object.

        Raises:
            MissingField: A field required by this type is absent.
        """
        for name in cls.REQUIRED_FIELDS:
            if name not in data:
                raise MissingField(cls.TYPE.value, name)

        payload = {
            k: copy.deepcopy(v) for k, v in data.items() if k not in SERVER_STAMPED_FIELDS
        }
        return cls(
            to=payload.get("to"),
            payload=MappingProxyType(payload),
            **cls._typed_fields(payload),
        )

    @classmethod
    def _typed_fields(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Extract the attributes specific to a variant."""
        return {}

    @property
    def message_type(self) -> str:
        """Wire value of the envelope type."""
        return self.TYPE.value

    @property
    def target(self) -> str | None:
        """Unicast target id, or None when the envelope is a broadcast."""
        if isinstance(self.to, str) and self.to:
            return self.to
        return None

    def to_wire(self, sender_id: str, timestamp: int | None = None) -> dict[str, Any]:
        """
        Serialize for delivery, stamping sender and time.

        Whatever the sender put in `from` or `timestamp` was already dropped
        at parse time; these values always come from the relay.
        """
        return {
            "type": self.message_type,
            **self.payload,
            "from": sender_id,
            "timestamp": timestamp if timestamp is not None else now_ms(),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class JoinMessage(Envelope):
    TYPE: ClassVar[ClientMessageType] = ClientMessageType.JOIN


@dataclass(frozen=True, slots=True, kw_only=True)
class LeaveMessage(Envelope):
    TYPE: ClassVar[ClientMessageType] = ClientMessageType.LEAVE


@dataclass(frozen=True, slots=True, kw_only=True)
class TextMessage(Envelope):
    """Free-form chat message. `content` is optional and opaque."""

    TYPE: ClassVar[ClientMessageType] = ClientMessageType.TEXT_MESSAGE

    content: Any = None

    @classmethod
    def _typed_fields(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"content": payload.get("content")}


@dataclass(frozen=True, slots=True, kw_only=True)
class OfferMessage(Envelope):
    """SDP offer. The session description is relayed, never parsed."""

    TYPE: ClassVar[ClientMessageType] = ClientMessageType.OFFER
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("sdp", "sdpType")

    sdp: Any
    sdp_type: Any

    @classmethod
    def _typed_fields(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"sdp": payload["sdp"], "sdp_type": payload["sdpType"]}


@dataclass(frozen=True, slots=True, kw_only=True)
class AnswerMessage(Envelope):
    """SDP answer. Same shape as an offer."""

    TYPE: ClassVar[ClientMessageType] = ClientMessageType.ANSWER
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("sdp", "sdpType")

    sdp: Any
    sdp_type: Any

    @classmethod
    def _typed_fields(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"sdp": payload["sdp"], "sdp_type": payload["sdpType"]}


@dataclass(frozen=True, slots=True, kw_only=True)
class CandidateMessage(Envelope):
    """ICE candidate. Any JSON value is accepted as the candidate."""

    TYPE: ClassVar[ClientMessageType] = ClientMessageType.CANDIDATE
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("candidate",)

    candidate: Any

    @classmethod
    def _typed_fields(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"candidate": payload["candidate"]}


# Type tag -> variant
ENVELOPE_TYPES: Mapping[str, type[Envelope]] = MappingProxyType({
    cls.TYPE.value: cls
    for cls in (
        JoinMessage,
        OfferMessage,
        AnswerMessage,
        CandidateMessage,
        LeaveMessage,
        TextMessage,
    )
})


# =============================================================================
# System envelopes
# =============================================================================


def welcome_envelope(peer_id: str, peers: list[str]) -> dict[str, Any]:
    """Sent to a newly admitted peer: its id and who else is connected."""
    return {
        "type": ServerMessageType.ID.value,
        "id": peer_id,
        "peers": list(peers),
        "timestamp": now_ms(),
    }


def peer_joined_envelope(peer_id: str) -> dict[str, Any]:
    return {
        "type": ServerMessageType.PEER_JOINED.value,
        "id": peer_id,
        "timestamp": now_ms(),
    }


def peer_left_envelope(peer_id: str) -> dict[str, Any]:
    return {
        "type": ServerMessageType.PEER_LEFT.value,
        "id": peer_id,
        "timestamp": now_ms(),
    }


def server_shutdown_envelope(message: str) -> dict[str, Any]:
    return {
        "type": ServerMessageType.SERVER_SHUTDOWN.value,
        "message": message,
        "timestamp": now_ms(),
    }


def ping_envelope() -> dict[str, Any]:
    """Liveness probe. Peers answer with {"type": "pong"}."""
    return {
        "type": ServerMessageType.PING.value,
        "timestamp": now_ms(),
    }
