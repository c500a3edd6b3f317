"""
Message components.

Envelope variants for peer messages, system envelope builders and the
inbound frame validator.
"""

from relay_gateway.components.messages.envelope import (
    Envelope,
    JoinMessage,
    OfferMessage,
    AnswerMessage,
    CandidateMessage,
    LeaveMessage,
    TextMessage,
    ENVELOPE_TYPES,
    now_ms,
    welcome_envelope,
    peer_joined_envelope,
    peer_left_envelope,
    server_shutdown_envelope,
    ping_envelope,
)
from relay_gateway.components.messages.validator import (
    parse_frame,
    validate,
    validate_message,
)

__all__ = [
    "Envelope",
    "JoinMessage",
    "OfferMessage",
    "AnswerMessage",
    "CandidateMessage",
    "LeaveMessage",
    "TextMessage",
    "ENVELOPE_TYPES",
    "now_ms",
    "welcome_envelope",
    "peer_joined_envelope",
    "peer_left_envelope",
    "server_shutdown_envelope",
    "ping_envelope",
    "parse_frame",
    "validate",
    "validate_message",
]
