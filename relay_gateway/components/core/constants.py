"""
Relay Gateway Constants.

Centralized constants with documentation explaining rationale for each value.
"""

from enum import IntEnum, StrEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "ClientMessageType",
    "ServerMessageType",
    "MSG_PING_PLAIN",
    "MSG_PONG_PLAIN",
    "MSG_PONG_JSON",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the relay.

    Standard codes (1000-1999) from RFC 6455.
    """

    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down or peer evicted
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_OVERLOADED = 1013  # Registry at MAX_CLIENTS, try again later


class ClientMessageType(StrEnum):
    """Envelope types a peer may send. Anything else is dropped."""

    JOIN = "join"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    LEAVE = "leave"
    TEXT_MESSAGE = "text-message"


class ServerMessageType(StrEnum):
    """Envelope types originated by the relay itself."""

    ID = "id"
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"
    SERVER_SHUTDOWN = "server-shutdown"
    PING = "ping"
    PONG = "pong"


class WSConstants:
    """
    Relay operational constants.

    Values that operators tune live in shared.config.settings; these are
    internal defaults and protocol constants.
    """

    # ==========================================================================
    # Liveness Constants
    # ==========================================================================

    # HEARTBEAT_INTERVAL: 30 seconds
    # Rationale: Cheap enough to run with a handful of peers. A peer that
    # stops answering is seen by at most two sweeps before eviction, so the
    # worst case detection time is timeout + interval (~90s).
    HEARTBEAT_INTERVAL: Final[float] = 30.0

    # HEARTBEAT_TIMEOUT: 60 seconds
    # Rationale: Two probe periods. One lost pong is tolerated, two are not.
    HEARTBEAT_TIMEOUT: Final[float] = 60.0

    # ==========================================================================
    # Handshake Constants
    # ==========================================================================

    # WS_ACCEPT_TIMEOUT: 5 seconds
    # Rationale: WebSocket handshake should complete within TCP timeout.
    # 5 seconds handles slow networks while rejecting stuck connections.
    WS_ACCEPT_TIMEOUT: Final[float] = 5.0

    # MAX_CLIENTS: 10
    # Rationale: The relay is meant for small mesh calls where every peer
    # negotiates with every other peer. Beyond ~10 a full mesh is no longer
    # practical for browsers anyway.
    MAX_CLIENTS: Final[int] = 10

    # ==========================================================================
    # Logging Constants
    # ==========================================================================

    # LOG_PAYLOAD_PREVIEW: 100 characters
    # Rationale: Enough to recognise a malformed frame in logs without
    # copying whole SDP blobs (several KB) into every warning.
    LOG_PAYLOAD_PREVIEW: Final[int] = 100

    # ==========================================================================
    # Shutdown Constants
    # ==========================================================================

    # SHUTDOWN_CLOSE_TIMEOUT: 5 seconds
    # Rationale: Upper bound for pushing server-shutdown and closing one
    # connection. A stuck peer must not hold the whole shutdown sequence.
    SHUTDOWN_CLOSE_TIMEOUT: Final[float] = 5.0

    # SERVER_START_TIMEOUT: 10 seconds
    # Rationale: uvicorn startup (lifespan + listen) takes milliseconds;
    # anything slower than this is treated as a failed start.
    SERVER_START_TIMEOUT: Final[float] = 10.0


# =============================================================================
# Heartbeat message formats
# =============================================================================

# Clients may send either plain text or JSON heartbeats
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PONG_PLAIN: Final[str] = "pong"
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'
