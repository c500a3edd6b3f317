"""
Peer connection context for audit logging.

Encapsulates connection metadata so lifecycle events are logged with the
same fields everywhere.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from relay_gateway.components.core.constants import WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket


# Pattern to remove control characters from log data, including Unicode
# direction overrides used to disguise log lines
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'  # ASCII control characters
    r'\u200b-\u200f'  # Zero-width and direction marks
    r'\u202a-\u202e'  # Bidirectional text formatting (RTL override, etc.)
    r'\u2066-\u2069'  # Isolate formatting characters
    r'\ufeff]'  # BOM / Zero-width no-break space
)


def sanitize_log_data(data: str | bytes, max_length: int = WSConstants.LOG_PAYLOAD_PREVIEW) -> str:
    """
    Sanitize peer-provided data before logging.

    Truncates first so escaping cannot cut an escape sequence in half, then
    strips control characters and escapes JSON-dangerous characters.

    Args:
        data: Raw frame data (binary frames are decoded leniently).
        max_length: Maximum length to include in logs.

    Returns:
        Sanitized, truncated string safe for structured logging.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")

    truncated = data[:max_length] if len(data) > max_length else data
    was_truncated = len(data) > max_length

    sanitized = _CONTROL_CHAR_PATTERN.sub('', truncated)

    # Backslashes first to avoid double-escaping
    sanitized = sanitized.replace('\\', '\\\\')
    sanitized = sanitized.replace('"', '\\"')
    sanitized = sanitized.replace('\n', '\\n')
    sanitized = sanitized.replace('\r', '\\r')
    sanitized = sanitized.replace('\t', '\\t')

    if was_truncated:
        return sanitized + "..."
    return sanitized


def format_remote_address(websocket: "WebSocket") -> str | None:
    """Return ``host:port`` of the remote end, if the server reported it."""
    client = getattr(websocket, "client", None)
    if client is None:
        return None
    return f"{client.host}:{client.port}"


@dataclass
class PeerContext:
    """
    Context object for peer connection metadata.

    Usage:
        ctx = PeerContext.from_websocket(websocket, "/")
        ctx.peer_id = peer_id
        ctx.audit("CONNECT")
        # ... later
        ctx.audit("DISCONNECT", reason="client_disconnect")
    """

    endpoint: str
    remote_address: str | None = None
    origin: str | None = None
    peer_id: str | None = None

    @classmethod
    def from_websocket(cls, websocket: "WebSocket", endpoint: str) -> "PeerContext":
        """
        Create context from a WebSocket connection before admission.

        The peer id is filled in once the registry admits the connection.
        """
        return cls(
            endpoint=endpoint,
            remote_address=format_remote_address(websocket),
            origin=websocket.headers.get("origin"),
        )

    def to_audit_dict(self, event_type: str, **extra: Any) -> dict[str, Any]:
        """
        Convert to dictionary for audit logging.

        Only includes non-None fields to reduce log noise.
        """
        result: dict[str, Any] = {
            "event_type": event_type,
            "endpoint": self.endpoint,
        }

        if self.peer_id:
            result["peer_id"] = self.peer_id
        if self.remote_address:
            result["remote_address"] = self.remote_address
        if self.origin:
            result["origin"] = self.origin

        result.update(extra)

        return result

    def audit(
        self,
        event_type: str,
        logger_func: Any = None,
        **extra: Any,
    ) -> None:
        """
        Log an audit event with all context fields.

        Args:
            event_type: The audit event type.
            logger_func: Optional custom logger function
                (default: shared.config.logging.audit_ws_connection).
            **extra: Additional fields to log.
        """
        if logger_func is None:
            from shared.config.logging import audit_ws_connection
            logger_func = audit_ws_connection

        logger_func(**self.to_audit_dict(event_type, **extra))

    @property
    def identifier(self) -> str:
        """Human-readable identifier for this connection."""
        if self.peer_id:
            return f"peer:{self.peer_id}"
        if self.remote_address:
            return f"addr:{self.remote_address}"
        return "anonymous"
