"""
Relay Gateway Components.

Organized into domain-specific modules:
- core/       - Foundational components (constants, errors, context)
- connection/ - Peer registry and liveness monitor
- messages/   - Envelope variants and frame validation
- broadcast/  - Unicast / broadcast routing
- endpoints/  - Per-peer WebSocket endpoint (mixins, receive loop)
- metrics/    - Observability (collector, prometheus)

New code should import from specific submodules for clarity.
"""

# =============================================================================
# Core Components
# =============================================================================
from relay_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    ClientMessageType,
    ServerMessageType,
)
from relay_gateway.components.core.context import PeerContext, sanitize_log_data
from relay_gateway.components.core.errors import (
    RelayError,
    AdmissionError,
    CapacityError,
    ShutdownError,
    ValidationError,
    DeliveryError,
    TransportError,
    HeartbeatTimeoutError,
    BindError,
)

# =============================================================================
# Connection Management
# =============================================================================
from relay_gateway.components.connection.registry import Peer, PeerRegistry
from relay_gateway.components.connection.heartbeat import LivenessMonitor, handle_heartbeat

# =============================================================================
# Messages and Routing
# =============================================================================
from relay_gateway.components.messages.envelope import Envelope, ENVELOPE_TYPES
from relay_gateway.components.messages.validator import parse_frame, validate_message
from relay_gateway.components.broadcast.router import MessageRouter, is_ws_connected

# =============================================================================
# Metrics
# =============================================================================
from relay_gateway.components.metrics.collector import MetricsCollector

__all__ = [
    # Core
    "WSCloseCode",
    "WSConstants",
    "ClientMessageType",
    "ServerMessageType",
    "PeerContext",
    "sanitize_log_data",
    # Errors
    "RelayError",
    "AdmissionError",
    "CapacityError",
    "ShutdownError",
    "ValidationError",
    "DeliveryError",
    "TransportError",
    "HeartbeatTimeoutError",
    "BindError",
    # Connection
    "Peer",
    "PeerRegistry",
    "LivenessMonitor",
    "handle_heartbeat",
    # Messages and routing
    "Envelope",
    "ENVELOPE_TYPES",
    "parse_frame",
    "validate_message",
    "MessageRouter",
    "is_ws_connected",
    # Metrics
    "MetricsCollector",
]
