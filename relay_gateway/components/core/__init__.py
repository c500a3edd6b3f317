"""
Core relay components.

Foundational components: constants, error taxonomy and connection context.
"""

from relay_gateway.components.core.constants import WSCloseCode, WSConstants
from relay_gateway.components.core.context import PeerContext, sanitize_log_data

__all__ = [
    # Constants
    "WSCloseCode",
    "WSConstants",
    # Context
    "PeerContext",
    "sanitize_log_data",
]
