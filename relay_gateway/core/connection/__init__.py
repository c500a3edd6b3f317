"""
Connection lifecycle management.
"""

from relay_gateway.core.connection.lifecycle import ConnectionLifecycle

__all__ = ["ConnectionLifecycle"]
