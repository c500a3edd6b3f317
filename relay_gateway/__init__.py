"""
Signal Relay Gateway.

WebSocket rendezvous relay: peers connect, receive an id and the current
membership, and exchange signaling messages (offer / answer / candidate /
text) that the relay forwards either to one named peer or to everyone else.
"""

__version__ = "1.0.0"
