"""
Relay core: connection lifecycle state machine.
"""
