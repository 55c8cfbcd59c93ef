"""
Mostro Network Module

Nostr events, gift wrap envelopes and relay transports.
"""

__all__ = []
