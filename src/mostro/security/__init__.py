"""
Mostro Security Module

Key handling and encryption:
- secp256k1 x-only keys, BIP-340 signatures and bech32 encoding
- NIP-44 and legacy NIP-04 encryption
- Hierarchical deterministic identity and trade keys
"""

__all__ = []
