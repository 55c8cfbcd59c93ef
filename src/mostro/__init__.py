"""
Mostro - client engine for peer-to-peer bitcoin trading over Nostr

Main Components:
- Keys: deterministic identity and per-order trade keys
- Orders: listing codec, validation and local order preparation
- Envelopes: NIP-59 gift wraps over NIP-44 encryption
- Client: request correlation, active order cache and trading calls
"""

from mostro.client import Mostro, MostroObserver, OrderManager, PublicKeyType, RequestCorrelator
from mostro.core.exceptions import (
    ConfigurationError,
    CorrelationTimeout,
    CryptoError,
    DecodeError,
    DecryptionError,
    KeyDerivationError,
    MostroError,
    TransportError,
    ValidationError,
)
from mostro.core.info import MostroInfo
from mostro.core.messages import Action, MostroMessage
from mostro.core.order import Order, OrderStatus, OrderType
from mostro.network.envelope import UnwrappedMessage, unwrap, wrap
from mostro.network.events import NostrEvent
from mostro.network.relay_pool import RelayPool
from mostro.network.transport import MemoryRelay, MemoryTransport, Transport
from mostro.security.key_manager import KeyManager

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ConfigurationError",
    "CorrelationTimeout",
    "CryptoError",
    "DecodeError",
    "DecryptionError",
    "KeyDerivationError",
    "KeyManager",
    "MemoryRelay",
    "MemoryTransport",
    "Mostro",
    "MostroError",
    "MostroInfo",
    "MostroMessage",
    "MostroObserver",
    "NostrEvent",
    "Order",
    "OrderManager",
    "OrderStatus",
    "OrderType",
    "PublicKeyType",
    "RelayPool",
    "Transport",
    "TransportError",
    "UnwrappedMessage",
    "ValidationError",
    "unwrap",
    "wrap",
]
