"""
Key Manager - hierarchical deterministic identity and trade keys.

Every key comes from one BIP-39 seed along m/44'/1237'/38383'/0/<index>:
index 0 is the long-term identity key, every other index is a per-order trade
key handed out exactly once.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Dict, List, Optional, Union

from bip_utils import Bip32KeyError, Bip32KeyIndex, Bip32Slip10Secp256k1, Bip39SeedGenerator
from mnemonic import Mnemonic

from mostro.core.exceptions import ConfigurationError, KeyDerivationError
from mostro.security.crypto_utils import derive_public_key_hex
from mostro.security.key_index_store import KeyIndexStore, default_index_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeKeyRecord:
    """A derived key and the order it was issued for (``None`` for identity)."""

    order_id: Optional[str]
    key_index: int
    derived_key: str
    created_at: int


class KeyManager:
    """
    Deterministic key manager for Mostro identities.

    Implements:
    - BIP-32 derivation with hardened purpose/coin/account levels
    - Identity key at index 0
    - Trade keys from a monotonic counter, one per order, never reissued
    """

    DERIVATION_PURPOSE = 44
    MOSTRO_COIN_TYPE = 1237
    MOSTRO_ACCOUNT = 38383
    CHANGE_LEVEL = 0
    IDENTITY_INDEX = 0
    MAX_INDEX = 2 ** 31 - 1

    DERIVATION_PATH = f"m/{DERIVATION_PURPOSE}'/{MOSTRO_COIN_TYPE}'/{MOSTRO_ACCOUNT}'/{CHANGE_LEVEL}"

    def __init__(self, index_store: Optional[KeyIndexStore] = None) -> None:
        """
        Args:
            index_store: Persistence for the next trade key index. Defaults to
                ``default_index_store()``; the in-memory store only protects a
                single process.
        """
        self._index_store = index_store or default_index_store()
        self._lock = RLock()
        self._reset()

    def _reset(self) -> None:
        self._change_node: Optional[Bip32Slip10Secp256k1] = None
        self._identity: Optional[TradeKeyRecord] = None
        self._identity_public_key: Optional[str] = None
        self._trade_keys: Dict[str, TradeKeyRecord] = {}
        self._keys_by_public: Dict[str, str] = {}
        self._next_index = self.IDENTITY_INDEX + 1
        self._initialized = False

    # ===== lifecycle =====

    @staticmethod
    def _seed_from(seed: Union[str, bytes], passphrase: str) -> bytes:
        if isinstance(seed, (bytes, bytearray)):
            if not 16 <= len(seed) <= 64:
                raise KeyDerivationError("Seed must be 16 to 64 bytes", code="INVALID_SEED")
            return bytes(seed)
        if not isinstance(seed, str) or not Mnemonic("english").check(seed.strip()):
            raise KeyDerivationError("Invalid BIP-39 mnemonic phrase", code="INVALID_SEED")
        return Bip39SeedGenerator(seed.strip()).Generate(passphrase)

    def initialize(self, seed: Union[str, bytes], passphrase: str = "") -> None:
        """
        Derive the identity key (m/44'/1237'/38383'/0/0) from a mnemonic or raw seed.

        Raises:
            ConfigurationError: If already initialized
            KeyDerivationError: If the seed is invalid or derivation fails
        """
        with self._lock:
            if self._initialized:
                raise ConfigurationError("KeyManager already initialized", code="ALREADY_INITIALIZED")

            seed_bytes = self._seed_from(seed, passphrase)
            try:
                master = Bip32Slip10Secp256k1.FromSeed(seed_bytes)
                purpose = master.ChildKey(Bip32KeyIndex.HardenIndex(self.DERIVATION_PURPOSE))
                coin_type = purpose.ChildKey(Bip32KeyIndex.HardenIndex(self.MOSTRO_COIN_TYPE))
                account = coin_type.ChildKey(Bip32KeyIndex.HardenIndex(self.MOSTRO_ACCOUNT))
                self._change_node = account.ChildKey(self.CHANGE_LEVEL)
            except (Bip32KeyError, ValueError) as exc:
                self._change_node = None
                raise KeyDerivationError(
                    "Failed to derive account key", code="DERIVATION_FAILED"
                ) from exc

            identity_key = self._derive(self.IDENTITY_INDEX)
            self._identity = TradeKeyRecord(
                order_id=None,
                key_index=self.IDENTITY_INDEX,
                derived_key=identity_key,
                created_at=int(time.time()),
            )
            self._identity_public_key = derive_public_key_hex(identity_key)
            self._keys_by_public[self._identity_public_key] = identity_key
            self._next_index = max(self.IDENTITY_INDEX + 1, self._index_store.load(self._identity_public_key))
            self._initialized = True

            logger.info(
                "Key manager initialized, next trade index %d",
                self._next_index,
                extra={"event": "keys.initialized", "path": self.DERIVATION_PATH},
            )

    def clear(self) -> None:
        """Wipe all derived state; the manager behaves as never initialized."""
        with self._lock:
            self._reset()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized or self._change_node is None:
            raise ConfigurationError("Key manager not initialized", code="NOT_INITIALIZED")

    def _derive(self, index: int) -> str:
        try:
            return self._change_node.ChildKey(index).PrivateKey().Raw().ToHex()
        except (Bip32KeyError, ValueError) as exc:
            raise KeyDerivationError(
                f"Failed to derive key at index {index}", code="DERIVATION_FAILED"
            ) from exc

    # ===== derivation =====

    def get_key_by_index(self, index: int) -> str:
        """
        Derive the private key at ``index`` without recording it.

        The same seed and index always yield the same key, whatever was
        allocated before; used for recovery and audits.
        """
        with self._lock:
            self._require_initialized()
            if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= self.MAX_INDEX:
                raise KeyDerivationError(f"Invalid key index: {index!r}", code="INVALID_INDEX")
            return self._derive(index)

    def generate_trade_key(self, order_id: str) -> str:
        """
        Allocate the next index for ``order_id`` and return its private key.

        Raises:
            ConfigurationError: If not initialized
            KeyDerivationError: If the order already has a key or indexes ran out
        """
        with self._lock:
            self._require_initialized()
            if order_id in self._trade_keys:
                raise KeyDerivationError(
                    f"Trade key already issued for order {order_id}",
                    code="TRADE_KEY_EXISTS",
                )
            index = self._next_index
            if index > self.MAX_INDEX:
                raise KeyDerivationError("Trade key indexes exhausted", code="INDEX_EXHAUSTED")

            private_key = self._derive(index)
            self._next_index = index + 1
            self._index_store.save(self._identity_public_key, self._next_index)

            record = TradeKeyRecord(
                order_id=order_id,
                key_index=index,
                derived_key=private_key,
                created_at=int(time.time()),
            )
            self._trade_keys[order_id] = record
            self._keys_by_public[derive_public_key_hex(private_key)] = private_key

            logger.debug(
                "Issued trade key index %d",
                index,
                extra={"event": "keys.trade_key_issued", "order_id": order_id},
            )
            return private_key

    @staticmethod
    def get_public_key_from_private(private_key: str) -> str:
        """
        Return the x-only public key (hex) for ``private_key``.

        Raises:
            KeyDerivationError: If the private key is malformed
        """
        try:
            return derive_public_key_hex(private_key)
        except (ValueError, TypeError) as exc:
            raise KeyDerivationError(
                "Failed to generate public key", code="PUBLIC_KEY_GENERATION_FAILED"
            ) from exc

    # ===== lookups =====

    def get_identity_key(self) -> str:
        self._require_initialized()
        return self._identity.derived_key

    @property
    def identity_key(self) -> str:
        return self.get_identity_key()

    @property
    def identity_public_key(self) -> str:
        self._require_initialized()
        return self._identity_public_key

    def get_trade_key(self, order_id: str) -> Optional[str]:
        record = self._trade_keys.get(order_id)
        return record.derived_key if record else None

    def get_trade_key_record(self, order_id: str) -> Optional[TradeKeyRecord]:
        return self._trade_keys.get(order_id)

    def is_trade_key(self, private_key: str) -> bool:
        return any(record.derived_key == private_key for record in self._trade_keys.values())

    def get_next_key_index(self) -> int:
        return self._next_index

    def find_private_key(self, public_key: str) -> Optional[str]:
        """Private key whose public key is ``public_key``, among identity and trade keys."""
        if not isinstance(public_key, str):
            return None
        return self._keys_by_public.get(public_key.lower())

    def trade_keys(self) -> List[TradeKeyRecord]:
        """Snapshot of issued trade key records ordered by index."""
        with self._lock:
            return sorted(self._trade_keys.values(), key=lambda record: record.key_index)

    def public_keys(self) -> List[str]:
        """Identity public key followed by every trade public key."""
        with self._lock:
            return list(self._keys_by_public)
