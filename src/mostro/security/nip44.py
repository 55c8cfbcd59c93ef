"""
NIP-44 v2 payload encryption.

conversation key = HKDF-extract(salt="nip44-v2", ikm=ECDH shared x)
message keys     = HKDF-expand(conversation key, info=nonce, 76 bytes)
                   -> chacha key (32) | chacha nonce (12) | hmac key (32)
payload          = base64(0x02 | nonce (32) | ciphertext | hmac (32))
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import struct
from typing import Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from mostro.core.exceptions import CryptoError, DecryptionError
from mostro.security.crypto_utils import shared_secret_x

VERSION = 2
SALT = b"nip44-v2"
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535


def get_conversation_key(private_hex: str, public_hex: str) -> bytes:
    """Symmetric key shared by (a_priv, B_pub) and (b_priv, A_pub)."""
    try:
        shared_x = shared_secret_x(private_hex, public_hex)
    except (ValueError, TypeError) as exc:
        raise CryptoError("Cannot derive conversation key", details={"reason": str(exc)}) from exc
    return hmac.new(SALT, shared_x, hashlib.sha256).digest()


def _message_keys(conversation_key: bytes, nonce: bytes) -> Tuple[bytes, bytes, bytes]:
    if len(conversation_key) != 32:
        raise CryptoError("Conversation key must be 32 bytes")
    if len(nonce) != 32:
        raise CryptoError("Nonce must be 32 bytes")
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(conversation_key)
    return keys[0:32], keys[32:44], keys[44:76]


def calc_padded_len(unpadded_len: int) -> int:
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    raw = plaintext.encode("utf-8")
    if not (MIN_PLAINTEXT_SIZE <= len(raw) <= MAX_PLAINTEXT_SIZE):
        raise CryptoError("Plaintext size must be between 1 and 65535 bytes")
    return struct.pack(">H", len(raw)) + raw + bytes(calc_padded_len(len(raw)) - len(raw))


def _unpad(padded: bytes) -> str:
    (length,) = struct.unpack(">H", padded[:2])
    unpadded = padded[2:2 + length]
    if (
        length == 0
        or len(unpadded) != length
        or len(padded) != 2 + calc_padded_len(length)
    ):
        raise DecryptionError("Invalid padding")
    return unpadded.decode("utf-8")


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 32-bit little-endian counter + 96-bit nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00\x00\x00\x00" + nonce), mode=None)
    return cipher.encryptor().update(data)


def _hmac_aad(key: bytes, message: bytes, aad: bytes) -> bytes:
    return hmac.new(key, aad + message, hashlib.sha256).digest()


def encrypt(plaintext: str, conversation_key: bytes, nonce: Optional[bytes] = None) -> str:
    """Encrypt ``plaintext``; ``nonce`` is only passed explicitly by test vectors."""
    nonce = nonce if nonce is not None else secrets.token_bytes(32)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = _hmac_aad(hmac_key, ciphertext, nonce)
    return base64.b64encode(bytes([VERSION]) + nonce + ciphertext + mac).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """Authenticate and decrypt a NIP-44 v2 payload.

    Raises:
        DecryptionError: On unknown version, bad encoding, MAC mismatch or padding
    """
    if not payload or payload[0] == "#":
        raise DecryptionError("Unknown encryption version")
    if not (132 <= len(payload) <= 87472):
        raise DecryptionError("Invalid payload size")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Invalid base64") from exc
    if not (99 <= len(data) <= 65603):
        raise DecryptionError("Invalid data size")
    if data[0] != VERSION:
        raise DecryptionError(f"Unknown encryption version {data[0]}")

    nonce, ciphertext, mac = data[1:33], data[33:-32], data[-32:]
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    if not hmac.compare_digest(_hmac_aad(hmac_key, ciphertext, nonce), mac):
        raise DecryptionError("Invalid MAC")
    try:
        return _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
    except (struct.error, UnicodeDecodeError) as exc:
        raise DecryptionError("Invalid plaintext") from exc


def encrypt_message(plaintext: str, private_hex: str, public_hex: str) -> str:
    return encrypt(plaintext, get_conversation_key(private_hex, public_hex))


def decrypt_message(payload: str, private_hex: str, public_hex: str) -> str:
    return decrypt(payload, get_conversation_key(private_hex, public_hex))
