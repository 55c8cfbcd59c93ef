"""Legacy NIP-04 direct message encryption (AES-256-CBC under the raw ECDH x)."""

from __future__ import annotations

import base64
import binascii
import secrets

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from mostro.core.exceptions import CryptoError, DecryptionError
from mostro.security.crypto_utils import shared_secret_x

_IV_SEPARATOR = "?iv="


def _shared_key(private_hex: str, public_hex: str) -> bytes:
    try:
        return shared_secret_x(private_hex, public_hex)
    except (ValueError, TypeError) as exc:
        raise CryptoError("Cannot derive NIP-04 shared key", details={"reason": str(exc)}) from exc


def encrypt(plaintext: str, private_hex: str, public_hex: str) -> str:
    iv = secrets.token_bytes(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_shared_key(private_hex, public_hex)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return (
        base64.b64encode(ciphertext).decode("ascii")
        + _IV_SEPARATOR
        + base64.b64encode(iv).decode("ascii")
    )


def decrypt(content: str, private_hex: str, public_hex: str) -> str:
    """Decrypt ``base64(ciphertext)?iv=base64(iv)``.

    Raises:
        DecryptionError: On malformed content or a wrong key
    """
    ciphertext_b64, separator, iv_b64 = content.partition(_IV_SEPARATOR)
    if not separator:
        raise DecryptionError("Missing NIP-04 iv")
    try:
        ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        iv = base64.b64decode(iv_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Invalid NIP-04 base64") from exc
    if len(iv) != 16 or not ciphertext or len(ciphertext) % 16:
        raise DecryptionError("Invalid NIP-04 payload size")

    decryptor = Cipher(algorithms.AES(_shared_key(private_hex, public_hex)), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    try:
        unpadder = padding.PKCS7(128).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecryptionError("Invalid NIP-04 padding") from exc
