"""Utility helpers for secp256k1 x-only keys, BIP-340 signatures and ECDH."""

from __future__ import annotations

import secrets
import uuid
from typing import Tuple

import coincurve
from bip_utils import Bech32ChecksumError, Bech32Decoder, Bech32Encoder
from cryptography.hazmat.primitives.asymmetric import ec

_CURVE = ec.SECP256K1()
_CURVE_ORDER = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

NPUB_PREFIX = "npub"
NSEC_PREFIX = "nsec"


def _private_key_to_hex(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.private_numbers().private_value.to_bytes(32, "big").hex()


def _public_key_to_xonly_hex(public_key: ec.EllipticCurvePublicKey) -> str:
    return public_key.public_numbers().x.to_bytes(32, "big").hex()


def private_key_bytes(private_hex: str) -> bytes:
    """Decode a hex private key, rejecting values outside [1, n-1].

    Raises:
        ValueError: If the value is not 32 bytes of hex or not a valid scalar
    """
    if not isinstance(private_hex, str):
        raise ValueError("Private key must be a hex string.")
    raw = bytes.fromhex(private_hex)
    if len(raw) != 32:
        raise ValueError("Private key must be 32 bytes.")
    value = int.from_bytes(raw, "big")
    if not (1 <= value < _CURVE_ORDER):
        raise ValueError("Private key out of curve range.")
    return raw


def load_private_key_from_hex(private_hex: str) -> ec.EllipticCurvePrivateKey:
    return ec.derive_private_key(int.from_bytes(private_key_bytes(private_hex), "big"), _CURVE)


def load_xonly_public_key(public_hex: str) -> ec.EllipticCurvePublicKey:
    """Lift a 32-byte x-only public key to the point with even y (BIP-340)."""
    raw = bytes.fromhex(public_hex)
    if len(raw) != 32:
        raise ValueError("Public key hex must be 32 bytes (x-only).")
    return ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, b"\x02" + raw)


def generate_keypair_hex() -> Tuple[str, str]:
    private_key = ec.generate_private_key(_CURVE)
    return _private_key_to_hex(private_key), _public_key_to_xonly_hex(private_key.public_key())


def generate_private_key_hex() -> str:
    return generate_keypair_hex()[0]


def derive_public_key_hex(private_hex: str) -> str:
    """Return the x-only public key for a private key."""
    private_key = load_private_key_from_hex(private_hex)
    return _public_key_to_xonly_hex(private_key.public_key())


def shared_secret_x(private_hex: str, public_hex: str) -> bytes:
    """ECDH on secp256k1, returning the 32-byte x coordinate of the shared point."""
    private_key = load_private_key_from_hex(private_hex)
    return private_key.exchange(ec.ECDH(), load_xonly_public_key(public_hex))


def schnorr_sign(private_hex: str, message: bytes) -> str:
    """BIP-340 signature over a 32-byte message digest."""
    if len(message) != 32:
        raise ValueError("Schnorr signatures are made over 32-byte digests.")
    signer = coincurve.PrivateKey(private_key_bytes(private_hex))
    return signer.sign_schnorr(message, secrets.token_bytes(32)).hex()


def schnorr_verify(public_hex: str, message: bytes, signature_hex: str) -> bool:
    try:
        signature = bytes.fromhex(signature_hex)
        if len(signature) != 64 or len(message) != 32:
            return False
        return coincurve.PublicKeyXOnly(bytes.fromhex(public_hex)).verify(signature, message)
    except (ValueError, TypeError):
        return False


def is_valid_public_key_hex(public_hex: str) -> bool:
    try:
        load_xonly_public_key(public_hex)
    except (ValueError, TypeError):
        return False
    return True


# ===== NIP-19 bech32 encodings =====

def encode_public_key(public_hex: str) -> str:
    raw = bytes.fromhex(public_hex)
    if len(raw) != 32:
        raise ValueError("Public key hex must be 32 bytes.")
    return Bech32Encoder.Encode(NPUB_PREFIX, raw)


def encode_private_key(private_hex: str) -> str:
    return Bech32Encoder.Encode(NSEC_PREFIX, private_key_bytes(private_hex))


def decode_bech32_key(value: str, prefix: str) -> str:
    """Decode an ``npub``/``nsec`` string to hex.

    Raises:
        ValueError: On a wrong prefix, bad checksum or wrong payload length
    """
    try:
        raw = Bech32Decoder.Decode(prefix, value)
    except Bech32ChecksumError as exc:
        raise ValueError(f"Invalid {prefix} checksum") from exc
    if len(raw) != 32:
        raise ValueError(f"Invalid {prefix} payload length")
    return bytes(raw).hex()


def normalize_public_key(value: str) -> str:
    """Accept a hex or ``npub`` public key and return lowercase hex."""
    value = value.strip()
    if value.startswith(NPUB_PREFIX + "1"):
        return decode_bech32_key(value, NPUB_PREFIX)
    if not is_valid_public_key_hex(value):
        raise ValueError("Public key must be 32-byte hex or npub.")
    return value.lower()


def generate_id() -> str:
    return str(uuid.uuid4())
