"""
Tests for secp256k1 key helpers, BIP-340 signatures and NIP-19 encoding.
"""

import pytest

from mostro.security.crypto_utils import (
    decode_bech32_key,
    derive_public_key_hex,
    encode_private_key,
    encode_public_key,
    generate_keypair_hex,
    is_valid_public_key_hex,
    normalize_public_key,
    private_key_bytes,
    schnorr_sign,
    schnorr_verify,
    shared_secret_x,
)

GENERATOR_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
NIP19_HEX = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"
NIP19_NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"


class TestKeys:
    """Key derivation and parsing."""

    def test_public_key_of_one_is_generator_x(self):
        assert derive_public_key_hex("00" * 31 + "01") == GENERATOR_X

    def test_generated_keypair_is_consistent(self):
        private_hex, public_hex = generate_keypair_hex()
        assert len(private_hex) == 64
        assert derive_public_key_hex(private_hex) == public_hex

    @pytest.mark.parametrize(
        "value",
        [
            "00" * 32,
            "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141",
            "abcd",
            "zz" * 32,
        ],
    )
    def test_invalid_private_keys_rejected(self, value):
        with pytest.raises(ValueError):
            private_key_bytes(value)

    def test_public_key_validation(self):
        assert is_valid_public_key_hex(GENERATOR_X)
        assert not is_valid_public_key_hex("00" * 31)
        assert not is_valid_public_key_hex("not hex")


class TestSignatures:
    """BIP-340 Schnorr signatures."""

    def test_sign_and_verify(self, alice):
        private_hex, public_hex = alice
        digest = bytes(range(32))
        signature = schnorr_sign(private_hex, digest)
        assert len(signature) == 128
        assert schnorr_verify(public_hex, digest, signature)

    def test_tampered_message_fails(self, alice):
        private_hex, public_hex = alice
        signature = schnorr_sign(private_hex, bytes(32))
        assert not schnorr_verify(public_hex, b"\x01" + bytes(31), signature)

    def test_wrong_key_fails(self, alice, bob):
        signature = schnorr_sign(alice[0], bytes(32))
        assert not schnorr_verify(bob[1], bytes(32), signature)

    def test_malformed_signature_is_false(self, alice):
        assert not schnorr_verify(alice[1], bytes(32), "abc")

    def test_sign_requires_digest(self, alice):
        with pytest.raises(ValueError):
            schnorr_sign(alice[0], b"short")


class TestSharedSecret:
    """ECDH over x-only keys."""

    def test_shared_secret_is_symmetric(self, alice, bob):
        assert shared_secret_x(alice[0], bob[1]) == shared_secret_x(bob[0], alice[1])
        assert len(shared_secret_x(alice[0], bob[1])) == 32


class TestBech32:
    """NIP-19 npub/nsec encoding."""

    def test_known_npub(self):
        assert encode_public_key(NIP19_HEX) == NIP19_NPUB
        assert decode_bech32_key(NIP19_NPUB, "npub") == NIP19_HEX

    def test_nsec_round_trip(self, alice):
        nsec = encode_private_key(alice[0])
        assert nsec.startswith("nsec1")
        assert decode_bech32_key(nsec, "nsec") == alice[0]

    def test_corrupted_npub_rejected(self):
        corrupted = NIP19_NPUB[:-1] + ("q" if NIP19_NPUB[-1] != "q" else "p")
        with pytest.raises(ValueError):
            decode_bech32_key(corrupted, "npub")

    def test_normalize_accepts_hex_and_npub(self):
        assert normalize_public_key(NIP19_NPUB) == NIP19_HEX
        assert normalize_public_key(NIP19_HEX.upper()) == NIP19_HEX

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValueError):
            normalize_public_key("hello")
