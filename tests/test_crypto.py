"""Unit tests for the remote pairing crypto module."""

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from remote_pairing.core import crypto
from remote_pairing.core.errors import DecryptionFailedError


def test_hkdf_derivation():
    """Test HKDF key derivation."""
    shared_secret = b"shared_secret" * 4
    salt = b"Pair-Setup-Encrypt-Salt"
    info = b"Pair-Setup-Encrypt-Info"

    key1 = crypto.derive_hkdf_key(shared_secret, salt, info)
    key2 = crypto.derive_hkdf_key(shared_secret, salt, info)

    assert len(key1) == 32
    assert key1 == key2

    # Different context should produce different keys
    key3 = crypto.derive_hkdf_key(shared_secret, salt, b"other info")
    assert key1 != key3

    # No salt is allowed
    assert len(crypto.derive_hkdf_key(shared_secret, None, info, 16)) == 16


def test_tagged_nonce():
    """Test pair-setup nonce layout."""
    assert crypto.tagged_nonce(b"PS-Msg05") == b"\x00\x00\x00\x00PS-Msg05"
    with pytest.raises(ValueError):
        crypto.tagged_nonce(b"short")


def test_chacha20_roundtrip():
    """Test ChaCha20-Poly1305 encryption and decryption."""
    key = bytes(range(32))
    nonce = crypto.tagged_nonce(b"PS-Msg05")
    data = b"Hello device!"

    ciphertext = crypto.chacha20_encrypt(key, nonce, data)
    assert len(ciphertext) == len(data) + 16
    assert crypto.chacha20_decrypt(key, nonce, ciphertext) == data


def test_chacha20_tamper_detected():
    """Test that a modified ciphertext fails authentication."""
    key = bytes(range(32))
    nonce = crypto.tagged_nonce(b"PS-Msg06")
    ciphertext = bytearray(crypto.chacha20_encrypt(key, nonce, b"payload"))
    ciphertext[0] ^= 0x01

    with pytest.raises(DecryptionFailedError):
        crypto.chacha20_decrypt(key, nonce, bytes(ciphertext))
    with pytest.raises(DecryptionFailedError):
        crypto.chacha20_decrypt(
            key, crypto.tagged_nonce(b"PS-Msg05"), crypto.chacha20_encrypt(key, nonce, b"x")
        )


def test_generate_signing_key():
    """Test Ed25519 identity key generation."""
    private_key, public_key = crypto.generate_signing_key()

    assert isinstance(private_key, ed25519.Ed25519PrivateKey)
    assert len(public_key) == 32
    assert crypto.get_signing_public_bytes(private_key) == public_key

    signature = private_key.sign(b"message")
    ed25519.Ed25519PublicKey.from_public_bytes(public_key).verify(signature, b"message")


def test_tunnel_key_pair():
    """Test the RSA tunnel key and its DER encoding."""
    private_key, public_der = crypto.generate_tunnel_key_pair()

    assert isinstance(private_key, rsa.RSAPrivateKey)
    assert private_key.key_size == 2048
    loaded = crypto.load_public_key(public_der)
    assert crypto.encode_public_key(loaded) == public_der


def test_load_public_key_accepts_ec():
    """Test that device keys of other algorithms load."""
    ec_public = ec.generate_private_key(ec.SECP256R1()).public_key()
    der = ec_public.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    assert crypto.encode_public_key(crypto.load_public_key(der)) == der


def test_load_public_key_rejects_garbage():
    """Test that invalid DER raises ValueError."""
    with pytest.raises(ValueError):
        crypto.load_public_key(b"not a key")
