from __future__ import annotations

import logging
from typing import Final

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_der_public_key,
)

from ..const import KEY_SIZE, NONCE_SIZE, TUNNEL_RSA_KEY_SIZE
from .errors import DecryptionFailedError

_LOGGER = logging.getLogger(__name__)

# Pair-setup nonces are four zero bytes followed by an eight byte ASCII tag
NONCE_TAG_PREFIX: Final = b"\x00" * 4


def derive_hkdf_key(
    secret: bytes, salt: bytes | None, info: bytes, length: int = KEY_SIZE
) -> bytes:
    """Derive a key using HKDF-SHA512.

    Args:
        secret: The input keying material.
        salt: Optional salt.
        info: Context and application specific information.
        length: Desired output key length in bytes.

    Returns:
        The derived key.
    """
    _LOGGER.debug("Deriving HKDF key with info: %s, salt: %s", info, salt)
    hkdf = HKDF(
        algorithm=hashes.SHA512(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(secret)


def tagged_nonce(tag: bytes) -> bytes:
    """Build a 12-byte pair-setup nonce ending with an 8 byte tag."""
    if len(NONCE_TAG_PREFIX) + len(tag) != NONCE_SIZE:
        raise ValueError(f"Invalid nonce tag length: {len(tag)}")
    return NONCE_TAG_PREFIX + tag


def chacha20_encrypt(
    key: bytes, nonce: bytes, data: bytes, aad: bytes | None = None
) -> bytes:
    """Encrypt data using ChaCha20-Poly1305.

    Returns:
        The ciphertext followed by the 16-byte authentication tag.
    """
    return ChaCha20Poly1305(key).encrypt(nonce, data, aad)


def chacha20_decrypt(
    key: bytes, nonce: bytes, data: bytes, aad: bytes | None = None
) -> bytes:
    """Decrypt data using ChaCha20-Poly1305.

    Raises:
        DecryptionFailedError: The tag did not verify.
    """
    try:
        return ChaCha20Poly1305(key).decrypt(nonce, data, aad)
    except InvalidTag as err:
        raise DecryptionFailedError("Authenticated decryption failed") from err


def generate_signing_key() -> tuple[ed25519.Ed25519PrivateKey, bytes]:
    """Generate an Ed25519 key pair.

    Returns:
        A tuple containing the private key object and the raw 32-byte public key.
    """
    private_key = ed25519.Ed25519PrivateKey.generate()
    return private_key, get_signing_public_bytes(private_key)


def get_signing_public_bytes(private_key: ed25519.Ed25519PrivateKey) -> bytes:
    """Get the raw 32-byte Ed25519 public key."""
    return private_key.public_key().public_bytes(
        encoding=Encoding.Raw, format=PublicFormat.Raw
    )


def generate_tunnel_key_pair() -> tuple[rsa.RSAPrivateKey, bytes]:
    """Generate the RSA key pair that secures the data-plane tunnel.

    Returns:
        A tuple containing the private key object and the DER encoded
        SubjectPublicKeyInfo of its public half.
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537, key_size=TUNNEL_RSA_KEY_SIZE
    )
    return private_key, encode_public_key(private_key.public_key())


def encode_public_key(public_key: PublicKeyTypes) -> bytes:
    """Encode a public key as DER SubjectPublicKeyInfo."""
    return public_key.public_bytes(
        encoding=Encoding.DER, format=PublicFormat.SubjectPublicKeyInfo
    )


def load_public_key(der: bytes) -> PublicKeyTypes:
    """Parse a DER SubjectPublicKeyInfo blob.

    Raises:
        ValueError: The blob is not a supported public key.
    """
    try:
        return load_der_public_key(der)
    except UnsupportedAlgorithm as err:
        raise ValueError(f"Unsupported public key algorithm: {err}") from err
