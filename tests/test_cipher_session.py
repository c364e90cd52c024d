"""Tests for the main channel cipher session."""

import pytest

from remote_pairing.core.cipher_session import CipherSession, NonceSequence
from remote_pairing.core.errors import DecryptionFailedError, NonceExhaustedError

from .fake_device import DeviceChannel, counter_nonce

SECRET = bytes(range(64))


def test_setup_is_deterministic():
    """Test that the same secret yields the same keys."""
    first = CipherSession.setup(SECRET)
    second = CipherSession.setup(SECRET)
    assert first.client_key == second.client_key
    assert first.server_key == second.server_key
    assert first.client_key != first.server_key
    assert len(first.client_key) == 32


def test_setup_matches_device_derivation():
    """Test key derivation against an independent HKDF computation."""
    session = CipherSession.setup(SECRET)
    device = DeviceChannel(SECRET)
    assert session.client_key == device.client_key
    assert session.server_key == device.server_key


def test_setup_rejects_empty_secret():
    """Test that an empty secret is refused."""
    with pytest.raises(ValueError):
        CipherSession.setup(b"")


def test_messages_in_both_directions():
    """Test many messages with independent counters."""
    session = CipherSession.setup(SECRET)
    device = DeviceChannel(SECRET)

    for index in range(5):
        outgoing = f"request {index}".encode()
        assert device.decrypt(session.encrypt_outgoing(outgoing)) == outgoing
    for index in range(3):
        incoming = f"response {index}".encode()
        assert session.decrypt_incoming(device.encrypt(incoming)) == incoming

    assert session.nonces.client_counter == 5
    assert session.nonces.server_counter == 3


def test_replayed_message_is_rejected():
    """Test that a replayed message fails because the counter moved on."""
    session = CipherSession.setup(SECRET)
    device = DeviceChannel(SECRET)
    ciphertext = device.encrypt(b"once")

    assert session.decrypt_incoming(ciphertext) == b"once"
    with pytest.raises(DecryptionFailedError):
        session.decrypt_incoming(ciphertext)


def test_failed_decryption_still_advances():
    """Test that the server counter advances on failure."""
    session = CipherSession.setup(SECRET)
    device = DeviceChannel(SECRET)
    device.encrypt(b"lost")

    with pytest.raises(DecryptionFailedError):
        session.decrypt_incoming(b"\x00" * 20)
    assert session.nonces.server_counter == 1
    assert session.decrypt_incoming(device.encrypt(b"next")) == b"next"


def test_client_key_cannot_open_device_messages():
    """Test that directions use different keys."""
    session = CipherSession.setup(SECRET)
    with pytest.raises(DecryptionFailedError):
        session.decrypt_incoming(session.encrypt_outgoing(b"echo"))


class TestNonceSequence:
    """Nonce encoding and exhaustion."""

    def test_encoding(self):
        """Test little-endian counters padded to 12 bytes."""
        nonces = NonceSequence()
        assert nonces.next_client() == counter_nonce(0)
        assert nonces.next_client() == b"\x01" + b"\x00" * 11
        assert nonces.next_server() == b"\x00" * 12
        assert nonces.client_counter == 2
        assert nonces.server_counter == 1

    def test_exhaustion(self):
        """Test that the counter refuses to wrap."""
        nonces = NonceSequence()
        nonces._client = 0xFFFFFFFFFFFFFFFF
        assert nonces.next_client() == b"\xff" * 8 + b"\x00" * 4
        with pytest.raises(NonceExhaustedError):
            nonces.next_client()
