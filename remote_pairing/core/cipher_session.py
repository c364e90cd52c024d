from __future__ import annotations

import logging
import threading
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from ..const import CLIENT_ENCRYPT_INFO, KEY_SIZE, NONCE_SIZE, SERVER_ENCRYPT_INFO
from .crypto import derive_hkdf_key
from .errors import DecryptionFailedError, NonceExhaustedError

_LOGGER = logging.getLogger(__name__)

MAX_COUNTER: Final = 0xFFFFFFFFFFFFFFFF
COUNTER_SIZE: Final = 8


class NonceSequence:
    """Independent per-direction message counters.

    A nonce is the counter as 8 little-endian bytes padded with zeros to
    the AEAD nonce size. Counters only move forward.
    """

    def __init__(self) -> None:
        """Start both directions at zero."""
        self._client = 0
        self._server = 0

    @property
    def client_counter(self) -> int:
        """Number of client nonces issued so far."""
        return self._client

    @property
    def server_counter(self) -> int:
        """Number of server nonces issued so far."""
        return self._server

    def next_client(self) -> bytes:
        """Return the next client to device nonce."""
        nonce = self._encode(self._client, "client")
        self._client += 1
        return nonce

    def next_server(self) -> bytes:
        """Return the next device to client nonce."""
        nonce = self._encode(self._server, "server")
        self._server += 1
        return nonce

    @staticmethod
    def _encode(counter: int, direction: str) -> bytes:
        if counter > MAX_COUNTER:
            raise NonceExhaustedError(f"The {direction} nonce counter is exhausted")
        return counter.to_bytes(COUNTER_SIZE, "little").ljust(NONCE_SIZE, b"\x00")


class CipherSession:
    """The two directional ChaCha20-Poly1305 ciphers of a paired channel."""

    def __init__(self, client_key: bytes, server_key: bytes) -> None:
        """Initialize the session from already derived keys.

        Use setup() to derive them from a session secret.
        """
        self._client_key = client_key
        self._server_key = server_key
        self._client_cipher = ChaCha20Poly1305(client_key)
        self._server_cipher = ChaCha20Poly1305(server_key)
        self._nonces = NonceSequence()
        self._client_lock = threading.Lock()
        self._server_lock = threading.Lock()

    @classmethod
    def setup(cls, session_secret: bytes) -> CipherSession:
        """Derive the directional keys from a pair-setup session secret.

        The same secret always yields the same keys, which is what makes
        resuming without re-pairing possible.
        """
        if not session_secret:
            raise ValueError("Session secret must not be empty")
        _LOGGER.debug("Deriving main channel keys")
        client_key = derive_hkdf_key(session_secret, None, CLIENT_ENCRYPT_INFO, KEY_SIZE)
        server_key = derive_hkdf_key(session_secret, None, SERVER_ENCRYPT_INFO, KEY_SIZE)
        return cls(client_key, server_key)

    @property
    def client_key(self) -> bytes:
        """The client to device key."""
        return self._client_key

    @property
    def server_key(self) -> bytes:
        """The device to client key."""
        return self._server_key

    @property
    def nonces(self) -> NonceSequence:
        """The nonce counters of this session."""
        return self._nonces

    def encrypt_outgoing(self, plaintext: bytes) -> bytes:
        """Seal a message with the client key and the next client nonce."""
        with self._client_lock:
            nonce = self._nonces.next_client()
            _LOGGER.debug(
                "Encrypting outgoing message #%d", self._nonces.client_counter - 1
            )
            return self._client_cipher.encrypt(nonce, plaintext, None)

    def decrypt_incoming(self, ciphertext: bytes) -> bytes:
        """Open a message with the server key and the next server nonce.

        The counter advances even when the message is rejected.

        Raises:
            DecryptionFailedError: The message did not authenticate.
        """
        with self._server_lock:
            nonce = self._nonces.next_server()
            counter = self._nonces.server_counter - 1
            try:
                return self._server_cipher.decrypt(nonce, ciphertext, None)
            except InvalidTag as err:
                _LOGGER.error("Failed to decrypt incoming message #%d", counter)
                raise DecryptionFailedError(
                    f"Incoming message #{counter} failed authentication"
                ) from err
