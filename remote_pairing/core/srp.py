"""SRP-6a client used by manual pair-setup.

The device runs the server side over the 3072-bit group with SHA-512. Manual
pairing authenticates against a fixed, well known credential; the exchange
still binds both public values and the derived session key.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import logging
from typing import Final

from srptools import SRPClientSession, SRPContext
from srptools.constants import PRIME_3072, PRIME_3072_GEN

from ..const import SRP_MANUAL_PAIRING_PASSWORD, SRP_USERNAME
from .errors import MalformedMessageError, PairingStateError

_LOGGER = logging.getLogger(__name__)

HASH_SIZE: Final = hashlib.sha512().digest_size
_PRIME: Final = int(PRIME_3072, 16)


def create_srp_context() -> SRPContext:
    """Create the SRP context for the fixed manual pairing credential."""
    return SRPContext(
        SRP_USERNAME,
        password=SRP_MANUAL_PAIRING_PASSWORD,
        prime=PRIME_3072,
        generator=PRIME_3072_GEN,
        hash_func=hashlib.sha512,
    )


def _unhex(value: str | bytes, size: int | None = None) -> bytes:
    raw = binascii.unhexlify(value)
    if size is not None:
        # srptools drops leading zero bytes of hash outputs
        raw = raw.rjust(size, b"\x00")
    return raw


class SrpClient:
    """Client half of one SRP exchange.

    A new instance is built for every pairing attempt and discarded once
    the session key has been handed over or verification failed.
    """

    def __init__(
        self, salt: bytes, device_public: bytes, private: bytes | None = None
    ) -> None:
        """Run the client computation against the device's values.

        Args:
            salt: The salt sent by the device.
            device_public: The device's public value B.
            private: Optional fixed client exponent, for reproducible runs.

        Raises:
            MalformedMessageError: The device values are unusable.
        """
        if not salt:
            raise MalformedMessageError("Device sent an empty SRP salt")
        if not device_public or int.from_bytes(device_public, "big") % _PRIME == 0:
            raise MalformedMessageError("Device sent an invalid SRP public value")

        session_private = binascii.hexlify(private).decode() if private else None
        self._session: SRPClientSession | None = SRPClientSession(
            create_srp_context(), private=session_private
        )
        self._session.process(device_public.hex(), salt.hex())

        self._client_public = _unhex(self._session.public)
        self._client_proof = _unhex(self._session.key_proof, HASH_SIZE)
        self._expected_server_proof: bytes | None = _unhex(
            self._session.key_proof_hash, HASH_SIZE
        )
        self._session_key: bytes | None = _unhex(self._session.key, HASH_SIZE)
        _LOGGER.debug(
            "SRP client computed public value (%d bytes)", len(self._client_public)
        )

    @property
    def client_public(self) -> bytes:
        """The client public value A."""
        return self._client_public

    @property
    def client_proof(self) -> bytes:
        """The client proof M1."""
        return self._client_proof

    @property
    def session_key(self) -> bytes:
        """The shared session key K."""
        if self._session_key is None:
            raise PairingStateError("SRP state has been cleared")
        return self._session_key

    def verify_server_proof(self, proof: bytes) -> bool:
        """Check the device's proof M2 in constant time."""
        if self._expected_server_proof is None:
            raise PairingStateError("SRP state has been cleared")
        return hmac.compare_digest(self._expected_server_proof, proof)

    def clear(self) -> None:
        """Drop all secret values of this exchange."""
        self._session = None
        self._session_key = None
        self._expected_server_proof = None
