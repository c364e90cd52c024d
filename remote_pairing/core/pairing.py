"""Pair-setup state machine.

PairingSession holds no connection. Each outbound step returns the
PairingData to send and each inbound step consumes the TLV blob the device
answered with. Steps run strictly in order; a failure is terminal.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum, auto

from ..const import (
    NONCE_TAG_MSG05,
    NONCE_TAG_MSG06,
    PAIR_SETUP_ENCRYPT_INFO,
    PAIR_SETUP_ENCRYPT_SALT,
    PAIR_SETUP_SIGN_INFO,
    PAIR_SETUP_SIGN_SALT,
    PAIRING_KIND_SETUP_MANUAL,
    SIGN_BUFFER_PREFIX_SIZE,
)
from . import opack
from .crypto import chacha20_decrypt, chacha20_encrypt, derive_hkdf_key, tagged_nonce
from .errors import (
    AuthenticationFailedError,
    PairingStateError,
    RemotePairingError,
)
from .models import PairingData, PairingIdentity, TunnelServiceConfig
from .srp import SrpClient
from .tlv import PairState, TlvBuffer, TlvReader, TlvType

_LOGGER = logging.getLogger(__name__)


class PairingStep(Enum):
    """Position in the pair-setup exchange."""

    INIT = auto()
    AWAITING_DEVICE_KEY = auto()
    VERIFY_SENT = auto()
    AWAITING_SERVER_PROOF = auto()
    DEVICE_INFO_EXCHANGE = auto()
    AWAITING_DEVICE_ACK = auto()
    ESTABLISHED = auto()
    FAILED = auto()


_NEXT_STEP: dict[PairingStep, PairingStep] = {
    PairingStep.INIT: PairingStep.AWAITING_DEVICE_KEY,
    PairingStep.AWAITING_DEVICE_KEY: PairingStep.VERIFY_SENT,
    PairingStep.VERIFY_SENT: PairingStep.AWAITING_SERVER_PROOF,
    PairingStep.AWAITING_SERVER_PROOF: PairingStep.DEVICE_INFO_EXCHANGE,
    PairingStep.DEVICE_INFO_EXCHANGE: PairingStep.AWAITING_DEVICE_ACK,
    PairingStep.AWAITING_DEVICE_ACK: PairingStep.ESTABLISHED,
}


class PairingSession:
    """One manual pair-setup attempt."""

    def __init__(
        self,
        config: TunnelServiceConfig | None = None,
        identity: PairingIdentity | None = None,
        srp_private: bytes | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Host settings; defaults are used when omitted.
            identity: Signing identity to present. Generated when omitted.
            srp_private: Fixed SRP client exponent, for reproducible runs.
        """
        self._config = config or TunnelServiceConfig()
        self._identity = identity
        self._srp_private = srp_private
        self._srp: SrpClient | None = None
        self._setup_key: bytes | None = None
        self._session_secret: bytes | None = None
        self._step = PairingStep.INIT
        self._failed_at: PairingStep | None = None

    @property
    def step(self) -> PairingStep:
        """The current step."""
        return self._step

    @property
    def failed_at(self) -> PairingStep | None:
        """The step that failed, if the session is FAILED."""
        return self._failed_at

    @property
    def identity(self) -> PairingIdentity | None:
        """The identity presented to the device, once created."""
        return self._identity

    @property
    def session_secret(self) -> bytes:
        """The SRP session key, available once pairing is established."""
        if self._step is not PairingStep.ESTABLISHED or self._session_secret is None:
            raise PairingStateError(
                f"No session secret in step {self._step.name}", step=self._step.name
            )
        return self._session_secret

    @contextmanager
    def _advance(self, expected: PairingStep) -> Iterator[None]:
        if self._step is not expected:
            raise PairingStateError(
                f"Step {expected.name} is not allowed in step {self._step.name}",
                step=self._step.name,
            )
        try:
            yield
        except Exception as err:
            self._fail(expected)
            if isinstance(err, RemotePairingError) and err.step is None:
                err.step = expected.name
            raise
        self._step = _NEXT_STEP[expected]
        _LOGGER.debug("Pairing step %s -> %s", expected.name, self._step.name)

    def abort(self) -> None:
        """Mark an unfinished attempt as failed in its current step."""
        if self._step not in (PairingStep.ESTABLISHED, PairingStep.FAILED):
            self._fail(self._step)

    def _fail(self, step: PairingStep) -> None:
        _LOGGER.debug("Pairing failed in step %s", step.name)
        self._failed_at = step
        self._step = PairingStep.FAILED
        self._setup_key = None
        self._session_secret = None
        if self._srp is not None:
            self._srp.clear()
            self._srp = None

    # --- STEPS ---

    def start_request(self) -> PairingData:
        """Build the request that opens a new pair-setup session."""
        with self._advance(PairingStep.INIT):
            tlv = TlvBuffer()
            tlv.write_byte(TlvType.METHOD, 0x00)
            tlv.write_byte(TlvType.STATE, PairState.START_REQUEST)
            return PairingData(
                data=tlv.bytes(),
                kind=PAIRING_KIND_SETUP_MANUAL,
                start_new_session=True,
            )

    def handle_device_key(self, tlv: bytes) -> None:
        """Consume the device's SRP salt and public value."""
        with self._advance(PairingStep.AWAITING_DEVICE_KEY):
            reader = _checked_reader(tlv)
            device_public = reader.read_coalesced(TlvType.PUBLIC_KEY)
            salt = reader.read_coalesced(TlvType.SALT)
            self._srp = SrpClient(salt, device_public, private=self._srp_private)

    def verify_request(self) -> PairingData:
        """Build the request carrying the client public value and proof."""
        with self._advance(PairingStep.VERIFY_SENT):
            srp = self._require_srp()
            tlv = TlvBuffer()
            tlv.write_byte(TlvType.STATE, PairState.VERIFY_REQUEST)
            tlv.write_data(TlvType.PUBLIC_KEY, srp.client_public)
            tlv.write_data(TlvType.PROOF, srp.client_proof)
            return PairingData(data=tlv.bytes(), kind=PAIRING_KIND_SETUP_MANUAL)

    def handle_server_proof(self, tlv: bytes) -> None:
        """Verify the device's SRP proof."""
        with self._advance(PairingStep.AWAITING_SERVER_PROOF):
            server_proof = _checked_reader(tlv).read_coalesced(TlvType.PROOF)
            if not self._require_srp().verify_server_proof(server_proof):
                _LOGGER.error("Device SRP proof did not verify")
                raise AuthenticationFailedError("Could not verify server proof")

    def device_info_request(self) -> PairingData:
        """Build the encrypted request presenting this host's identity."""
        with self._advance(PairingStep.DEVICE_INFO_EXCHANGE):
            session_key = self._require_srp().session_key
            if self._identity is None:
                self._identity = PairingIdentity.generate()
            identity = self._identity
            identifier = identity.identifier.encode()

            sign_prefix = derive_hkdf_key(
                session_key,
                PAIR_SETUP_SIGN_SALT,
                PAIR_SETUP_SIGN_INFO,
                SIGN_BUFFER_PREFIX_SIZE,
            )
            signature = identity.sign(sign_prefix + identifier + identity.public_key)
            device_info = opack.pack(
                self._config.device_info.to_payload(identity.identifier)
            )

            inner = TlvBuffer()
            inner.write_data(TlvType.SIGNATURE, signature)
            inner.write_data(TlvType.PUBLIC_KEY, identity.public_key)
            inner.write_data(TlvType.IDENTIFIER, identifier)
            inner.write_data(TlvType.INFO, device_info)

            self._setup_key = derive_hkdf_key(
                session_key, PAIR_SETUP_ENCRYPT_SALT, PAIR_SETUP_ENCRYPT_INFO
            )
            encrypted = chacha20_encrypt(
                self._setup_key, tagged_nonce(NONCE_TAG_MSG05), inner.bytes()
            )

            tlv = TlvBuffer()
            tlv.write_byte(TlvType.STATE, PairState.EXCHANGE_REQUEST)
            tlv.write_data(TlvType.ENCRYPTED_DATA, encrypted)
            _LOGGER.debug("Presenting identity %s to the device", identity.identifier)
            return PairingData(
                data=tlv.bytes(),
                kind=PAIRING_KIND_SETUP_MANUAL,
                sending_host=self._config.sending_host,
            )

    def handle_device_ack(self, tlv: bytes) -> None:
        """Check that the device's encrypted answer authenticates.

        The decrypted content is not used; successful decryption is the
        confirmation.
        """
        with self._advance(PairingStep.AWAITING_DEVICE_ACK):
            encrypted = _checked_reader(tlv).read_coalesced(TlvType.ENCRYPTED_DATA)
            if self._setup_key is None:
                raise PairingStateError("Setup key has not been derived")
            chacha20_decrypt(self._setup_key, tagged_nonce(NONCE_TAG_MSG06), encrypted)

            srp = self._require_srp()
            self._session_secret = srp.session_key
            srp.clear()
            self._srp = None
            self._setup_key = None

    def _require_srp(self) -> SrpClient:
        if self._srp is None:
            raise PairingStateError("SRP exchange has not started")
        return self._srp


def _checked_reader(tlv: bytes) -> TlvReader:
    reader = TlvReader(tlv)
    if TlvType.ERROR in reader:
        code = reader.read_coalesced(TlvType.ERROR)
        _LOGGER.error("Device reported pairing error 0x%s", code.hex())
        raise AuthenticationFailedError(f"Device reported pairing error 0x{code.hex()}")
    return reader
