"""Pairing and tunnel negotiation over an untrusted control channel."""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from .const import UNTRUSTED_TUNNEL_SERVICE_NAME
from .core.cipher_session import CipherSession
from .core.crypto import generate_tunnel_key_pair, load_public_key
from .core.envelope import ControlChannelCodec, StructuredValue
from .core.errors import (
    MissingFieldError,
    NegotiationFailedError,
    PairingStateError,
    RemotePairingError,
    TransportError,
)
from .core.models import PairInfo, PairingData, TunnelListener, TunnelServiceConfig
from .core.pairing import PairingSession
from .core.transport import MessageTransport

_LOGGER = logging.getLogger(__name__)

STEP_HANDSHAKE = "handshake"
STEP_UNLOCK_KEY = "createRemoteUnlockKey"
STEP_CREATE_LISTENER = "createListener"


class TunnelService:
    """Pairs with a device and negotiates encrypted tunnel listeners.

    Exchanges on one instance never overlap; each instance must own its
    transport.
    """

    # Name the device advertises the control channel under
    service_name = UNTRUSTED_TUNNEL_SERVICE_NAME

    def __init__(
        self,
        transport: MessageTransport,
        config: TunnelServiceConfig | None = None,
        *,
        codec: ControlChannelCodec | None = None,
        pairing_factory: Callable[[], PairingSession] | None = None,
    ) -> None:
        """Initialize a service for first-time pairing.

        Args:
            transport: The connected control channel.
            config: Host settings; defaults are used when omitted.
            codec: Envelope codec; the default ControlChannelCodec when omitted.
            pairing_factory: Builds the PairingSession for each pair() attempt.
        """
        self._transport = transport
        self._config = config or TunnelServiceConfig()
        self._codec = codec or ControlChannelCodec()
        self._pairing_factory = pairing_factory or (
            lambda: PairingSession(self._config)
        )
        self._pairing: PairingSession | None = None
        self._cipher_session: CipherSession | None = None
        self._handshake_info: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_session_secret(
        cls,
        transport: MessageTransport,
        session_secret: bytes,
        config: TunnelServiceConfig | None = None,
        *,
        codec: ControlChannelCodec | None = None,
    ) -> TunnelService:
        """Create a service that resumes from a previously paired secret.

        No SRP exchange takes place; the channel ciphers are derived
        directly from the secret.
        """
        service = cls(transport, config, codec=codec)
        service._cipher_session = CipherSession.setup(session_secret)
        _LOGGER.debug("Resumed session from stored secret")
        return service

    @property
    def is_paired(self) -> bool:
        """Whether the encrypted channel is available."""
        return self._cipher_session is not None

    @property
    def cipher_session(self) -> CipherSession | None:
        return self._cipher_session

    @property
    def pairing_session(self) -> PairingSession | None:
        """The most recent pairing attempt."""
        return self._pairing

    @property
    def handshake_info(self) -> dict[str, Any] | None:
        """The device's reply to the initial handshake request."""
        return self._handshake_info

    async def close(self) -> None:
        """Close the underlying transport."""
        await self._transport.close()

    # --- PAIRING ---

    async def pair(self) -> PairInfo:
        """Run manual pair-setup with the device.

        Returns:
            The pairing result holding the session key for later resumption.

        Raises:
            PairingStateError: The service is already paired.
            RemotePairingError: Any step failed; pairing has to start over.
        """
        async with self._lock:
            if self._cipher_session is not None:
                raise PairingStateError("Service is already paired")

            pairing = self._pairing_factory()
            self._pairing = pairing
            try:
                await self._exchange_handshake()

                await self._send_event(pairing.start_request(), "start_request")
                pairing.handle_device_key(
                    await self._receive_pairing_data("device_key")
                )

                await self._send_event(pairing.verify_request(), "verify_request")
                pairing.handle_server_proof(
                    await self._receive_pairing_data("server_proof")
                )

                await self._send_event(
                    pairing.device_info_request(), "device_info_request"
                )
                pairing.handle_device_ack(
                    await self._receive_pairing_data("device_ack")
                )
            except Exception:
                pairing.abort()
                raise

            session_secret = pairing.session_secret
            self._cipher_session = CipherSession.setup(session_secret)
            try:
                await self._create_remote_unlock_key()
            except Exception:
                self._cipher_session = None
                raise

            _LOGGER.info("Pairing established")
            return PairInfo(session_key=session_secret)

    async def _exchange_handshake(self) -> None:
        request = {
            "handshake": {
                "_0": {
                    "hostOptions": {"attemptPairVerify": False},
                    "wireProtocolVersion": self._config.wire_protocol_version,
                }
            }
        }
        await self._send(self._codec.encode_request(request), STEP_HANDSHAKE)
        data = await self._receive(STEP_HANDSHAKE)
        with _failing_step(STEP_HANDSHAKE):
            reply = self._codec.decode(data)
        if "response" in reply:
            try:
                info = reply.child_map("response", "_1", "handshake", "_0")
            except MissingFieldError:
                _LOGGER.debug("Handshake reply carries no device info")
            else:
                self._handshake_info = dict(info.value)

    async def _create_remote_unlock_key(self) -> None:
        """Request a remote unlock key.

        The device's answer is decrypted to confirm the channel works and
        then discarded.
        """
        cipher_session = self._require_cipher_session()
        request = {"request": {"_0": {"createRemoteUnlockKey": {}}}}
        await self._send(
            self._codec.encode_stream_encrypted(cipher_session, request),
            STEP_UNLOCK_KEY,
        )
        data = await self._receive(STEP_UNLOCK_KEY)
        with _failing_step(STEP_UNLOCK_KEY):
            self._codec.decode_stream_encrypted(cipher_session, data)

    # --- TUNNEL NEGOTIATION ---

    async def create_tunnel_listener(self) -> TunnelListener:
        """Ask the device to open a tunnel listener.

        Returns:
            The listener port, the device's public key and the freshly
            generated private key for the data-plane tunnel.

        Raises:
            PairingStateError: The service is not paired.
            NegotiationFailedError: The device's answer is unusable. The
                pairing remains valid and the call may be retried.
        """
        async with self._lock:
            cipher_session = self._require_cipher_session()
            _LOGGER.info("Creating tunnel listener")

            private_key, public_key_der = generate_tunnel_key_pair()
            request = {
                "request": {
                    "_0": {
                        "createListener": {
                            "key": public_key_der,
                            "transportProtocolType": self._config.transport_protocol,
                        }
                    }
                }
            }
            await self._send(
                self._codec.encode_stream_encrypted(cipher_session, request),
                STEP_CREATE_LISTENER,
            )
            data = await self._receive(STEP_CREATE_LISTENER)
            with _failing_step(STEP_CREATE_LISTENER):
                response = self._codec.decode_stream_encrypted(cipher_session, data)

            port, device_public_key = _parse_listener(response)
            _LOGGER.info("Device opened tunnel listener on port %d", port)
            return TunnelListener(
                private_key=private_key,
                device_public_key=device_public_key,
                tunnel_port=port,
            )

    # --- TRANSPORT HELPERS ---

    def _require_cipher_session(self) -> CipherSession:
        if self._cipher_session is None:
            raise PairingStateError("Service is not paired")
        return self._cipher_session

    async def _send(self, data: bytes, step: str) -> None:
        try:
            await self._transport.send(data)
        except (OSError, EOFError) as err:
            raise TransportError(f"Failed to send: {err}", step=step) from err

    async def _receive(self, step: str) -> bytes:
        try:
            return await self._transport.receive()
        except (OSError, EOFError) as err:
            raise TransportError(f"Failed to receive: {err}", step=step) from err

    async def _send_event(self, pairing_data: PairingData, step: str) -> None:
        await self._send(self._codec.encode_event(pairing_data), step)

    async def _receive_pairing_data(self, step: str) -> bytes:
        while True:
            data = await self._receive(step)
            with _failing_step(step):
                pairing_data = self._codec.decode_event(data)
            if pairing_data is not None:
                return pairing_data.data


@contextmanager
def _failing_step(step: str) -> Iterator[None]:
    try:
        yield
    except RemotePairingError as err:
        if err.step is None:
            err.step = step
        raise


def _parse_listener(response: StructuredValue) -> tuple[int, Any]:
    try:
        listener = response.child_map("response", "_1", "createListener")
        port = listener.get_int("port")
        encoded_key = listener.get_str("devicePublicKey")
        device_public_key = load_public_key(
            base64.b64decode(encoded_key, validate=True)
        )
    except (MissingFieldError, ValueError) as err:
        raise NegotiationFailedError(
            f"Invalid createListener response: {err}", step=STEP_CREATE_LISTENER
        ) from err
    if not 0 < port <= 0xFFFF:
        raise NegotiationFailedError(
            f"Invalid tunnel port {port}", step=STEP_CREATE_LISTENER
        )
    return port, device_public_key
