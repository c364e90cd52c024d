from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..const import ENVELOPE_TYPE_NAME, ORIGINATED_BY_HOST
from .errors import (
    MalformedMessageError,
    MissingFieldError,
    PairingRejectedError,
)
from .models import PairingData
from .serializers import JsonSerializer, OPackSerializer, PayloadSerializer

if TYPE_CHECKING:
    from .cipher_session import CipherSession

_LOGGER = logging.getLogger(__name__)

SHAPE_PLAIN = "plain"
SHAPE_STREAM_ENCRYPTED = "streamEncrypted"


class StructuredValue:
    """A decoded payload value with fallible, typed field lookup.

    Lookups never fill in defaults: an absent key or a value of the wrong
    type raises MissingFieldError naming the full path.
    """

    def __init__(self, value: Any, path: str = "") -> None:
        self._value = value
        self._path = path

    @property
    def value(self) -> Any:
        """The wrapped value."""
        return self._value

    @property
    def path(self) -> str:
        return self._path or "<root>"

    def __contains__(self, key: str) -> bool:
        return isinstance(self._value, Mapping) and key in self._value

    def __repr__(self) -> str:
        return f"StructuredValue({self.path}={self._value!r})"

    def _join(self, key: str) -> str:
        return f"{self._path}.{key}" if self._path else key

    def _get(self, key: str) -> Any:
        if not isinstance(self._value, Mapping):
            raise MissingFieldError(
                f"{self.path} is not a map", field=self._join(key)
            )
        if key not in self._value:
            raise MissingFieldError(
                f"Missing field {self._join(key)}", field=self._join(key)
            )
        return self._value[key]

    def child(self, *keys: str) -> StructuredValue:
        """Descend through nested maps."""
        node = self
        for key in keys:
            node = StructuredValue(node._get(key), node._join(key))
        return node

    def child_map(self, *keys: str) -> StructuredValue:
        """Descend through nested maps and require the result to be a map."""
        node = self.child(*keys)
        if not isinstance(node.value, Mapping):
            raise MissingFieldError(f"{node.path} is not a map", field=node.path)
        return node

    def _typed(self, key: str, kind: type | tuple[type, ...], name: str) -> Any:
        value = self._get(key)
        if not isinstance(value, kind) or (
            isinstance(value, bool) and kind is not bool
        ):
            raise MissingFieldError(
                f"{self._join(key)} is not {name}", field=self._join(key)
            )
        return value

    def get_int(self, key: str) -> int:
        """Return an integer field. Integral floats are accepted, booleans are not."""
        value = self._typed(key, (int, float), "a number")
        if isinstance(value, float):
            if not value.is_integer():
                raise MissingFieldError(
                    f"{self._join(key)} is not an integer", field=self._join(key)
                )
            value = int(value)
        return value

    def get_str(self, key: str) -> str:
        return self._typed(key, str, "a string")

    def get_bytes(self, key: str) -> bytes:
        return bytes(self._typed(key, (bytes, bytearray), "a byte string"))

    def get_bool(self, key: str) -> bool:
        return self._typed(key, bool, "a boolean")


class ControlChannelCodec:
    """Wraps payloads in control channel envelopes and unwraps replies.

    The codec owns the outgoing sequence number, which advances by one for
    every envelope it encodes.
    """

    def __init__(
        self,
        serializer: PayloadSerializer | None = None,
        encrypted_serializer: PayloadSerializer | None = None,
    ) -> None:
        """Initialize the codec.

        Args:
            serializer: Envelope serializer; OPACK when omitted.
            encrypted_serializer: Serializer for the plaintext of
                streamEncrypted messages; JSON when omitted.
        """
        self._serializer = serializer or OPackSerializer()
        self._encrypted_serializer = encrypted_serializer or JsonSerializer()
        self._sequence_number = 0

    @property
    def sequence_number(self) -> int:
        """The sequence number the next envelope will carry."""
        return self._sequence_number

    @property
    def serializer(self) -> PayloadSerializer:
        return self._serializer

    @property
    def encrypted_serializer(self) -> PayloadSerializer:
        return self._encrypted_serializer

    # --- ENCODING ---

    def encode_request(self, payload: Mapping[str, Any]) -> bytes:
        """Encode a one-shot plain request such as "handshake"."""
        return self._wrap(SHAPE_PLAIN, {"request": {"_0": dict(payload)}})

    def encode_event(self, pairing_data: PairingData) -> bytes:
        """Encode a plain pairingData event."""
        return self._wrap(
            SHAPE_PLAIN,
            {"event": {"_0": {"pairingData": {"_0": pairing_data.to_payload()}}}},
        )

    def encode_stream_encrypted(
        self, cipher_session: CipherSession, value: Mapping[str, Any]
    ) -> bytes:
        """Serialize and seal a value, then wrap it as a streamEncrypted body."""
        ciphertext = cipher_session.encrypt_outgoing(
            self._encrypted_serializer.encode(value)
        )
        return self._wrap(SHAPE_STREAM_ENCRYPTED, ciphertext)

    def _wrap(self, shape: str, body: Any) -> bytes:
        envelope = {
            "mangledTypeName": ENVELOPE_TYPE_NAME,
            "value": {
                "message": {shape: {"_0": body}},
                "originatedBy": ORIGINATED_BY_HOST,
                "sequenceNumber": self._sequence_number,
            },
        }
        _LOGGER.debug(
            "Encoding %s envelope with sequence number %d",
            shape,
            self._sequence_number,
        )
        self._sequence_number += 1
        return self._serializer.encode(envelope)

    # --- DECODING ---

    def _unwrap(self, data: bytes, shape: str) -> StructuredValue:
        try:
            envelope = StructuredValue(self._serializer.decode(data))
        except ValueError as err:
            raise MalformedMessageError(f"Undecodable envelope: {err}") from err

        try:
            message = envelope.child_map("value", "message")
        except MissingFieldError as err:
            raise MalformedMessageError(f"Not a control channel envelope: {err}") from err
        if shape not in message:
            shapes = ", ".join(str(key) for key in message.value)
            raise MalformedMessageError(
                f"Expected a {shape} message, got: {shapes or 'nothing'}"
            )
        return message.child(shape, "_0")

    def decode(self, data: bytes) -> StructuredValue:
        """Decode a plain envelope and return its body."""
        body = self._unwrap(data, SHAPE_PLAIN)
        if not isinstance(body.value, Mapping):
            raise MalformedMessageError("Plain message body is not a map")
        return body

    def decode_event(self, data: bytes) -> PairingData | None:
        """Decode a plain event envelope carrying pairing data.

        Returns:
            The pairing data, or None when the device reports that it is
            still waiting for the user to accept the pairing.

        Raises:
            PairingRejectedError: The device rejected the pairing.
            MissingFieldError: The event carries no pairing data.
        """
        event = self.decode(data).child_map("event", "_0")

        if "pairingData" in event:
            pairing = event.child_map("pairingData", "_0")
            return PairingData(
                data=pairing.get_bytes("data"),
                kind=pairing.get_str("kind") if "kind" in pairing else None,
                start_new_session=(
                    pairing.get_bool("startNewSession")
                    if "startNewSession" in pairing
                    else False
                ),
                sending_host=(
                    pairing.get_str("sendingHost") if "sendingHost" in pairing else None
                ),
            )
        if "awaitingUserConsent" in event:
            _LOGGER.info("Waiting for the user to accept pairing on the device")
            return None
        if "pairingRejectedWithError" in event:
            raise PairingRejectedError(_rejection_reason(event.value))
        raise MissingFieldError(
            f"Unexpected event: {', '.join(str(key) for key in event.value)}",
            field="event._0.pairingData",
        )

    def decode_stream_encrypted(
        self, cipher_session: CipherSession, data: bytes
    ) -> StructuredValue:
        """Open a streamEncrypted envelope and decode the inner value."""
        body = self._unwrap(data, SHAPE_STREAM_ENCRYPTED)
        if not isinstance(body.value, (bytes, bytearray)):
            raise MalformedMessageError("Encrypted message body is not a byte string")
        plaintext = cipher_session.decrypt_incoming(bytes(body.value))
        try:
            return StructuredValue(self._encrypted_serializer.decode(plaintext))
        except ValueError as err:
            raise MalformedMessageError(f"Undecodable encrypted payload: {err}") from err


def _rejection_reason(event: Mapping[str, Any]) -> str:
    rejection = event.get("pairingRejectedWithError")
    try:
        return str(rejection["wrappedError"]["userInfo"]["NSLocalizedDescription"])
    except (KeyError, TypeError):
        return "Device rejected the pairing request"
