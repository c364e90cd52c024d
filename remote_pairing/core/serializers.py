"""Payload serializers for the control channel.

Envelopes and the pair-setup device info travel as OPACK. The plaintext of
streamEncrypted messages is JSON, with byte strings sent as base64 text.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Protocol

from . import opack
from .errors import MalformedMessageError


class PayloadSerializer(Protocol):
    """Encoder/decoder for structured payload values."""

    def encode(self, value: Any) -> bytes:
        """Serialize a structured value."""

    def decode(self, data: bytes) -> Any:
        """Deserialize a structured value.

        Raises:
            MalformedMessageError: The data cannot be decoded.
        """


class OPackSerializer:
    """PayloadSerializer backed by OPACK."""

    def encode(self, value: Any) -> bytes:
        return opack.pack(value)

    def decode(self, data: bytes) -> Any:
        return opack.unpack(data)


class JsonSerializer:
    """PayloadSerializer for the JSON carried inside encrypted messages.

    Decoding leaves base64 strings alone; the reader of a field knows
    whether it holds binary data.
    """

    def encode(self, value: Any) -> bytes:
        return json.dumps(value, default=_encode_bytes).encode()

    def decode(self, data: bytes) -> Any:
        try:
            return json.loads(data)
        except (ValueError, RecursionError) as err:
            raise MalformedMessageError(f"Undecodable JSON payload: {err}") from err


def _encode_bytes(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode()
    raise TypeError(f"Unsupported JSON type: {type(value).__name__}")
