"""TLV8 encoding used by the pair-setup exchange.

Each record is a one byte tag, a one byte length and up to 255 bytes of
value. Longer values are split into consecutive records with the same tag
and joined again when reading.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import IntEnum
from typing import Final, NamedTuple

from .errors import MalformedMessageError, MissingFieldError

MAX_RECORD_LENGTH: Final = 255


class TlvType(IntEnum):
    """TLV tags used by pair-setup."""

    METHOD = 0x00
    IDENTIFIER = 0x01
    SALT = 0x02
    PUBLIC_KEY = 0x03
    PROOF = 0x04
    ENCRYPTED_DATA = 0x05
    STATE = 0x06
    ERROR = 0x07
    SIGNATURE = 0x0A
    INFO = 0x11


class PairState(IntEnum):
    """Values of the State tag."""

    START_REQUEST = 0x01
    START_RESPONSE = 0x02
    VERIFY_REQUEST = 0x03
    VERIFY_RESPONSE = 0x04
    EXCHANGE_REQUEST = 0x05
    EXCHANGE_RESPONSE = 0x06


class TlvRecord(NamedTuple):
    """A single decoded record."""

    tag: int
    value: bytes


class TlvBuffer:
    """Builder for a TLV8 byte stream."""

    def __init__(self) -> None:
        """Initialize an empty buffer."""
        self._buf = bytearray()

    def write_byte(self, tag: int, value: int) -> TlvBuffer:
        """Append a record holding a single byte."""
        return self.write_data(tag, bytes([value]))

    def write_data(self, tag: int, data: bytes) -> TlvBuffer:
        """Append a value, splitting it into 255 byte records if needed.

        Args:
            tag: The record tag.
            data: The value bytes. An empty value yields one empty record.

        Returns:
            The buffer, for chaining.
        """
        if not 0 <= tag <= 0xFF:
            raise ValueError(f"Invalid TLV tag: {tag}")
        if not data:
            self._buf += bytes([tag, 0])
            return self

        for pos in range(0, len(data), MAX_RECORD_LENGTH):
            chunk = data[pos : pos + MAX_RECORD_LENGTH]
            self._buf.append(tag)
            self._buf.append(len(chunk))
            self._buf += chunk
        return self

    def bytes(self) -> bytes:
        """Return the encoded stream."""
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)


class TlvReader:
    """Reader over a TLV8 byte stream."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    def records(self) -> Iterator[TlvRecord]:
        """Yield records in encounter order.

        Raises:
            MalformedMessageError: A record is truncated.
        """
        data = self._data
        pos = 0
        while pos < len(data):
            if pos + 2 > len(data):
                raise MalformedMessageError(
                    f"Truncated TLV header at offset {pos}"
                )
            tag = data[pos]
            length = data[pos + 1]
            end = pos + 2 + length
            if end > len(data):
                raise MalformedMessageError(
                    f"TLV record 0x{tag:02x} declares {length} bytes, "
                    f"only {len(data) - pos - 2} remain"
                )
            yield TlvRecord(tag, data[pos + 2 : end])
            pos = end

    def read_coalesced(self, tag: int) -> bytes:
        """Return the concatenated value of every record with this tag.

        Raises:
            MissingFieldError: No record carries the tag.
            MalformedMessageError: The stream is truncated.
        """
        found = False
        value = bytearray()
        for record in self.records():
            if record.tag == tag:
                found = True
                value += record.value
        if not found:
            raise MissingFieldError(
                f"TLV tag 0x{tag:02x} not found", field=_tag_name(tag)
            )
        return bytes(value)

    def to_dict(self) -> dict[int, bytes]:
        """Decode the whole stream into a tag to coalesced value map."""
        result: dict[int, bytes] = {}
        for record in self.records():
            if record.tag in result:
                result[record.tag] += record.value
            else:
                result[record.tag] = record.value
        return result

    def __contains__(self, tag: int) -> bool:
        return any(record.tag == tag for record in self.records())


def _tag_name(tag: int) -> str:
    try:
        return TlvType(tag).name
    except ValueError:
        return f"0x{tag:02x}"
