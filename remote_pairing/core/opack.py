"""OPACK, the compact structured-value format used on the control channel.

Supported values: None, bool, int (signed 64-bit range), float, str,
bytes, list/tuple and dict. Decoding resolves back-references to earlier
objects; encoding never emits them.
"""

from __future__ import annotations

import struct
from typing import Any, Final

from .errors import MalformedMessageError

_TRUE: Final = 0x01
_FALSE: Final = 0x02
_TERMINATOR: Final = 0x03
_NONE: Final = 0x04
_SMALL_INT_BASE: Final = 0x08
_SMALL_INT_LIMIT: Final = 0x28
_FLOAT32: Final = 0x35
_FLOAT64: Final = 0x36
_STR_BASE: Final = 0x40
_BYTES_BASE: Final = 0x70
_INLINE_LIMIT: Final = 0x20
_REF_BASE: Final = 0xA0
_ARRAY_BASE: Final = 0xD0
_DICT_BASE: Final = 0xE0
_ENDLESS_COUNT: Final = 0x0F

# (marker, length width) for values longer than the inline limit
_STR_SIZED: Final = ((0x61, 1), (0x62, 2), (0x63, 3), (0x64, 4))
_BYTES_SIZED: Final = ((0x91, 1), (0x92, 2), (0x93, 4), (0x94, 8))

_INT64_MIN: Final = -(1 << 63)
_INT64_MAX: Final = (1 << 63) - 1
# Containers nested deeper than this are rejected while decoding
MAX_DEPTH: Final = 64


def pack(data: Any) -> bytes:
    """Encode a value as OPACK.

    Raises:
        TypeError: The value (or a nested one) has no OPACK representation.
        ValueError: An integer is outside the signed 64-bit range.
    """
    out = bytearray()
    _pack(data, out)
    return bytes(out)


def _pack(data: Any, out: bytearray) -> None:
    if data is None:
        out.append(_NONE)
    elif isinstance(data, bool):
        out.append(_TRUE if data else _FALSE)
    elif isinstance(data, int):
        _pack_int(data, out)
    elif isinstance(data, float):
        out.append(_FLOAT64)
        out += struct.pack("<d", data)
    elif isinstance(data, str):
        _pack_sized(data.encode("utf-8"), _STR_BASE, _STR_SIZED, out)
    elif isinstance(data, (bytes, bytearray, memoryview)):
        _pack_sized(bytes(data), _BYTES_BASE, _BYTES_SIZED, out)
    elif isinstance(data, (list, tuple)):
        out.append(_ARRAY_BASE + min(len(data), _ENDLESS_COUNT))
        for item in data:
            _pack(item, out)
        if len(data) >= _ENDLESS_COUNT:
            out.append(_TERMINATOR)
    elif isinstance(data, dict):
        out.append(_DICT_BASE + min(len(data), _ENDLESS_COUNT))
        for key, value in data.items():
            _pack(key, out)
            _pack(value, out)
        if len(data) >= _ENDLESS_COUNT:
            out.append(_TERMINATOR)
    else:
        raise TypeError(f"Unsupported OPACK type: {type(data).__name__}")


def _pack_int(value: int, out: bytearray) -> None:
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"Integer out of 64-bit range: {value}")
    if 0 <= value < _SMALL_INT_LIMIT:
        out.append(_SMALL_INT_BASE + value)
    elif 0 <= value <= 0xFF:
        out.append(0x30)
        out += value.to_bytes(1, "little")
    elif 0 <= value <= 0xFFFF:
        out.append(0x31)
        out += value.to_bytes(2, "little")
    elif 0 <= value <= 0xFFFFFFFF:
        out.append(0x32)
        out += value.to_bytes(4, "little")
    else:
        out.append(0x33)
        out += value.to_bytes(8, "little", signed=True)


def _pack_sized(
    raw: bytes, inline_base: int, sized: tuple[tuple[int, int], ...], out: bytearray
) -> None:
    length = len(raw)
    if length <= _INLINE_LIMIT:
        out.append(inline_base + length)
    else:
        for marker, width in sized:
            if length < 1 << (8 * width):
                out.append(marker)
                out += length.to_bytes(width, "little")
                break
        else:
            raise ValueError(f"Value too long for OPACK: {length} bytes")
    out += raw


def unpack(data: bytes) -> Any:
    """Decode a single OPACK value that spans the whole buffer.

    Raises:
        MalformedMessageError: The data is truncated, has trailing bytes,
            uses an unknown type marker or nests containers too deeply.
    """
    decoder = _Decoder(bytes(data))
    value = decoder.read_value()
    if decoder.pos != len(decoder.data):
        raise MalformedMessageError(
            f"{len(decoder.data) - decoder.pos} trailing bytes after OPACK value"
        )
    return value


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0
        self.objects: list[Any] = []
        self.depth = 0

    def take(self, count: int) -> bytes:
        end = self.pos + count
        if end > len(self.data):
            raise MalformedMessageError("Truncated OPACK data")
        chunk = self.data[self.pos : end]
        self.pos = end
        return chunk

    def read_value(self, allow_terminator: bool = False) -> Any:
        start = self.pos
        marker = self.take(1)[0]

        if marker == _TERMINATOR and allow_terminator:
            return _END
        if marker == _TRUE:
            return True
        if marker == _FALSE:
            return False
        if marker == _NONE:
            return None
        if _SMALL_INT_BASE <= marker < _SMALL_INT_BASE + _SMALL_INT_LIMIT:
            return marker - _SMALL_INT_BASE

        if 0x30 <= marker <= 0x32:
            value: Any = int.from_bytes(self.take(1 << (marker - 0x30)), "little")
        elif marker == 0x33:
            value = int.from_bytes(self.take(8), "little", signed=True)
        elif marker == _FLOAT32:
            value = struct.unpack("<f", self.take(4))[0]
        elif marker == _FLOAT64:
            value = struct.unpack("<d", self.take(8))[0]
        elif _STR_BASE <= marker <= 0x64:
            raw = self.take(self._length(marker, _STR_BASE, _STR_SIZED))
            try:
                value = raw.decode("utf-8")
            except UnicodeDecodeError as err:
                raise MalformedMessageError("Invalid UTF-8 in OPACK string") from err
        elif _BYTES_BASE <= marker <= 0x94:
            value = self.take(self._length(marker, _BYTES_BASE, _BYTES_SIZED))
        elif _REF_BASE <= marker <= 0xC4:
            return self._reference(marker)
        elif _ARRAY_BASE <= marker <= _ARRAY_BASE + _ENDLESS_COUNT:
            value = self._array(marker - _ARRAY_BASE)
        elif _DICT_BASE <= marker <= _DICT_BASE + _ENDLESS_COUNT:
            value = self._dict(marker - _DICT_BASE)
        else:
            raise MalformedMessageError(f"Unknown OPACK type marker 0x{marker:02x}")

        if self.pos - start > 1:
            self.objects.append(value)
        return value

    def _length(
        self, marker: int, inline_base: int, sized: tuple[tuple[int, int], ...]
    ) -> int:
        if marker <= inline_base + _INLINE_LIMIT:
            return marker - inline_base
        width = dict(sized)[marker]
        return int.from_bytes(self.take(width), "little")

    def _reference(self, marker: int) -> Any:
        if marker <= 0xC0:
            index = marker - _REF_BASE
        else:
            index = int.from_bytes(self.take(marker - 0xC0), "little")
        if index >= len(self.objects):
            raise MalformedMessageError(f"Invalid OPACK back-reference {index}")
        return self.objects[index]

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise MalformedMessageError(
                f"OPACK containers nested deeper than {MAX_DEPTH} levels"
            )

    def _array(self, count: int) -> list[Any]:
        self._enter()
        items: list[Any] = []
        if count == _ENDLESS_COUNT:
            while (item := self.read_value(allow_terminator=True)) is not _END:
                items.append(item)
        else:
            for _ in range(count):
                items.append(self.read_value())
        self.depth -= 1
        return items

    def _dict(self, count: int) -> dict[Any, Any]:
        self._enter()
        result: dict[Any, Any] = {}
        remaining = None if count == _ENDLESS_COUNT else count
        while remaining is None or remaining > 0:
            key = self.read_value(allow_terminator=remaining is None)
            if key is _END:
                break
            try:
                result[key] = self.read_value()
            except TypeError as err:
                raise MalformedMessageError("Unhashable OPACK dictionary key") from err
            if remaining is not None:
                remaining -= 1
        self.depth -= 1
        return result


_END: Final = object()
