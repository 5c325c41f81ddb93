"""Schemaless protobuf wire decoder used as the default packet decoder.

The matcher only relies on the contract ``decode(data) -> DecodedMessage``
(raising :class:`~biscuit.exceptions.DecodeError` on malformed input), so any
callable honouring it can be injected instead.  This implementation walks the
wire format without a schema and guesses the content of length-delimited
fields:

* valid UTF-8 made of printable characters (and not starting with a control
  character) is a string,
* otherwise a payload that parses completely as a message is a nested message,
* anything else is kept as raw bytes.

Repeated field ids keep the last value seen.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple, Union

from .exceptions import DecodeError

__all__ = [
    "DecodedMessage",
    "DecodedValue",
    "Fixed32",
    "Fixed64",
    "Number",
    "NumberKind",
    "VarInt",
    "decode",
    "read_varint",
]

_MAX_DEPTH = 32
_MASK_64 = (1 << 64) - 1

_INT32_MAX = (1 << 31) - 1
_UINT32_MAX = (1 << 32) - 1
_INT64_MAX = (1 << 63) - 1

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5


class NumberKind(str, Enum):
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"


@dataclass(frozen=True)
class Number:
    """A varint narrowed to the smallest numeric type that holds it."""

    kind: NumberKind
    value: int


@dataclass(frozen=True)
class VarInt:
    """Raw varint payload (unsigned 64-bit)."""

    raw: int

    def closest(self) -> Number:
        """Pick the closest fitting numeric representation.

        Values above the signed 64-bit range whose two's-complement reading
        fits a signed 32-bit integer are negative ``int32`` values (protobuf
        sign-extends them to ten bytes); everything else up there is
        ``uint64``.
        """

        raw = self.raw & _MASK_64
        if raw <= _INT32_MAX:
            return Number(NumberKind.INT32, raw)
        if raw <= _UINT32_MAX:
            return Number(NumberKind.UINT32, raw)
        if raw <= _INT64_MAX:
            return Number(NumberKind.INT64, raw)
        signed = raw - (1 << 64)
        if signed >= -(1 << 31):
            return Number(NumberKind.INT32, signed)
        return Number(NumberKind.UINT64, raw)


@dataclass(frozen=True)
class Fixed32:
    value: float


@dataclass(frozen=True)
class Fixed64:
    value: float


DecodedValue = Union[VarInt, Fixed32, Fixed64, str, bytes, "DecodedMessage"]
DecodedMessage = Dict[int, DecodedValue]


def read_varint(data: bytes, offset: int) -> Tuple[int, int]:
    """Read a varint from ``data`` at ``offset``. Returns ``(value, new_offset)``."""

    value = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise DecodeError(f"truncated varint at offset {offset}")
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value & _MASK_64, offset
        shift += 7
        if shift >= 70:
            raise DecodeError(f"varint too long at offset {offset}")


def _looks_like_text(content: bytes) -> bool:
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        return False
    if text[0] < " ":
        return False
    return all(ch.isprintable() or ch in "\t\r\n" for ch in text)


def _decode_length_delimited(content: bytes, depth: int) -> DecodedValue:
    if not content:
        return ""
    if _looks_like_text(content):
        return content.decode("utf-8")
    if depth < _MAX_DEPTH:
        try:
            nested = _decode(content, depth + 1)
        except DecodeError:
            nested = None
        if nested:
            return nested
    return bytes(content)


def _decode(data: bytes, depth: int) -> DecodedMessage:
    message: DecodedMessage = {}
    offset = 0
    length = len(data)
    while offset < length:
        tag, offset = read_varint(data, offset)
        field_id = tag >> 3
        wire_type = tag & 0x07
        if field_id == 0:
            raise DecodeError(f"invalid field id 0 at offset {offset}")

        if wire_type == WIRE_VARINT:
            raw, offset = read_varint(data, offset)
            message[field_id] = VarInt(raw)
        elif wire_type == WIRE_FIXED64:
            if offset + 8 > length:
                raise DecodeError(f"truncated fixed64 field {field_id}")
            (value,) = struct.unpack_from("<d", data, offset)
            offset += 8
            message[field_id] = Fixed64(value)
        elif wire_type == WIRE_LENGTH_DELIMITED:
            size, offset = read_varint(data, offset)
            if offset + size > length:
                raise DecodeError(f"truncated length-delimited field {field_id}")
            content = data[offset:offset + size]
            offset += size
            message[field_id] = _decode_length_delimited(content, depth)
        elif wire_type == WIRE_FIXED32:
            if offset + 4 > length:
                raise DecodeError(f"truncated fixed32 field {field_id}")
            (value,) = struct.unpack_from("<f", data, offset)
            offset += 4
            message[field_id] = Fixed32(value)
        else:
            raise DecodeError(f"unsupported wire type {wire_type} for field {field_id}")
    return message


def decode(data: bytes) -> DecodedMessage:
    """Decode ``data`` into a field-id keyed tree."""

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"expected bytes, got {type(data).__name__}")
    return _decode(bytes(data), 0)
