"""Encoding and decoding of FILE_FULL_EA_INFORMATION buffers."""

from __future__ import annotations

import struct
from dataclasses import dataclass

__all__ = [
    "ExtendedAttributeError",
    "ExtendedAttribute",
    "decode_extended_attributes",
    "encode_extended_attributes",
]

# NextEntryOffset, Flags, NameLength, ValueLength
_EA_INFO = struct.Struct("<IBBH")


class ExtendedAttributeError(ValueError):
    """Raised for malformed or oversized extended attributes."""


@dataclass
class ExtendedAttribute:
    """A single Windows extended attribute."""

    name: str
    value: bytes
    flags: int = 0


def _encode_name(name: str) -> bytes:
    return name.encode("utf-8", errors="surrogateescape")


def _decode_name(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


def decode_extended_attributes(data: bytes | None) -> list[ExtendedAttribute]:
    """Decode a list of extended attributes from a FILE_FULL_EA_INFORMATION buffer."""
    eas: list[ExtendedAttribute] = []
    buf = memoryview(bytes(data or b""))
    while len(buf):
        if len(buf) < _EA_INFO.size:
            raise ExtendedAttributeError("invalid extended attribute buffer")
        next_offset, flags, name_len, value_len = _EA_INFO.unpack_from(buf)
        name_offset = _EA_INFO.size
        value_offset = name_offset + name_len + 1
        if value_offset + value_len > len(buf) or next_offset > len(buf):
            raise ExtendedAttributeError("invalid extended attribute buffer")
        eas.append(
            ExtendedAttribute(
                name=_decode_name(bytes(buf[name_offset : name_offset + name_len])),
                value=bytes(buf[value_offset : value_offset + value_len]),
                flags=flags,
            )
        )
        buf = buf[next_offset:] if next_offset else buf[:0]
    return eas


def encode_extended_attributes(eas) -> bytes:
    """Encode extended attributes into a FILE_FULL_EA_INFORMATION buffer."""
    eas = list(eas or [])
    out = bytearray()
    for position, ea in enumerate(eas, start=1):
        name = _encode_name(ea.name)
        if len(name) > 0xFF:
            raise ExtendedAttributeError("extended attribute name too large")
        if len(ea.value) > 0xFFFF:
            raise ExtendedAttributeError("extended attribute value too large")
        entry_size = _EA_INFO.size + len(name) + 1 + len(ea.value)
        padded = (entry_size + 3) & ~3
        next_offset = 0 if position == len(eas) else padded
        out += _EA_INFO.pack(next_offset, ea.flags, len(name), len(ea.value))
        out += name
        out += b"\x00"
        out += ea.value
        out += b"\x00" * (padded - entry_size)
    return bytes(out)