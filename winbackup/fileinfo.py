"""Basic Win32 file information and FILETIME conversions."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "FILE_ATTRIBUTE_DIRECTORY",
    "FileBasicInfo",
    "filetime_to_ns",
    "ns_to_filetime",
]

FILE_ATTRIBUTE_DIRECTORY = 0x10

# 100-nanosecond intervals between 1601-01-01 and 1970-01-01.
_EPOCH_DELTA = 116444736000000000
_MASK64 = (1 << 64) - 1


def _to_int64(value: int) -> int:
    value &= _MASK64
    return value - (1 << 64) if value >= 1 << 63 else value


@dataclass
class FileBasicInfo:
    """File times (as FILETIME values) and attributes of a file."""

    creation_time: int = 0
    last_access_time: int = 0
    last_write_time: int = 0
    change_time: int = 0
    file_attributes: int = 0


def filetime_to_ns(filetime: int) -> int:
    """Convert a FILETIME value to nanoseconds since the Unix epoch."""
    value = _to_int64(filetime)
    return _to_int64(_to_int64(value - _EPOCH_DELTA) * 100)


def ns_to_filetime(ns: int) -> int:
    """Convert nanoseconds since the Unix epoch to a FILETIME value."""
    ns = _to_int64(ns)
    ticks = -((-ns) // 100) if ns < 0 else ns // 100
    return (ticks + _EPOCH_DELTA) & _MASK64