"""Reading and writing the stream format produced by the Win32 BackupRead API."""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Iterator

__all__ = [
    "StreamId",
    "STREAM_SPARSE_ATTRIBUTES",
    "BackupStreamError",
    "BackupHeader",
    "BackupStreamReader",
    "BackupStreamWriter",
]


class StreamId(IntEnum):
    """Identifiers of the streams found in a backup stream."""

    DATA = 1
    EA_DATA = 2
    SECURITY = 3
    ALTERNATE_DATA = 4
    LINK = 5
    PROPERTY_DATA = 6
    OBJECT_ID = 7
    REPARSE_DATA = 8
    SPARSE_BLOCK = 9
    TXFS_DATA = 10


STREAM_SPARSE_ATTRIBUTES = 8

# WIN32_STREAM_ID without its trailing name: id, attributes, size, name size.
_STREAM_ID = struct.Struct("<IIQI")
_OFFSET = struct.Struct("<q")
_SKIP_CHUNK = 64 * 1024


class BackupStreamError(Exception):
    """Raised when a backup stream is malformed or misused."""


@dataclass
class BackupHeader:
    """One stream within a backup stream."""

    id: int
    attributes: int = 0
    size: int = 0
    name: str = ""
    offset: int = 0


def _stream_id(value: int) -> int:
    try:
        return StreamId(value)
    except ValueError:
        return value


def _can_seek(stream) -> bool:
    seekable = getattr(stream, "seekable", None)
    if seekable is None:
        return False
    try:
        if not seekable():
            return False
        stream.seek(0, io.SEEK_CUR)
    except (OSError, ValueError):
        return False
    return True


def _read_exact(stream, count: int, allow_eof: bool = False) -> bytes | None:
    """Read exactly ``count`` bytes; return None on a clean EOF if allowed."""
    parts = []
    got = 0
    while got < count:
        chunk = stream.read(count - got)
        if not chunk:
            if got == 0 and allow_eof:
                return None
            raise BackupStreamError("unexpected end of backup stream")
        parts.append(chunk)
        got += len(chunk)
    return b"".join(parts)


class BackupStreamReader:
    """Splits a backup stream into its headers and their data."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._remaining = 0

    def _skip_rest(self) -> None:
        if self._remaining <= 0:
            return
        if _can_seek(self._stream):
            self._stream.seek(self._remaining, io.SEEK_CUR)
            self._remaining = 0
            return
        while self._remaining:
            self.read(min(self._remaining, _SKIP_CHUNK))

    def next_header(self) -> BackupHeader | None:
        """Return the next stream header, or None at the end of the stream.

        Any unread data of the current stream is skipped.
        """
        self._skip_rest()
        raw = _read_exact(self._stream, _STREAM_ID.size, allow_eof=True)
        if raw is None:
            return None
        stream_id, attributes, size, name_size = _STREAM_ID.unpack(raw)
        if size >= 1 << 63:
            size -= 1 << 64
        name = ""
        if name_size:
            name_bytes = _read_exact(self._stream, (name_size // 2) * 2)
            name = name_bytes.decode("utf-16-le", errors="replace").split("\x00", 1)[0]
        offset = 0
        if stream_id == StreamId.SPARSE_BLOCK:
            (offset,) = _OFFSET.unpack(_read_exact(self._stream, _OFFSET.size))
            size -= 8
        if size < 0:
            raise BackupStreamError(f"invalid stream size {size}")
        self._remaining = size
        return BackupHeader(
            id=_stream_id(stream_id),
            attributes=attributes,
            size=size,
            name=name,
            offset=offset,
        )

    def read(self, size: int = -1) -> bytes:
        """Read from the current stream; returns b"" at its end."""
        if self._remaining == 0:
            return b""
        if size is None or size < 0:
            parts = []
            while self._remaining:
                parts.append(self.read(min(self._remaining, _SKIP_CHUNK)))
            return b"".join(parts)
        count = min(size, self._remaining)
        if count == 0:
            return b""
        chunk = self._stream.read(count)
        if not chunk:
            raise BackupStreamError("unexpected end of backup stream")
        self._remaining -= len(chunk)
        return chunk

    def __iter__(self) -> Iterator[BackupHeader]:
        while (header := self.next_header()) is not None:
            yield header


class BackupStreamWriter:
    """Writes a stream in the format accepted by the Win32 BackupWrite API."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._remaining = 0

    def write_header(self, header: BackupHeader) -> None:
        """Write the next stream header and prepare for its data."""
        if self._remaining != 0:
            raise BackupStreamError(f"missing {self._remaining} bytes")
        name = header.name.encode("utf-16-le", errors="surrogatepass")
        size = header.size
        if header.id == StreamId.SPARSE_BLOCK:
            size += 8
        self._stream.write(
            _STREAM_ID.pack(int(header.id), header.attributes, size & 0xFFFFFFFFFFFFFFFF, len(name))
        )
        if name:
            self._stream.write(name)
        if header.id == StreamId.SPARSE_BLOCK:
            self._stream.write(_OFFSET.pack(header.offset))
        self._remaining = header.size

    def write(self, data: bytes) -> int:
        """Write data of the current stream."""
        if len(data) > self._remaining:
            raise BackupStreamError(f"too many bytes by {len(data) - self._remaining}")
        written = self._stream.write(data)
        if written is None:
            written = len(data)
        self._remaining -= written
        return written