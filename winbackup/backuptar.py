"""Conversion between Win32 backup streams and PAX tar entries.

Win32 metadata is stored as PAX vendor records:

``MSWINDOWS.fileattr``
    the file attributes, as a decimal value;
``MSWINDOWS.rawsd``
    the security descriptor, base64 encoded;
``MSWINDOWS.xattr.<name>``
    an extended attribute value, base64 encoded;
``LIBARCHIVE.creationtime``
    the creation time, as a PAX time stamp.
"""

from __future__ import annotations

import base64
import binascii
import io
import tarfile

from .backup import (
    STREAM_SPARSE_ATTRIBUTES,
    BackupHeader,
    BackupStreamReader,
    BackupStreamWriter,
    StreamId,
)
from .ea import ExtendedAttribute, decode_extended_attributes, encode_extended_attributes
from .fileinfo import FILE_ATTRIBUTE_DIRECTORY, FileBasicInfo, filetime_to_ns, ns_to_filetime
from .paxtime import format_pax_time, parse_pax_time

__all__ = [
    "BackupTarError",
    "basic_info_header",
    "write_tar_file_from_backup_stream",
    "file_info_from_header",
    "write_backup_stream_from_tar_file",
]

S_IFDIR = 0o040000
S_IFREG = 0o100000
S_IFLNK = 0o120000

HDR_FILE_ATTRIBUTES = "MSWINDOWS.fileattr"
HDR_SECURITY_DESCRIPTOR = "MSWINDOWS.sd"
HDR_RAW_SECURITY_DESCRIPTOR = "MSWINDOWS.rawsd"
HDR_MOUNT_POINT = "MSWINDOWS.mountpoint"
HDR_EA_PREFIX = "MSWINDOWS.xattr."
HDR_CREATION_TIME = "LIBARCHIVE.creationtime"

_NS_PER_SECOND = 1_000_000_000
_CHUNK = 64 * 1024
_DATA_SUFFIX = ":$DATA"
_TIME_KEYS = ("mtime", "atime", "ctime")
_REGULAR_TYPES = (tarfile.REGTYPE, tarfile.AREGTYPE)

_IGNORED_BEFORE_DATA = frozenset(
    {
        StreamId.ALTERNATE_DATA,
        StreamId.LINK,
        StreamId.PROPERTY_DATA,
        StreamId.OBJECT_ID,
        StreamId.TXFS_DATA,
    }
)
_IGNORED_AFTER_DATA = frozenset(
    {
        StreamId.EA_DATA,
        StreamId.LINK,
        StreamId.PROPERTY_DATA,
        StreamId.OBJECT_ID,
        StreamId.TXFS_DATA,
    }
)


class BackupTarError(ValueError):
    """Raised when a backup stream and a tar entry cannot be converted."""


def _to_slash(name: str) -> str:
    return name.replace("\\", "/")


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BackupTarError(f"invalid base64 value: {exc}") from exc


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _restart_position(stream) -> int | None:
    """Return the current position of a seekable stream, or None."""
    seekable = getattr(stream, "seekable", None)
    if seekable is None:
        return None
    try:
        if not seekable():
            return None
        return stream.seek(0, io.SEEK_CUR)
    except (OSError, ValueError):
        return None


class _FullReader:
    """Reads from a backup stream until the requested count or its end."""

    def __init__(self, reader: BackupStreamReader) -> None:
        self._reader = reader

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return self._reader.read()
        parts = []
        got = 0
        while got < size:
            chunk = self._reader.read(size - got)
            if not chunk:
                break
            parts.append(chunk)
            got += len(chunk)
        return b"".join(parts)


def _sparse_chunks(reader: BackupStreamReader):
    """Yield the file content described by a run of sparse blocks."""
    current = 0
    while True:
        block = reader.next_header()
        if block is None:
            raise BackupTarError("unexpected end of sparse data")
        if block.id != StreamId.SPARSE_BLOCK:
            raise BackupTarError(f"unexpected stream {int(block.id)}")
        gap = block.offset - current
        while gap > 0:
            count = min(gap, _CHUNK)
            yield bytes(count)
            gap -= count
        if block.size == 0:
            return
        copied = 0
        while chunk := reader.read(_CHUNK):
            copied += len(chunk)
            yield chunk
        current = block.offset + copied


class _SparseData:
    """File-like view of sparse blocks, expanded to ``length`` bytes."""

    def __init__(self, reader: BackupStreamReader, length: int, name: str) -> None:
        self._chunks = _sparse_chunks(reader)
        self._pending = b""
        self._left = length
        self._name = name

    def read(self, size: int = -1) -> bytes:
        want = self._left if size is None or size < 0 else min(size, self._left)
        out = bytearray()
        while len(out) < want:
            if not self._pending:
                chunk = next(self._chunks, None)
                if chunk is None:
                    raise BackupTarError(f"{self._name}: sparse data is shorter than the file size")
                self._pending = chunk
                continue
            take = self._pending[: want - len(out)]
            out += take
            self._pending = self._pending[len(take) :]
        self._left -= len(out)
        return bytes(out)

    def finish(self) -> None:
        """Consume the rest of the sparse blocks, which must hold no data."""
        if self._left or self._pending or any(self._chunks):
            raise BackupTarError(f"{self._name}: sparse data does not match the file size")


def _set_times(header: tarfile.TarInfo, mtime_ns: int, atime_ns: int, ctime_ns: int) -> None:
    header.mtime = mtime_ns // _NS_PER_SECOND
    header.pax_headers["mtime"] = format_pax_time(mtime_ns)
    header.pax_headers["atime"] = format_pax_time(atime_ns)
    header.pax_headers["ctime"] = format_pax_time(ctime_ns)


def basic_info_header(name: str, size: int, file_info: FileBasicInfo) -> tarfile.TarInfo:
    """Create a PAX tar header from basic file information."""
    header = tarfile.TarInfo(_to_slash(name))
    header.size = size
    header.type = tarfile.REGTYPE
    header.mode = 0
    header.pax_headers = {}
    _set_times(
        header,
        filetime_to_ns(file_info.last_write_time),
        filetime_to_ns(file_info.last_access_time),
        filetime_to_ns(file_info.change_time),
    )
    header.pax_headers[HDR_FILE_ATTRIBUTES] = str(file_info.file_attributes)
    header.pax_headers[HDR_CREATION_TIME] = format_pax_time(filetime_to_ns(file_info.creation_time))
    if file_info.file_attributes & FILE_ATTRIBUTE_DIRECTORY:
        header.mode |= S_IFDIR
        header.size = 0
        header.type = tarfile.DIRTYPE
    return header


def write_tar_file_from_backup_stream(tar, stream, name, size, file_info) -> None:
    """Write a file to a PAX tar archive from a Win32 backup stream.

    If ``stream`` is seekable it is read twice, so that metadata found after
    the data stream still reaches the tar header; otherwise such metadata is
    dropped. Alternate data streams become entries named ``name:stream``.
    """
    if tar.format != tarfile.PAX_FORMAT:
        raise BackupTarError("tar archive must use the PAX format")
    name = _to_slash(name)
    header = basic_info_header(name, size, file_info)

    restart = _restart_position(stream)
    read_twice = restart is not None

    reader = BackupStreamReader(stream)
    data_header: BackupHeader | None = None
    while data_header is None:
        block = reader.next_header()
        if block is None:
            break
        if block.id == StreamId.DATA:
            header.mode |= S_IFREG
            if not read_twice:
                data_header = block
        elif block.id == StreamId.SECURITY:
            header.pax_headers[HDR_RAW_SECURITY_DESCRIPTOR] = _b64encode(reader.read())
        elif block.id == StreamId.REPARSE_DATA:
            raise BackupTarError(f"{name}: reparse points are not supported")
        elif block.id == StreamId.EA_DATA:
            for ea in decode_extended_attributes(reader.read()):
                header.pax_headers[HDR_EA_PREFIX + ea.name] = _b64encode(ea.value)
        elif block.id in _IGNORED_BEFORE_DATA:
            pass
        else:
            raise BackupTarError(f"{name}: unknown stream ID {int(block.id)}")

    if read_twice:
        stream.seek(restart, io.SEEK_SET)
        reader = BackupStreamReader(stream)
        while data_header is None:
            block = reader.next_header()
            if block is None:
                break
            if block.id == StreamId.DATA:
                data_header = block

    if data_header is None:
        if header.type in _REGULAR_TYPES and header.size:
            raise BackupTarError(f"{name}: missing data stream for file of size {size}")
        tar.addfile(header)
    elif not data_header.attributes & STREAM_SPARSE_ATTRIBUTES:
        if size != data_header.size:
            raise BackupTarError(
                f"{name}: mismatch between file size {size} and header size {data_header.size}"
            )
        tar.addfile(header, _FullReader(reader))
    else:
        sparse = _SparseData(reader, header.size, name)
        tar.addfile(header, sparse)
        sparse.finish()

    for block in reader:
        if block.id == StreamId.ALTERNATE_DATA:
            if block.attributes & STREAM_SPARSE_ATTRIBUTES:
                raise BackupTarError("tar of sparse alternate data streams is unsupported")
            alt_name = block.name.removesuffix(_DATA_SUFFIX)
            ads = tarfile.TarInfo(name + alt_name)
            ads.mode = header.mode
            ads.type = tarfile.REGTYPE
            ads.size = block.size
            ads.mtime = header.mtime
            ads.pax_headers = {
                key: header.pax_headers[key] for key in _TIME_KEYS if key in header.pax_headers
            }
            header = ads
            tar.addfile(ads, _FullReader(reader))
        elif block.id in _IGNORED_AFTER_DATA:
            pass
        else:
            raise BackupTarError(f"{name}: unknown stream ID {int(block.id)} after data")


def _header_mtime_ns(header: tarfile.TarInfo) -> int:
    if "mtime" in header.pax_headers:
        return parse_pax_time(header.pax_headers["mtime"])
    if isinstance(header.mtime, float):
        return round(header.mtime * _NS_PER_SECOND)
    return int(header.mtime) * _NS_PER_SECOND


def _optional_filetime(pax: dict, key: str) -> int:
    if key in pax:
        return ns_to_filetime(parse_pax_time(pax[key]))
    return 0


def file_info_from_header(header: tarfile.TarInfo) -> tuple[str, int, FileBasicInfo]:
    """Return the name, size and basic file information stored in a tar header.

    Access and change times missing from the header become FILETIME 0; a
    missing creation time defaults to the modification time.
    """
    name = header.name
    size = header.size if header.type in _REGULAR_TYPES else 0
    pax = header.pax_headers
    write_time = ns_to_filetime(_header_mtime_ns(header))
    info = FileBasicInfo(
        creation_time=write_time,
        last_access_time=_optional_filetime(pax, "atime"),
        last_write_time=write_time,
        change_time=_optional_filetime(pax, "ctime"),
    )
    if HDR_FILE_ATTRIBUTES in pax:
        text = pax[HDR_FILE_ATTRIBUTES]
        if not (text.isascii() and text.isdigit()) or int(text) > 0xFFFFFFFF:
            raise BackupTarError(f"invalid file attributes {text!r}")
        info.file_attributes = int(text)
    elif header.type == tarfile.DIRTYPE:
        info.file_attributes |= FILE_ATTRIBUTE_DIRECTORY
    if HDR_CREATION_TIME in pax:
        info.creation_time = ns_to_filetime(parse_pax_time(pax[HDR_CREATION_TIME]))
    return name, size, info


def _copy(source, writer: BackupStreamWriter) -> None:
    while chunk := source.read(_CHUNK):
        writer.write(chunk)


def write_backup_stream_from_tar_file(out, tar, header):
    """Write a Win32 backup stream for the current tar entry.

    Entries that follow and hold the entry's alternate data streams are
    consumed as well. Returns the next tar entry not processed, or None at
    the end of the archive.
    """
    pax = header.pax_headers
    if header.type == tarfile.SYMTYPE:
        raise BackupTarError(f"{header.name}: symbolic links and mount points are not supported")

    security = b""
    if HDR_RAW_SECURITY_DESCRIPTOR in pax:
        security = _b64decode(pax[HDR_RAW_SECURITY_DESCRIPTOR])
    elif HDR_SECURITY_DESCRIPTOR in pax:
        raise BackupTarError(f"{header.name}: SDDL security descriptors are not supported")

    eas = [
        ExtendedAttribute(name=key[len(HDR_EA_PREFIX) :], value=_b64decode(value))
        for key, value in pax.items()
        if key.startswith(HDR_EA_PREFIX)
    ]

    writer = BackupStreamWriter(out)
    if security:
        writer.write_header(BackupHeader(id=StreamId.SECURITY, size=len(security)))
        writer.write(security)
    if eas:
        ea_data = encode_extended_attributes(eas)
        writer.write_header(BackupHeader(id=StreamId.EA_DATA, size=len(ea_data)))
        writer.write(ea_data)
    if header.type in _REGULAR_TYPES:
        writer.write_header(BackupHeader(id=StreamId.DATA, size=header.size))
        _copy(tar.extractfile(header), writer)

    prefix = header.name + ":"
    while True:
        following = tar.next()
        if following is None:
            return None
        if following.type not in _REGULAR_TYPES or not following.name.startswith(prefix):
            return following
        writer.write_header(
            BackupHeader(
                id=StreamId.ALTERNATE_DATA,
                size=following.size,
                name=following.name[len(header.name) :] + _DATA_SUFFIX,
            )
        )
        _copy(tar.extractfile(following), writer)