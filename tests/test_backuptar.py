import base64
import io
import tarfile

import pytest

from winbackup.backup import (
    STREAM_SPARSE_ATTRIBUTES,
    BackupHeader,
    BackupStreamReader,
    BackupStreamWriter,
    StreamId,
)
from winbackup.backuptar import (
    BackupTarError,
    basic_info_header,
    file_info_from_header,
    write_backup_stream_from_tar_file,
    write_tar_file_from_backup_stream,
)
from winbackup.ea import ExtendedAttribute, decode_extended_attributes, encode_extended_attributes
from winbackup.fileinfo import FileBasicInfo, ns_to_filetime

NAME = "C:\\data\\file.txt"
SLASH_NAME = "C:/data/file.txt"
PAYLOAD = b"testing 1 2 3\n"
ALT_PAYLOAD = b"alternate data stream\n"
SECURITY = b"\x01\x00\x04\x80" + bytes(16)
EAS = [ExtendedAttribute(name="user.comment", value=b"hello")]


class Unseekable:
    def __init__(self, data):
        self._inner = io.BytesIO(data)

    def read(self, size=-1):
        return self._inner.read(size)


def sample_info(attributes=0x20):
    return FileBasicInfo(
        creation_time=ns_to_filetime(1_600_000_000_123_456_700),
        last_access_time=ns_to_filetime(1_600_000_100_000_000_000),
        last_write_time=ns_to_filetime(1_600_000_200_500_000_000),
        change_time=ns_to_filetime(1_600_000_300_000_000_100),
        file_attributes=attributes,
    )


def build_stream(*parts):
    buf = io.BytesIO()
    writer = BackupStreamWriter(buf)
    for header, data in parts:
        writer.write_header(header)
        if data:
            writer.write(data)
    return buf.getvalue()


def full_stream(ea_after_data=False):
    ea_data = encode_extended_attributes(EAS)
    security = (BackupHeader(StreamId.SECURITY, size=len(SECURITY)), SECURITY)
    ea = (BackupHeader(StreamId.EA_DATA, size=len(ea_data)), ea_data)
    data = (BackupHeader(StreamId.DATA, size=len(PAYLOAD)), PAYLOAD)
    alt = (
        BackupHeader(StreamId.ALTERNATE_DATA, size=len(ALT_PAYLOAD), name=":ads.txt:$DATA"),
        ALT_PAYLOAD,
    )
    if ea_after_data:
        return build_stream(security, data, ea, alt)
    return build_stream(security, ea, data, alt)


def to_tar(stream, size=len(PAYLOAD), info=None, fmt=tarfile.PAX_FORMAT):
    archive = io.BytesIO()
    with tarfile.open(fileobj=archive, mode="w", format=fmt) as tar:
        write_tar_file_from_backup_stream(tar, stream, NAME, size, info or sample_info())
    archive.seek(0)
    return archive


def read_stream(data):
    reader = BackupStreamReader(io.BytesIO(data))
    return [(h.id, h.name, reader.read()) for h in reader]


def test_round_trip_header_and_file_info():
    info = sample_info()
    archive = to_tar(io.BytesIO(full_stream()), info=info)
    with tarfile.open(fileobj=archive, mode="r") as tar:
        members = tar.getmembers()
        header = members[0]
        assert header.name == SLASH_NAME
        assert tar.extractfile(header).read() == PAYLOAD
        name, size, info2 = file_info_from_header(header)
        assert name == SLASH_NAME
        assert size == len(PAYLOAD)
        assert info2 == info
        assert "MSWINDOWS.fileattr" in header.pax_headers
        assert "MSWINDOWS.rawsd" in header.pax_headers
        assert header.pax_headers["MSWINDOWS.rawsd"] == base64.b64encode(SECURITY).decode()
        assert header.pax_headers["MSWINDOWS.xattr.user.comment"] == base64.b64encode(b"hello").decode()
        assert len(members) == 2
        assert members[1].name == SLASH_NAME + ":ads.txt"
        assert tar.extractfile(members[1]).read() == ALT_PAYLOAD


def test_seekable_stream_keeps_ea_after_data():
    archive = to_tar(io.BytesIO(full_stream(ea_after_data=True)))
    with tarfile.open(fileobj=archive, mode="r") as tar:
        header = tar.getmembers()[0]
        assert "MSWINDOWS.xattr.user.comment" in header.pax_headers
        assert "MSWINDOWS.rawsd" in header.pax_headers


def test_unseekable_stream_drops_ea_after_data():
    archive = to_tar(Unseekable(full_stream(ea_after_data=True)))
    with tarfile.open(fileobj=archive, mode="r") as tar:
        members = tar.getmembers()
        assert "MSWINDOWS.xattr.user.comment" not in members[0].pax_headers
        assert "MSWINDOWS.rawsd" in members[0].pax_headers
        assert tar.extractfile(members[0]).read() == PAYLOAD
        assert tar.extractfile(members[1]).read() == ALT_PAYLOAD


def test_restore_backup_stream_from_tar():
    archive = to_tar(io.BytesIO(full_stream()))
    out = io.BytesIO()
    with tarfile.open(fileobj=archive, mode="r") as tar:
        first = tar.next()
        assert write_backup_stream_from_tar_file(out, tar, first) is None
    streams = read_stream(out.getvalue())
    assert [s[0] for s in streams] == [
        StreamId.SECURITY,
        StreamId.EA_DATA,
        StreamId.DATA,
        StreamId.ALTERNATE_DATA,
    ]
    assert streams[0][2] == SECURITY
    assert decode_extended_attributes(streams[1][2]) == EAS
    assert streams[2][2] == PAYLOAD
    assert streams[3][1] == ":ads.txt:$DATA"
    assert streams[3][2] == ALT_PAYLOAD


def test_restore_returns_next_entry():
    archive = to_tar(io.BytesIO(full_stream()))
    other = tarfile.TarInfo("other.txt")
    other.size = 3
    archive.seek(0, io.SEEK_END)
    combined = io.BytesIO()
    with tarfile.open(fileobj=combined, mode="w", format=tarfile.PAX_FORMAT) as out_tar:
        with tarfile.open(fileobj=io.BytesIO(archive.getvalue()), mode="r") as in_tar:
            for member in in_tar.getmembers():
                out_tar.addfile(member, in_tar.extractfile(member))
        out_tar.addfile(other, io.BytesIO(b"xyz"))
    combined.seek(0)
    with tarfile.open(fileobj=combined, mode="r") as tar:
        nxt = write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())
        assert nxt.name == "other.txt"
        assert tar.extractfile(nxt).read() == b"xyz"


def test_sparse_data_is_expanded():
    stream = build_stream(
        (BackupHeader(StreamId.DATA, attributes=STREAM_SPARSE_ATTRIBUTES, size=0), b""),
        (BackupHeader(StreamId.SPARSE_BLOCK, size=3, offset=0), b"abc"),
        (BackupHeader(StreamId.SPARSE_BLOCK, size=3, offset=10), b"xyz"),
        (BackupHeader(StreamId.SPARSE_BLOCK, size=0, offset=13), b""),
    )
    archive = to_tar(Unseekable(stream), size=13)
    with tarfile.open(fileobj=archive, mode="r") as tar:
        member = tar.getmembers()[0]
        assert tar.extractfile(member).read() == b"abc" + bytes(7) + b"xyz"


def test_sparse_data_shorter_than_size_raises():
    stream = build_stream(
        (BackupHeader(StreamId.DATA, attributes=STREAM_SPARSE_ATTRIBUTES, size=0), b""),
        (BackupHeader(StreamId.SPARSE_BLOCK, size=3, offset=0), b"abc"),
        (BackupHeader(StreamId.SPARSE_BLOCK, size=0, offset=3), b""),
    )
    with pytest.raises(BackupTarError):
        to_tar(Unseekable(stream), size=10)


def test_size_mismatch_raises():
    stream = build_stream((BackupHeader(StreamId.DATA, size=len(PAYLOAD)), PAYLOAD))
    with pytest.raises(BackupTarError, match="mismatch"):
        to_tar(io.BytesIO(stream), size=len(PAYLOAD) + 1)


def test_unknown_stream_raises():
    stream = build_stream((BackupHeader(42, size=2), b"zz"))
    with pytest.raises(BackupTarError, match="unknown stream ID 42"):
        to_tar(io.BytesIO(stream), size=0)


def test_reparse_data_raises():
    stream = build_stream((BackupHeader(StreamId.REPARSE_DATA, size=4), b"\x00" * 4))
    with pytest.raises(BackupTarError):
        to_tar(io.BytesIO(stream), size=0)


def test_sparse_alternate_stream_raises():
    stream = build_stream(
        (BackupHeader(StreamId.DATA, size=len(PAYLOAD)), PAYLOAD),
        (
            BackupHeader(
                StreamId.ALTERNATE_DATA,
                attributes=STREAM_SPARSE_ATTRIBUTES,
                size=2,
                name=":s:$DATA",
            ),
            b"ab",
        ),
    )
    with pytest.raises(BackupTarError, match="sparse alternate"):
        to_tar(io.BytesIO(stream))


def test_non_pax_archive_rejected():
    with pytest.raises(BackupTarError):
        to_tar(io.BytesIO(full_stream()), fmt=tarfile.GNU_FORMAT)


def test_basic_info_header_for_directory():
    header = basic_info_header("C:\\dir", 123, sample_info(attributes=0x10))
    assert header.name == "C:/dir"
    assert header.type == tarfile.DIRTYPE
    assert header.size == 0
    assert header.mode & 0o040000
    assert header.pax_headers["MSWINDOWS.fileattr"] == "16"


def test_basic_info_header_for_file():
    header = basic_info_header(NAME, 5, sample_info())
    assert header.type == tarfile.REGTYPE
    assert header.size == 5
    assert header.pax_headers["MSWINDOWS.fileattr"] == "32"


def test_file_info_defaults_without_pax_records():
    header = tarfile.TarInfo("plain")
    header.size = 4
    header.mtime = 1000
    name, size, info = file_info_from_header(header)
    assert (name, size) == ("plain", 4)
    assert info.last_write_time == ns_to_filetime(1000 * 10**9)
    assert info.creation_time == info.last_write_time
    assert info.file_attributes == 0


def test_file_info_directory_without_attributes():
    header = tarfile.TarInfo("dir")
    header.type = tarfile.DIRTYPE
    _, size, info = file_info_from_header(header)
    assert size == 0
    assert info.file_attributes == 0x10


@pytest.mark.parametrize("value", ["abc", "4294967296", "-1"])
def test_file_info_invalid_attributes(value):
    header = tarfile.TarInfo("x")
    header.pax_headers = {"MSWINDOWS.fileattr": value}
    with pytest.raises(BackupTarError):
        file_info_from_header(header)


def _single_entry_tar(header, data=b""):
    archive = io.BytesIO()
    with tarfile.open(fileobj=archive, mode="w", format=tarfile.PAX_FORMAT) as tar:
        tar.addfile(header, io.BytesIO(data) if data else None)
    archive.seek(0)
    return tarfile.open(fileobj=archive, mode="r")


def test_restore_symlink_raises():
    header = tarfile.TarInfo("link")
    header.type = tarfile.SYMTYPE
    header.linkname = "target"
    with _single_entry_tar(header) as tar:
        with pytest.raises(BackupTarError):
            write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())


def test_restore_sddl_only_raises():
    header = tarfile.TarInfo("f")
    header.pax_headers = {"MSWINDOWS.sd": "D:P(A;;GA;;;WD)"}
    with _single_entry_tar(header) as tar:
        with pytest.raises(BackupTarError):
            write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())


def test_restore_bad_base64_raises():
    header = tarfile.TarInfo("f")
    header.pax_headers = {"MSWINDOWS.rawsd": "not base64!"}
    with _single_entry_tar(header) as tar:
        with pytest.raises(BackupTarError):
            write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())


def test_restore_directory_writes_no_data_stream():
    header = tarfile.TarInfo("dir")
    header.type = tarfile.DIRTYPE
    out = io.BytesIO()
    with _single_entry_tar(header) as tar:
        assert write_backup_stream_from_tar_file(out, tar, tar.next()) is None
    assert out.getvalue() == b""