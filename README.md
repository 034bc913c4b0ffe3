# winbackup

Pure-Python tools for the data formats used by Windows backup software.
The package needs only the standard library. It runs on any operating
system, so you can inspect, build and convert backup data without being
on Windows.

## Modules

### `winbackup.backup`: backup streams

This is the format produced by `BackupRead` and consumed by
`BackupWrite`: a series of stream headers, each followed by its data.

- `BackupHeader` is a dataclass with the fields `id`, `attributes`,
  `size`, `name` and `offset`.
  - `name` is used by alternate data streams.
  - `offset` is used by sparse blocks.
- `StreamId` is an `IntEnum` of the stream kinds: `DATA`, `EA_DATA`,
  `SECURITY`, `ALTERNATE_DATA`, `LINK`, `PROPERTY_DATA`, `OBJECT_ID`,
  `REPARSE_DATA`, `SPARSE_BLOCK` and `TXFS_DATA`. An id outside this list
  is kept as a plain `int`.
- `STREAM_SPARSE_ATTRIBUTES` is the attribute bit that marks a stream as
  sparse.
- `BackupStreamReader(stream)` reads a backup stream.
  - `next_header()` returns the next `BackupHeader`, or `None` at the end.
    Any unread data of the current stream is skipped first, by seeking
    when the stream allows it.
  - Iterating over the reader yields the headers one by one.
  - `read(size=-1)` returns data of the current stream, and `b""` once
    that stream is exhausted.
- `BackupStreamWriter(stream)` writes a backup stream.
  - `write_header(header)` starts a new stream. It refuses if the previous
    stream's data is incomplete.
  - `write(data)` writes the current stream's data. It refuses to write
    more bytes than the header announced.
- Truncated or malformed input and misuse raise `BackupStreamError`.

### `winbackup.ea`: extended attributes

- `encode_extended_attributes(eas)` converts a list of
  `ExtendedAttribute(name, value, flags=0)` values into a
  `FILE_FULL_EA_INFORMATION` buffer.
- `decode_extended_attributes(data)` converts a buffer back into that
  list.
- Entries are padded to 4 bytes. The last entry does not need padding
  when decoding.
- These conditions raise `ExtendedAttributeError`, a `ValueError`:
  - the buffer is invalid or truncated;
  - a name is longer than 255 bytes;
  - a value is longer than 65535 bytes.

### `winbackup.fileinfo`: file times and attributes

- `FileBasicInfo` holds the four Win32 FILETIME values
  (`creation_time`, `last_access_time`, `last_write_time`,
  `change_time`) and `file_attributes`.
- `filetime_to_ns` and `ns_to_filetime` convert between FILETIME values
  and nanoseconds since the Unix epoch.
- `FILE_ATTRIBUTE_DIRECTORY` is the directory attribute bit.

### `winbackup.paxtime`: PAX time stamps

- `parse_pax_time(text)` turns `seconds.fraction` text into nanoseconds.
  - Negative times are accepted.
  - Digits beyond nanosecond precision are truncated.
  - Invalid text raises `PaxTimeError`.
- `format_pax_time(ns)` does the reverse and drops trailing zeros.

### `winbackup.backuptar`: tar conversion

This module converts between backup streams and PAX tar entries made
with the standard `tarfile` module. Windows metadata is kept in PAX
records:

| Record | Contents |
| --- | --- |
| `MSWINDOWS.fileattr` | file attributes, as a decimal number |
| `MSWINDOWS.rawsd` | security descriptor, base64 encoded |
| `MSWINDOWS.xattr.<name>` | an extended attribute value, base64 encoded |
| `LIBARCHIVE.creationtime` | creation time, as a PAX time stamp |

Modification, access and change times go in the standard `mtime`,
`atime` and `ctime` records.

- `basic_info_header(name, size, file_info)` builds a `tarfile.TarInfo`
  from a `FileBasicInfo`.
  - Backslashes in the name become slashes.
  - If the attributes include the directory bit, the entry becomes a
    directory of size 0.
- `write_tar_file_from_backup_stream(tar, stream, name, size, file_info)`
  adds a file to an open archive. The archive must use
  `tarfile.PAX_FORMAT`.
  - If `stream` is seekable, it is read twice. This lets metadata that
    appears after the data stream still reach the header. Otherwise that
    metadata is lost.
  - Sparse data is written out with its gaps filled with zeros.
  - Each alternate data stream becomes an entry of its own, named
    `name:stream`, with the `:$DATA` suffix removed.
- `file_info_from_header(header)` returns `(name, size, file_info)`.
  - `size` is 0 unless the entry is a regular file.
  - A missing access or change time becomes FILETIME 0.
  - A missing creation time defaults to the modification time.
- `write_backup_stream_from_tar_file(out, tar, header)` writes the backup
  stream for one entry to `out`. The stream holds the entry's security
  descriptor, its extended attributes and its data.
  - The entries that follow and hold the entry's alternate data streams
    are consumed as well.
  - It returns the next unprocessed `TarInfo`, or `None` at the end of
    the archive.
- Conversion errors raise `BackupTarError`, a `ValueError`. These
  include:
  - an unknown stream id;
  - a size mismatch between the file and its data stream;
  - sparse alternate data streams;
  - invalid base64.

## Example

```python
import io
import tarfile

from winbackup.backup import BackupHeader, BackupStreamReader, BackupStreamWriter, StreamId
from winbackup.backuptar import file_info_from_header, write_tar_file_from_backup_stream
from winbackup.fileinfo import FileBasicInfo, ns_to_filetime

stream = io.BytesIO()
writer = BackupStreamWriter(stream)
writer.write_header(BackupHeader(id=StreamId.DATA, size=5))
writer.write(b"hello")

stream.seek(0)
reader = BackupStreamReader(stream)
for header in reader:
    print(header.id, reader.read(header.size))

when = ns_to_filetime(1_600_000_000 * 10**9)
info = FileBasicInfo(when, when, when, when, 0x20)

archive = io.BytesIO()
stream.seek(0)
with tarfile.open(fileobj=archive, mode="w", format=tarfile.PAX_FORMAT) as tar:
    write_tar_file_from_backup_stream(tar, stream, "dir\\hello.txt", 5, info)

archive.seek(0)
with tarfile.open(fileobj=archive) as tar:
    print(file_info_from_header(tar.next()))
```

## What it does not do

- It works only on data already in memory or in files. It does not call
  the Windows backup APIs, so it cannot read the backup stream of a live
  file or restore one to disk.
- It does not open files with backup privileges, and it does not query or
  set file information on a handle.
- Reparse points (symbolic links and mount points) are not converted in
  either direction. Both raise `BackupTarError`.
- Security descriptors written as SDDL text (`MSWINDOWS.sd`) are not
  converted. Only the raw form is.
- There is no command-line tool.

## Installing and testing

```
pip install .[test]
pytest
```