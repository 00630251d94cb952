# Copyright 2025 Jesse Bate (https://github.com/jbatesy)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Reader for recorded session trace files (.chls) and their compressed
archive variant (.chrlz).

Container layout, all integers big-endian::

    file     := "CHLS" u16 version u16 flags  record*  u32 0
    record   := u32 length  payload[length]
    archive  := "CHRZ" u8 codec  compressed(file)

Record payload::

    u8 flags            bit0 request body, bit1 response, bit2 response body
    i64 started_us      microseconds since the Unix epoch
    i16 tz_minutes      -32768 when the trace has no timezone information
    str16 connection_id, str16 remote_address
    str16 method, str32 url, str16 protocol
    headers             u16 count, then (str16 name, str32 value) pairs
    [blob32 request_body]
    [u16 status, str16 status_text, headers, [blob32 response_body]]
    timings             v1: i64 elapsed_us
                        v2: i64 dns, connect, ssl, send, wait, receive

Durations are in microseconds, -1 meaning "not measured".
"""

import bz2
import logging
import lzma
import struct
import zlib
from contextlib import contextmanager
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Tuple

from .errors import (
    ConversionWarning,
    CorruptRecordWarning,
    FormatError,
    TruncatedInputWarning,
    UnsupportedCompressionError,
)
from .models import Header, TimingMarks, TransactionRecord

logger = logging.getLogger(__name__)

MAGIC = b"CHLS"
ARCHIVE_MAGIC = b"CHRZ"
SUPPORTED_VERSIONS = (1, 2)
END_OF_TRACE = 0
NO_TIMEZONE = -32768
MAX_TZ_MINUTES = 24 * 60 - 1
# Microseconds since the epoch of 0001-01-01 and 9999-12-31T23:59:59.999999
MIN_STARTED_US = -62_135_596_800_000_000
MAX_STARTED_US = 253_402_300_799_999_999

FLAG_REQUEST_BODY = 0x01
FLAG_RESPONSE = 0x02
FLAG_RESPONSE_BODY = 0x04

CODEC_STORED = 0
CODEC_ZLIB = 1
CODEC_GZIP = 2
CODEC_BZIP2 = 3
CODEC_LZMA = 4

_DECOMPRESSORS: Dict[int, Callable[[], object]] = {
    CODEC_ZLIB: zlib.decompressobj,
    CODEC_GZIP: lambda: zlib.decompressobj(16 + zlib.MAX_WBITS),
    CODEC_BZIP2: bz2.BZ2Decompressor,
    CODEC_LZMA: lzma.LZMADecompressor,
}

CODEC_NAMES = {
    CODEC_STORED: "stored",
    CODEC_ZLIB: "zlib",
    CODEC_GZIP: "gzip",
    CODEC_BZIP2: "bzip2",
    CODEC_LZMA: "lzma",
}


class _ShortRead(Exception):
    """The stream ended before the requested number of bytes."""

    def __init__(self, wanted: int, got: int):
        super().__init__(f"wanted {wanted} bytes, got {got}")
        self.wanted = wanted
        self.got = got


class _CorruptStream(Exception):
    """The compressed archive payload could not be decompressed."""
    pass


class _RecordError(Exception):
    """A framed record payload is malformed."""
    pass


class _DecompressingReader:
    """File-like wrapper that decompresses an archive payload on demand."""

    def __init__(self, raw: BinaryIO, decompressor, chunk_size: int = 64 * 1024):
        self._raw = raw
        self._decompressor = decompressor
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._eof = False

    def read(self, size: int) -> bytes:
        while len(self._buffer) < size and not self._eof:
            chunk = self._raw.read(self._chunk_size)
            if not chunk:
                self._eof = True
                break
            try:
                self._buffer += self._decompressor.decompress(chunk)
            except (zlib.error, lzma.LZMAError, OSError, EOFError) as e:
                raise _CorruptStream(str(e)) from e
            if self._decompressor.eof:
                self._eof = True

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data


class _Cursor:
    """Sequential reader over a single record payload."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0
        self.lossy = False

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise _RecordError(
                f"field of {size} bytes overruns payload at offset {self.pos}"
            )
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def unpack(self, fmt: str) -> Tuple:
        size = struct.calcsize(fmt)
        return struct.unpack(fmt, self.take(size))

    def u8(self) -> int:
        return self.unpack(">B")[0]

    def u16(self) -> int:
        return self.unpack(">H")[0]

    def u32(self) -> int:
        return self.unpack(">I")[0]

    def i16(self) -> int:
        return self.unpack(">h")[0]

    def i64(self) -> int:
        return self.unpack(">q")[0]

    def blob32(self) -> bytes:
        return self.take(self.u32())

    def _text(self, raw: bytes) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            # Lossy: invalid sequences become U+FFFD
            self.lossy = True
            return raw.decode("utf-8", errors="replace")

    def text16(self) -> str:
        return self._text(self.take(self.u16()))

    def text32(self) -> str:
        return self._text(self.blob32())

    def headers(self) -> List[Header]:
        count = self.u16()
        return [(self.text16(), self.text32()) for _ in range(count)]


def parse_record(payload: bytes, index: int, version: int) -> TransactionRecord:
    """
    Parse one record payload.

    Raises:
        _RecordError: if the payload does not match the record layout
    """
    cur = _Cursor(payload)
    flags = cur.u8()

    record = TransactionRecord(index=index)
    record.started_us = cur.i64()
    if not MIN_STARTED_US <= record.started_us <= MAX_STARTED_US:
        raise _RecordError(f"start time {record.started_us} is out of range")
    tz = cur.i16()
    if tz != NO_TIMEZONE and abs(tz) > MAX_TZ_MINUTES:
        raise _RecordError(f"timezone offset of {tz} minutes is out of range")
    record.tz_offset = None if tz == NO_TIMEZONE else tz
    record.connection_id = cur.text16()
    record.remote_address = cur.text16()
    record.method = cur.text16()
    record.url = cur.text32()
    record.protocol = cur.text16()
    record.request_headers = cur.headers()
    if flags & FLAG_REQUEST_BODY:
        record.request_body = cur.blob32()

    record.has_response = bool(flags & FLAG_RESPONSE)
    if record.has_response:
        record.status = cur.u16()
        record.status_text = cur.text16()
        record.response_headers = cur.headers()
        if flags & FLAG_RESPONSE_BODY:
            record.response_body = cur.blob32()

    if version == 1:
        record.timings = TimingMarks(elapsed=cur.i64())
    else:
        dns, connect, ssl, send, wait, receive = cur.unpack(">6q")
        record.timings = TimingMarks(
            dns=dns, connect=connect, ssl=ssl,
            send=send, wait=wait, receive=receive,
        )

    if cur.remaining:
        raise _RecordError(f"{cur.remaining} unexpected trailing bytes")

    record.lossy_text = cur.lossy
    return record


class TraceReader:
    """
    Single-pass reader over a session trace.

    The container header is validated on construction; records are parsed
    lazily while iterating. Problems that only affect part of the trace are
    collected in ``warnings`` instead of being raised.

    Example:
        with open_trace("session.chls") as reader:
            for record in reader:
                print(record.method, record.url)
    """

    def __init__(self, stream: BinaryIO, source: str = "<stream>"):
        """
        Args:
            stream: Binary stream positioned at the start of the trace
            source: Name used in log messages

        Raises:
            FormatError: if the header is missing or unrecognized
            UnsupportedCompressionError: if an archive uses an unknown codec
        """
        self.source = source
        self.warnings: List[ConversionWarning] = []
        self.compression: Optional[int] = None
        self.records_read = 0
        self._consumed = False
        self._stream = self._open_container(stream)
        self.version, self.flags = self._read_header()
        logger.debug(
            "Opened %s: version %d, compression %s",
            source, self.version, CODEC_NAMES.get(self.compression, "none"),
        )

    @property
    def is_archive(self) -> bool:
        return self.compression is not None

    def _open_container(self, stream: BinaryIO):
        magic = stream.read(len(MAGIC))
        if magic == MAGIC:
            return stream
        if magic != ARCHIVE_MAGIC:
            if not magic:
                raise FormatError(f"{self.source}: file is empty")
            raise FormatError(f"{self.source}: not a session trace (magic {magic!r})")

        codec_byte = stream.read(1)
        if not codec_byte:
            raise FormatError(f"{self.source}: archive header is truncated")
        codec = codec_byte[0]
        self.compression = codec
        if codec == CODEC_STORED:
            inner = stream
        elif codec in _DECOMPRESSORS:
            inner = _DecompressingReader(stream, _DECOMPRESSORS[codec]())
        else:
            raise UnsupportedCompressionError(codec)

        try:
            magic = inner.read(len(MAGIC))
        except _CorruptStream as e:
            raise FormatError(f"{self.source}: archive payload is corrupt: {e}") from e
        if magic != MAGIC:
            raise FormatError(f"{self.source}: archive does not contain a session trace")
        return inner

    def _read_header(self) -> Tuple[int, int]:
        try:
            version, flags = struct.unpack(">HH", self._read_exact(4))
        except (_ShortRead, _CorruptStream) as e:
            raise FormatError(f"{self.source}: header is truncated") from e
        if version not in SUPPORTED_VERSIONS:
            raise FormatError(f"{self.source}: unsupported trace version {version}")
        return version, flags

    def _read_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        if len(data) < size:
            raise _ShortRead(size, len(data))
        return data

    def _truncated(self, index: int, message: str) -> None:
        warning = TruncatedInputWarning(message, record_index=index)
        logger.debug("%s: %s", self.source, warning)
        self.warnings.append(warning)

    def __iter__(self) -> Iterator[TransactionRecord]:
        if self._consumed:
            raise RuntimeError(f"{self.source}: trace reader can only be iterated once")
        self._consumed = True
        return self._records()

    def _records(self) -> Iterator[TransactionRecord]:
        index = 0
        while True:
            try:
                (length,) = struct.unpack(">I", self._read_exact(4))
                if length == END_OF_TRACE:
                    return
                payload = self._read_exact(length)
            except _ShortRead as e:
                if e.got == 0 and e.wanted == 4:
                    self._truncated(index, "trace ends without an end-of-trace marker")
                else:
                    self._truncated(index, f"trace ends mid-record ({e})")
                return
            except _CorruptStream as e:
                self._truncated(index, f"compressed payload is corrupt: {e}")
                return

            try:
                record = parse_record(payload, index, self.version)
            except _RecordError as e:
                warning = CorruptRecordWarning(f"skipped: {e}", record_index=index)
                logger.debug("%s: %s", self.source, warning)
                self.warnings.append(warning)
            else:
                self.records_read += 1
                yield record
            index += 1


@contextmanager
def open_trace(path: str) -> Iterator[TraceReader]:
    """Open a trace file and yield a reader for it."""
    with open(path, "rb") as f:
        yield TraceReader(f, source=str(path))
