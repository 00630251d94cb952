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
Writer for session trace files, the inverse of :mod:`trace_parser.reader`.

Used to produce synthetic traces, e.g. for test fixtures or for exporting
transactions recorded by other tools.
"""

import bz2
import gzip
import io
import lzma
import struct
import zlib
from typing import BinaryIO, Iterable, List, Optional

from .errors import UnsupportedCompressionError
from .models import UNKNOWN, Header, TransactionRecord
from .reader import (
    ARCHIVE_MAGIC,
    CODEC_BZIP2,
    CODEC_GZIP,
    CODEC_LZMA,
    CODEC_STORED,
    CODEC_ZLIB,
    END_OF_TRACE,
    FLAG_REQUEST_BODY,
    FLAG_RESPONSE,
    FLAG_RESPONSE_BODY,
    MAGIC,
    NO_TIMEZONE,
    SUPPORTED_VERSIONS,
)


def _text16(value: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > 0xFFFF:
        raise ValueError(f"string too long for a 16-bit field: {len(raw)} bytes")
    return struct.pack(">H", len(raw)) + raw


def _blob32(raw: bytes) -> bytes:
    return struct.pack(">I", len(raw)) + raw


def _text32(value: str) -> bytes:
    return _blob32(value.encode("utf-8"))


def _headers(headers: List[Header]) -> bytes:
    parts = [struct.pack(">H", len(headers))]
    for name, value in headers:
        parts.append(_text16(name))
        parts.append(_text32(value))
    return b"".join(parts)


def encode_record(record: TransactionRecord, version: int = 2) -> bytes:
    """Serialize a record payload (without its length prefix)."""
    flags = 0
    if record.request_body is not None:
        flags |= FLAG_REQUEST_BODY
    if record.has_response:
        flags |= FLAG_RESPONSE
        if record.response_body is not None:
            flags |= FLAG_RESPONSE_BODY

    tz = NO_TIMEZONE if record.tz_offset is None else record.tz_offset
    parts = [
        struct.pack(">Bqh", flags, record.started_us, tz),
        _text16(record.connection_id),
        _text16(record.remote_address),
        _text16(record.method),
        _text32(record.url),
        _text16(record.protocol),
        _headers(record.request_headers),
    ]
    if record.request_body is not None:
        parts.append(_blob32(record.request_body))

    if record.has_response:
        parts.append(struct.pack(">H", record.status))
        parts.append(_text16(record.status_text))
        parts.append(_headers(record.response_headers))
        if record.response_body is not None:
            parts.append(_blob32(record.response_body))

    timings = record.timings
    if version == 1:
        elapsed = timings.elapsed if timings.elapsed is not None else UNKNOWN
        parts.append(struct.pack(">q", elapsed))
    else:
        parts.append(struct.pack(">6q", *timings.phases))

    return b"".join(parts)


class TraceWriter:
    """
    Streaming writer for the uncompressed trace container.

    Example:
        with open("session.chls", "wb") as f, TraceWriter(f) as writer:
            writer.write(record)
    """

    def __init__(self, stream: BinaryIO, version: int = 2):
        if version not in SUPPORTED_VERSIONS:
            raise ValueError(f"Unsupported trace version: {version}")
        self.stream = stream
        self.version = version
        self.closed = False
        self.stream.write(MAGIC + struct.pack(">HH", version, 0))

    def write(self, record: TransactionRecord) -> None:
        payload = encode_record(record, self.version)
        self.stream.write(struct.pack(">I", len(payload)) + payload)

    def close(self) -> None:
        """Write the end-of-trace marker."""
        if not self.closed:
            self.stream.write(struct.pack(">I", END_OF_TRACE))
            self.closed = True

    def __enter__(self) -> "TraceWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


def dump_trace(records: Iterable[TransactionRecord], version: int = 2) -> bytes:
    """Serialize records into a complete trace container."""
    buffer = io.BytesIO()
    with TraceWriter(buffer, version=version) as writer:
        for record in records:
            writer.write(record)
    return buffer.getvalue()


def compress_archive(trace: bytes, codec: int = CODEC_GZIP) -> bytes:
    """Wrap a serialized trace in the compressed archive container."""
    if codec == CODEC_STORED:
        body = trace
    elif codec == CODEC_ZLIB:
        body = zlib.compress(trace)
    elif codec == CODEC_GZIP:
        # mtime=0 keeps the archive reproducible
        body = gzip.compress(trace, mtime=0)
    elif codec == CODEC_BZIP2:
        body = bz2.compress(trace)
    elif codec == CODEC_LZMA:
        body = lzma.compress(trace)
    else:
        raise UnsupportedCompressionError(codec)
    return ARCHIVE_MAGIC + bytes([codec]) + body


def write_trace(
    path: str,
    records: Iterable[TransactionRecord],
    version: int = 2,
    compression: Optional[int] = None,
) -> None:
    """Write records to a trace file, optionally as a compressed archive."""
    data = dump_trace(records, version=version)
    if compression is not None:
        data = compress_archive(data, compression)
    with open(path, "wb") as f:
        f.write(data)
