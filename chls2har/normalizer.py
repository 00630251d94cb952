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
Normalization of recorded trace transactions.

Turns a raw TransactionRecord into a CanonicalTransaction: bodies are
dechunked and decompressed, timings converted to milliseconds and the start
time made timezone-aware.
"""

import gzip
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional

import brotli

from trace_parser.errors import ConversionWarning, DecodingWarning
from trace_parser.models import (
    UNKNOWN,
    Header,
    TimingMarks,
    TransactionRecord,
    find_all_headers,
    find_header,
)

DEFAULT_MIME_TYPE = "application/octet-stream"

Decoder = Callable[[bytes], bytes]


def _inflate(body: bytes) -> bytes:
    # "deflate" is zlib-wrapped per RFC 9110 but raw deflate is common
    try:
        return zlib.decompress(body)
    except zlib.error:
        return zlib.decompress(body, -zlib.MAX_WBITS)


def _identity(body: bytes) -> bytes:
    return body


def dechunk(body: bytes) -> bytes:
    """
    Decode a body sent with ``Transfer-Encoding: chunked``.

    Raises:
        ValueError: if the framing is malformed or the terminating chunk is missing
    """
    chunks = []
    cursor = 0
    total = len(body)

    while True:
        newline = body.find(b"\r\n", cursor)
        if newline == -1:
            raise ValueError("chunked body ends before the last chunk")

        size_line = body[cursor:newline].split(b";", 1)[0].strip()
        try:
            size = int(size_line, 16)
        except ValueError:
            raise ValueError(f"invalid chunk size {size_line[:16]!r}") from None

        start = newline + 2
        if size == 0:
            # Trailer fields after the last chunk are dropped
            return b"".join(chunks)

        end = start + size
        if end + 2 > total or body[end:end + 2] != b"\r\n":
            raise ValueError(f"chunk of {size} bytes at offset {start} is incomplete")
        chunks.append(body[start:end])
        cursor = end + 2


@dataclass(frozen=True)
class CodecRegistry:
    """Immutable table of Content-Encoding decoders, keyed by lowercase token."""

    decoders: Mapping[str, Decoder] = field(default_factory=lambda: MappingProxyType({
        "gzip": gzip.decompress,
        "x-gzip": gzip.decompress,
        "deflate": _inflate,
        "br": brotli.decompress,
        "identity": _identity,
    }))

    def get(self, coding: str) -> Optional[Decoder]:
        return self.decoders.get(coding.strip().lower())

    def with_decoder(self, coding: str, decoder: Decoder) -> "CodecRegistry":
        """Return a new registry with an extra (or replaced) decoder."""
        decoders = dict(self.decoders)
        decoders[coding.lower()] = decoder
        return CodecRegistry(decoders=MappingProxyType(decoders))


@dataclass(frozen=True)
class NormalizerConfig:
    """Explicit configuration passed to the normalizer."""

    codecs: CodecRegistry = field(default_factory=CodecRegistry)
    sniff_mime: bool = True


@dataclass
class CanonicalBody:
    """A message body resolved to its logical content."""

    content: bytes
    wire_size: int
    mime_type: str = DEFAULT_MIME_TYPE
    content_encoding: str = ""
    transfer_encoding: str = ""
    decoding_failed: bool = False
    decoding_error: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def was_encoded(self) -> bool:
        return bool(self.content_encoding or self.transfer_encoding)

    @property
    def compression_saved(self) -> Optional[int]:
        """Bytes saved by content coding, when the body was decoded."""
        if self.decoding_failed or not self.content_encoding:
            return None
        return self.size - self.wire_size

    @property
    def encoding_summary(self) -> str:
        parts = []
        if self.transfer_encoding:
            parts.append(f"Transfer-Encoding: {self.transfer_encoding}")
        if self.content_encoding:
            parts.append(f"Content-Encoding: {self.content_encoding}")
        return "; ".join(parts)


@dataclass
class CanonicalTimings:
    """Phase durations in milliseconds; -1 when not available."""

    blocked: float = UNKNOWN
    dns: float = UNKNOWN
    connect: float = UNKNOWN
    ssl: float = UNKNOWN
    send: float = UNKNOWN
    wait: float = UNKNOWN
    receive: float = UNKNOWN

    @property
    def total(self) -> float:
        """Sum of the measured phases; ssl is already part of connect."""
        phases = (self.blocked, self.dns, self.connect, self.send, self.wait, self.receive)
        return round(sum(p for p in phases if p != UNKNOWN), 3)

    @property
    def all_unknown(self) -> bool:
        phases = (self.blocked, self.dns, self.connect, self.ssl, self.send, self.wait, self.receive)
        return all(p == UNKNOWN for p in phases)


@dataclass
class CanonicalTransaction:
    """Normalized, encoding-resolved request/response pair."""

    index: int
    started: datetime
    method: str
    url: str
    http_version: str
    request_headers: List[Header] = field(default_factory=list)
    request_body: Optional[CanonicalBody] = None
    has_response: bool = True
    status: int = 0
    status_text: str = ""
    response_headers: List[Header] = field(default_factory=list)
    response_body: Optional[CanonicalBody] = None
    timings: CanonicalTimings = field(default_factory=CanonicalTimings)
    connection_id: str = ""
    server_ip: str = ""
    warnings: List[ConversionWarning] = field(default_factory=list)

    @property
    def is_http2(self) -> bool:
        return self.http_version.upper().startswith("HTTP/2")

    def get_response_header(self, name: str, default: str = "") -> str:
        return find_header(self.response_headers, name, default)


# (offset, signature, mime type), checked in order
_SIGNATURES = [
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (8, b"WEBP", "image/webp"),
    (0, b"\x00\x00\x01\x00", "image/x-icon"),
    (0, b"%PDF-", "application/pdf"),
    (0, b"\x1f\x8b", "application/gzip"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"\x00asm", "application/wasm"),
    (0, b"wOFF", "font/woff"),
    (0, b"wOF2", "font/woff2"),
    (4, b"ftyp", "video/mp4"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"OggS", "audio/ogg"),
]

_TEXT_PREFIXES = [
    (b"<!doctype html", "text/html"),
    (b"<html", "text/html"),
    (b"<?xml", "application/xml"),
    (b"<svg", "image/svg+xml"),
]


def sniff_mime_type(body: bytes) -> Optional[str]:
    """Guess a MIME type from magic bytes; None when nothing matches."""
    if not body:
        return None
    for offset, signature, mime in _SIGNATURES:
        if body[offset:offset + len(signature)] == signature:
            return mime

    head = body[:512].lstrip().lower()
    for prefix, mime in _TEXT_PREFIXES:
        if head.startswith(prefix):
            return mime
    if head[:1] in (b"{", b"["):
        return "application/json"
    return None


def _coding_tokens(values: List[str]) -> List[str]:
    tokens = []
    for value in values:
        tokens.extend(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def to_milliseconds(value: int) -> float:
    """Convert a recorded microsecond duration, keeping the -1 sentinel."""
    if value is None or value < 0:
        return UNKNOWN
    return round(value / 1000, 3)


class TransactionNormalizer:
    """
    Converts TransactionRecords into CanonicalTransactions.

    ``normalize`` does not mutate its input or the normalizer itself, so a
    single instance can be shared between pipelines.
    """

    def __init__(self, config: Optional[NormalizerConfig] = None):
        self.config = config or NormalizerConfig()

    def normalize(self, record: TransactionRecord) -> CanonicalTransaction:
        warnings: List[ConversionWarning] = []

        if record.lossy_text:
            warnings.append(DecodingWarning(
                "header text is not valid UTF-8; invalid bytes replaced with U+FFFD",
                record_index=record.index,
            ))

        request_body = None
        if record.request_body is not None:
            request_body = self._normalize_body(
                record.request_body, record.request_headers, record.index, "request", warnings
            )

        response_body = None
        if record.has_response and record.response_body is not None:
            response_body = self._normalize_body(
                record.response_body, record.response_headers, record.index, "response", warnings
            )

        return CanonicalTransaction(
            index=record.index,
            started=self._started(record, warnings),
            method=record.method,
            url=record.url,
            http_version=record.protocol,
            request_headers=list(record.request_headers),
            request_body=request_body,
            has_response=record.has_response,
            status=record.status,
            status_text=record.status_text,
            response_headers=list(record.response_headers),
            response_body=response_body,
            timings=self._timings(record.timings),
            connection_id=record.connection_id,
            server_ip=record.remote_address,
            warnings=warnings,
        )

    def _started(self, record: TransactionRecord, warnings: List[ConversionWarning]) -> datetime:
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        try:
            tz = timezone.utc
            if record.tz_offset is not None:
                tz = timezone(timedelta(minutes=record.tz_offset))
            return (epoch + timedelta(microseconds=record.started_us)).astimezone(tz)
        except (ValueError, OverflowError) as e:
            warnings.append(DecodingWarning(
                f"start time cannot be represented ({e}); using the Unix epoch",
                record_index=record.index,
            ))
            return epoch

    def _timings(self, marks: TimingMarks) -> CanonicalTimings:
        if marks.is_cumulative:
            # Only the total is known: report it as wait rather than invent a breakdown
            return CanonicalTimings(wait=to_milliseconds(marks.elapsed))

        connect = to_milliseconds(marks.connect)
        ssl = to_milliseconds(marks.ssl)
        if ssl != UNKNOWN:
            connect = round(ssl + (connect if connect != UNKNOWN else 0), 3)

        return CanonicalTimings(
            dns=to_milliseconds(marks.dns),
            connect=connect,
            ssl=ssl,
            send=to_milliseconds(marks.send),
            wait=to_milliseconds(marks.wait),
            receive=to_milliseconds(marks.receive),
        )

    def _normalize_body(
        self,
        raw: bytes,
        headers: List[Header],
        index: int,
        kind: str,
        warnings: List[ConversionWarning],
    ) -> CanonicalBody:
        transfer = _coding_tokens(find_all_headers(headers, "transfer-encoding"))
        content = _coding_tokens(find_all_headers(headers, "content-encoding"))

        body = CanonicalBody(
            content=raw,
            wire_size=len(raw),
            content_encoding=", ".join(content),
            transfer_encoding=", ".join(transfer),
        )

        try:
            decoded = raw
            # Codings are listed in the order they were applied
            for coding in reversed(transfer):
                decoded = dechunk(decoded) if coding == "chunked" else self._decode(coding, decoded)
            for coding in reversed(content):
                decoded = self._decode(coding, decoded)
        except Exception as e:
            body.decoding_failed = True
            body.decoding_error = str(e) or type(e).__name__
            warnings.append(DecodingWarning(
                f"{kind} body could not be decoded ({body.encoding_summary}): "
                f"{body.decoding_error}; raw bytes kept",
                record_index=index,
            ))
        else:
            body.content = decoded

        body.mime_type = self._mime_type(headers, body.content if not body.decoding_failed else b"")
        return body

    def _decode(self, coding: str, data: bytes) -> bytes:
        decoder = self.config.codecs.get(coding)
        if decoder is None:
            raise ValueError(f"unsupported coding '{coding}'")
        return decoder(data)

    def _mime_type(self, headers: List[Header], content: bytes) -> str:
        content_type = find_header(headers, "content-type").strip()
        if content_type:
            return content_type
        if self.config.sniff_mime:
            sniffed = sniff_mime_type(content)
            if sniffed:
                return sniffed
        return DEFAULT_MIME_TYPE
