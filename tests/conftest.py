"""Shared fixtures: synthetic trace records and trace files."""

import gzip
import logging

import pytest

from trace_parser.models import UNKNOWN, TimingMarks, TransactionRecord
from trace_parser.writer import write_trace

# 2023-11-14T22:13:20.123456Z
STARTED_US = 1_700_000_000_123_456


def make_record(index: int = 0, **overrides) -> TransactionRecord:
    values = dict(
        index=index,
        started_us=STARTED_US + index * 1000,
        connection_id="conn-1",
        remote_address="93.184.216.34",
        method="GET",
        url=f"https://example.com/items/{index}?page=1",
        protocol="HTTP/1.1",
        request_headers=[("Host", "example.com"), ("User-Agent", "pytest")],
        status=200,
        status_text="OK",
        response_headers=[("Content-Type", "text/plain")],
        response_body=b"hello",
        timings=TimingMarks(dns=1000, connect=2000, ssl=UNKNOWN, send=500, wait=10000, receive=1500),
    )
    values.update(overrides)
    return TransactionRecord(**values)


def chunked(data: bytes, size: int = 7) -> bytes:
    parts = []
    for start in range(0, len(data), size):
        piece = data[start:start + size]
        parts.append(f"{len(piece):x}\r\n".encode() + piece + b"\r\n")
    parts.append(b"0\r\n\r\n")
    return b"".join(parts)


def gzipped(data: bytes) -> bytes:
    return gzip.compress(data, mtime=0)


@pytest.fixture
def trace_file(tmp_path):
    """Factory writing records to a trace file under tmp_path."""
    def _write(records, name="session.chls", **kwargs):
        path = tmp_path / name
        write_trace(str(path), records, **kwargs)
        return path
    return _write


@pytest.fixture(autouse=True)
def restore_loggers():
    """Undo configure_logging() calls made by CLI tests."""
    saved = {}
    for name in ("chls2har", "trace_parser"):
        logger = logging.getLogger(name)
        saved[name] = (logger.level, list(logger.handlers), logger.propagate)
    yield
    for name, (level, handlers, propagate) in saved.items():
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers = handlers
        logger.propagate = propagate
