"""
Session trace parser module.

Read recorded proxy session traces (.chls and compressed .chrlz archives).

Example usage:
    from trace_parser import open_trace

    with open_trace("session.chls") as reader:
        for record in reader:
            print(f"{record.method} {record.url} -> {record.status}")
        for warning in reader.warnings:
            print(f"warning: {warning}")
"""

from .errors import (
    ConversionCancelled,
    ConversionError,
    ConversionWarning,
    CorruptRecordWarning,
    DecodingWarning,
    FormatError,
    TruncatedInputWarning,
    UnsupportedCompressionError,
)
from .models import UNKNOWN, TimingMarks, TransactionRecord
from .reader import TraceReader, open_trace
from .writer import TraceWriter, compress_archive, dump_trace, write_trace

__all__ = [
    'TraceReader',
    'TraceWriter',
    'TransactionRecord',
    'TimingMarks',
    'UNKNOWN',
    'open_trace',
    'dump_trace',
    'write_trace',
    'compress_archive',
    'ConversionError',
    'FormatError',
    'UnsupportedCompressionError',
    'ConversionCancelled',
    'ConversionWarning',
    'TruncatedInputWarning',
    'DecodingWarning',
    'CorruptRecordWarning',
]

__version__ = '0.1.0'
