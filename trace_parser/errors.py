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
Errors and warnings raised while reading and converting session traces.

Errors are fatal and abort a conversion. Warnings are collected alongside
the output: the conversion still produces a HAR document, but some of it
is degraded.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for fatal conversion errors."""
    pass


class FormatError(ConversionError):
    """Raised when the container header is missing, unknown or corrupt."""
    pass


class UnsupportedCompressionError(ConversionError):
    """Raised when a compressed archive uses a codec we cannot decode."""

    def __init__(self, codec: int):
        super().__init__(f"Unsupported archive compression codec: {codec:#04x}")
        self.codec = codec


class ConversionCancelled(ConversionError):
    """Raised when a conversion is cancelled between records."""
    pass


class ConversionWarning(UserWarning):
    """Base class for non-fatal problems found during a conversion."""

    def __init__(self, message: str, record_index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.record_index = record_index

    def __str__(self) -> str:
        if self.record_index is None:
            return self.message
        return f"record {self.record_index}: {self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConversionWarning):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.message == other.message
            and self.record_index == other.record_index
        )

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.message, self.record_index))


class TruncatedInputWarning(ConversionWarning):
    """The trace ends in the middle of a record."""
    pass


class DecodingWarning(ConversionWarning):
    """A body or header could not be decoded; raw bytes were kept."""
    pass


class CorruptRecordWarning(ConversionWarning):
    """A complete record could not be parsed and was skipped."""
    pass
