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
chls2har - Convert recorded proxy session traces to HAR format.

This module reads session traces (.chls, and compressed .chrlz archives),
normalizes the recorded HTTP transactions and writes them as an HTTP
Archive (HAR 1.2) document.

Usage:
    # As a CLI tool
    python -m chls2har session.chls -o session.har

    # As a library
    from chls2har import TraceToHarConverter

    converter = TraceToHarConverter()
    result = converter.convert("session.chls", "session.har")
"""

__version__ = "0.1.0"

from trace_parser.errors import (
    ConversionCancelled,
    ConversionError,
    ConversionWarning,
    CorruptRecordWarning,
    DecodingWarning,
    FormatError,
    TruncatedInputWarning,
    UnsupportedCompressionError,
)

from .config import ConfigError, ConverterConfig
from .converter import (
    CancellationToken,
    ConversionPipeline,
    ConversionResult,
    ConversionState,
    ConversionStatus,
    TraceToHarConverter,
    har_output_path,
)
from .encoder import HarEncoder
from .har import (
    HarContent,
    HarCookie,
    HarCreator,
    HarEntry,
    HarHeader,
    HarRequest,
    HarResponse,
    HarTimings,
    HarWriter,
)
from .normalizer import (
    CanonicalBody,
    CanonicalTimings,
    CanonicalTransaction,
    CodecRegistry,
    NormalizerConfig,
    TransactionNormalizer,
)
from .cli import main

__all__ = [
    # Main converter
    "TraceToHarConverter",
    "ConversionPipeline",
    "ConversionResult",
    "ConversionState",
    "ConversionStatus",
    "CancellationToken",
    "har_output_path",
    # Configuration
    "ConverterConfig",
    "ConfigError",
    # Normalizer
    "TransactionNormalizer",
    "NormalizerConfig",
    "CodecRegistry",
    "CanonicalTransaction",
    "CanonicalBody",
    "CanonicalTimings",
    # HAR models
    "HarEncoder",
    "HarWriter",
    "HarEntry",
    "HarRequest",
    "HarResponse",
    "HarContent",
    "HarHeader",
    "HarCookie",
    "HarCreator",
    "HarTimings",
    # Errors and warnings
    "ConversionError",
    "FormatError",
    "UnsupportedCompressionError",
    "ConversionCancelled",
    "ConversionWarning",
    "TruncatedInputWarning",
    "DecodingWarning",
    "CorruptRecordWarning",
    # CLI
    "main",
]
