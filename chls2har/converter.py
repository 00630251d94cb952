"""
Conversion of session trace files to HAR format.

A ConversionPipeline moves one trace through reader, normalizer and encoder
a record at a time. TraceToHarConverter owns the shared configuration,
creates one pipeline per input file and takes care of writing the output
atomically.
"""

import io
import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Sequence, Tuple, Union

from trace_parser.errors import ConversionCancelled, ConversionError, ConversionWarning
from trace_parser.reader import TraceReader

from .config import ConverterConfig
from .encoder import HarEncoder
from .har import HarCreator, HarWriter
from .normalizer import NormalizerConfig, TransactionNormalizer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TRACE_EXTENSIONS = (".chls", ".chrlz")


class ConversionState(Enum):
    IDLE = "idle"
    READING = "reading"
    NORMALIZING = "normalizing"
    ENCODING = "encoding"
    FLUSHED = "flushed"
    FAILED = "failed"


class ConversionStatus(Enum):
    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    FAILED = "failed"


class CancellationToken:
    """Cooperative cancellation flag, checked by pipelines between records."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ConversionCancelled("conversion cancelled")


@dataclass
class ConversionResult:
    """Summary of one file conversion."""
    input_path: str
    output_path: Optional[str] = None
    records_read: int = 0
    records_with_warnings: int = 0
    bytes_written: int = 0
    warnings: List[ConversionWarning] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def status(self) -> ConversionStatus:
        if self.error is not None:
            return ConversionStatus.FAILED
        if self.warnings:
            return ConversionStatus.SUCCESS_WITH_WARNINGS
        return ConversionStatus.SUCCESS

    @property
    def ok(self) -> bool:
        return self.error is None

    def warnings_of(self, kind: type) -> List[ConversionWarning]:
        return [w for w in self.warnings if isinstance(w, kind)]


def har_output_path(input_path: PathLike, output_dir: Optional[PathLike] = None) -> Path:
    """
    Default output path for a trace: the .chls/.chrlz extension replaced by
    .har, in output_dir or next to the input.
    """
    source = Path(input_path)
    name = source.name
    if source.suffix.lower() in TRACE_EXTENSIONS:
        name = source.stem
    directory = Path(output_dir) if output_dir is not None else source.parent
    return directory / f"{name}.har"


def _warning_order(warning: ConversionWarning) -> Tuple[bool, int]:
    return (warning.record_index is None, warning.record_index or 0)


class ConversionPipeline:
    """
    Converts a single trace into a HAR stream.

    State moves IDLE -> READING -> NORMALIZING -> ENCODING (repeated per
    record) -> FLUSHED, or to FAILED from any of them. A pipeline runs once.
    """

    def __init__(
        self,
        normalizer: TransactionNormalizer,
        encoder: HarEncoder,
        creator: HarCreator,
        indent: Optional[int] = 2,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.normalizer = normalizer
        self.encoder = encoder
        self.creator = creator
        self.indent = indent
        self.cancel_token = cancel_token or CancellationToken()
        self.state = ConversionState.IDLE

    def _transition(self, state: ConversionState) -> None:
        self.state = state

    def run(self, input_path: PathLike, output: BinaryIO) -> ConversionResult:
        """
        Convert input_path, writing the HAR document to output.

        Raises:
            FormatError, UnsupportedCompressionError: the input is not a usable trace
            ConversionCancelled: the cancellation token was triggered
            OSError: the input cannot be read or the output cannot be written
        """
        if self.state is not ConversionState.IDLE:
            raise RuntimeError("a ConversionPipeline can only be run once")

        result = ConversionResult(input_path=str(input_path))
        try:
            self._transition(ConversionState.READING)
            with open(input_path, "rb") as f:
                reader = TraceReader(f, source=str(input_path))
                writer = HarWriter(output, self.creator, indent=self.indent)
                writer.begin()
                self._pump(reader, writer, result)
                writer.close()
            output.flush()
        except BaseException:
            self._transition(ConversionState.FAILED)
            raise

        result.records_read = reader.records_read
        result.bytes_written = writer.bytes_written
        result.warnings.extend(reader.warnings)
        result.warnings.sort(key=_warning_order)
        self._transition(ConversionState.FLUSHED)

        for warning in result.warnings:
            logger.warning("%s: %s", input_path, warning)
        return result

    def _pump(self, reader: TraceReader, writer: HarWriter, result: ConversionResult) -> None:
        records = iter(reader)
        while True:
            self.cancel_token.raise_if_cancelled()
            self._transition(ConversionState.READING)
            record = next(records, None)
            if record is None:
                return

            self._transition(ConversionState.NORMALIZING)
            tx = self.normalizer.normalize(record)
            if tx.warnings:
                result.records_with_warnings += 1
                result.warnings.extend(tx.warnings)

            self._transition(ConversionState.ENCODING)
            writer.write_entry(self.encoder.encode(tx))


class TraceToHarConverter:
    """
    Main converter for session trace files to HAR format.

    Example:
        converter = TraceToHarConverter()
        result = converter.convert("session.chls", "session.har")
        if result.warnings:
            print(f"{len(result.warnings)} warnings")
    """

    def __init__(self, config: Optional[ConverterConfig] = None):
        self.config = config or ConverterConfig()
        self.normalizer = TransactionNormalizer(NormalizerConfig(sniff_mime=self.config.sniff_mime))
        self.encoder = HarEncoder(
            large_body_threshold=self.config.large_body_threshold,
            include_response_body=self.config.include_response_body,
        )
        self.creator = HarCreator(
            name=self.config.creator_name,
            version=self.config.creator_version,
        )

    def new_pipeline(self, cancel_token: Optional[CancellationToken] = None) -> ConversionPipeline:
        return ConversionPipeline(
            normalizer=self.normalizer,
            encoder=self.encoder,
            creator=self.creator,
            indent=self.config.indent,
            cancel_token=cancel_token,
        )

    def convert(
        self,
        input_path: PathLike,
        output_path: PathLike,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ConversionResult:
        """
        Convert a trace file and save it as a HAR file.

        The document is written to a temporary file in the output directory
        and renamed over output_path only once it is complete, so a failed or
        cancelled conversion never leaves a partial HAR file behind.
        """
        output_path = Path(output_path)
        temp_path = output_path.with_name(f".{output_path.name}.{uuid.uuid4().hex[:8]}.part")

        try:
            with open(temp_path, "xb") as out:
                result = self.new_pipeline(cancel_token).run(input_path, out)
            os.replace(temp_path, output_path)
        except BaseException:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            raise

        result.output_path = str(output_path)
        logger.info(
            "Converted %s -> %s: %d entries, %d bytes",
            input_path, output_path, result.records_read, result.bytes_written,
        )
        return result

    def convert_to_stream(
        self,
        input_path: PathLike,
        stream: BinaryIO,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ConversionResult:
        """Convert a trace file, writing the HAR document to a binary stream."""
        return self.new_pipeline(cancel_token).run(input_path, stream)

    def convert_to_json(self, input_path: PathLike) -> str:
        """
        Convert a trace file and return the HAR document as a JSON string.
        """
        buffer = io.BytesIO()
        self.convert_to_stream(input_path, buffer)
        return buffer.getvalue().decode("utf-8")

    def convert_many(
        self,
        jobs: Sequence[Tuple[PathLike, PathLike]],
        workers: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_result: Optional[Callable[[ConversionResult], None]] = None,
    ) -> List[ConversionResult]:
        """
        Convert several (input, output) pairs, one independent pipeline per file.

        Failures are reported in the returned results rather than raised.
        Results are in the same order as jobs.
        """
        cancel_token = cancel_token or CancellationToken()
        progress_lock = threading.Lock()

        def handle(job: Tuple[PathLike, PathLike]) -> ConversionResult:
            input_path, output_path = job
            try:
                result = self.convert(input_path, output_path, cancel_token=cancel_token)
            except (ConversionError, OSError) as e:
                logger.error("Failed to convert %s: %s", input_path, e)
                result = ConversionResult(input_path=str(input_path), error=e)
            except Exception as e:
                logger.exception("Unexpected error converting %s", input_path)
                result = ConversionResult(input_path=str(input_path), error=e)
            if on_result is not None:
                with progress_lock:
                    on_result(result)
            return result

        max_workers = workers or self.config.workers
        if max_workers <= 1 or len(jobs) <= 1:
            return [handle(job) for job in jobs]

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(handle, job) for job in jobs]
            try:
                return [future.result() for future in futures]
            except KeyboardInterrupt:
                cancel_token.cancel()
                for future in futures:
                    future.cancel()
                raise
