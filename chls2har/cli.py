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
Command-line interface for chls2har.
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from trace_parser.errors import ConversionError

from . import __version__
from .config import ConfigError, ConverterConfig
from .converter import (
    TRACE_EXTENSIONS,
    ConversionResult,
    ConversionStatus,
    TraceToHarConverter,
    har_output_path,
)
from .logging_config import configure_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_WARNINGS = 3
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chls2har",
        description="Convert recorded proxy session traces (.chls/.chrlz) to HAR (HTTP Archive) format.",
        epilog="Examples:\n"
               "  chls2har session.chls                 # writes session.har next to the input\n"
               "  chls2har session.chrlz -o out.har\n"
               "  chls2har *.chls --output-dir hars/ --workers 4\n"
               "  chls2har session.chls -o -            # outputs to stdout\n"
               "\n"
               "Exit codes: 0 success, 3 success with warnings, 1 failure, 2 usage error.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "trace_files",
        metavar="TRACE_FILE",
        nargs="+",
        help="Path to a session trace (.chls or .chrlz)",
    )

    parser.add_argument(
        "-o", "--output",
        metavar="FILE",
        help="Output HAR file, '-' for stdout (single input only)",
    )

    parser.add_argument(
        "--output-dir",
        metavar="DIR",
        help="Directory for output files (default: next to each input)",
    )

    parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Overwrite existing output files without asking",
    )

    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="YAML configuration file",
    )

    parser.add_argument(
        "--threshold",
        metavar="BYTES",
        type=int,
        help="Store bodies larger than this as base64 (default: 1048576)",
    )

    parser.add_argument(
        "--indent",
        metavar="N",
        type=int,
        help="JSON indentation level (default: 2, use 0 for compact output)",
    )

    parser.add_argument(
        "--no-body",
        action="store_true",
        help="Exclude response bodies from the HAR output",
    )

    parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        help="Number of files converted in parallel (default: 2)",
    )

    parser.add_argument(
        "--progress",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Show a simple progress bar when converting several files (default: on)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress warnings and non-essential output",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def _confirm_overwrite(path: Path) -> bool:
    if not sys.stdin.isatty():
        return False
    reply = input(f"Output file '{path}' already exists. Overwrite? [y/N]: ")
    return reply.strip().lower() in ("y", "yes")


def _report(result: ConversionResult, quiet: bool) -> None:
    if result.status is ConversionStatus.FAILED:
        print(f"Error: {result.input_path}: {result.error}", file=sys.stderr)
        return
    if quiet:
        return
    print(
        f"Converted '{result.input_path}' -> '{result.output_path}' "
        f"({result.records_read} entries, {result.bytes_written} bytes)",
        file=sys.stderr,
    )
    if result.warnings:
        print(
            f"  {len(result.warnings)} warning(s), "
            f"{result.records_with_warnings} entries degraded",
            file=sys.stderr,
        )


def _exit_code(results: List[ConversionResult], failures: int) -> int:
    if failures or any(r.status is ConversionStatus.FAILED for r in results):
        return EXIT_FAILED
    if any(r.status is ConversionStatus.SUCCESS_WITH_WARNINGS for r in results):
        return EXIT_WARNINGS
    return EXIT_OK


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the chls2har CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 success, 3 success with warnings, 1 failure, 2 usage error)
    """
    parser = _build_parser()
    parsed_args = parser.parse_args(args)
    configure_logging(verbose=parsed_args.verbose, quiet=parsed_args.quiet)

    trace_files = parsed_args.trace_files
    if parsed_args.output and len(trace_files) > 1:
        print("Error: --output can only be used with a single input file", file=sys.stderr)
        return EXIT_USAGE
    if parsed_args.output and parsed_args.output_dir:
        print("Error: --output and --output-dir are mutually exclusive", file=sys.stderr)
        return EXIT_USAGE

    try:
        config = ConverterConfig.load(parsed_args.config).with_overrides(
            large_body_threshold=parsed_args.threshold,
            indent=parsed_args.indent,
            include_response_body=False if parsed_args.no_body else None,
            workers=parsed_args.workers,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    # Validate input files
    for trace_file in trace_files:
        if not os.path.isfile(trace_file):
            print(f"Error: Trace file not found: {trace_file}", file=sys.stderr)
            return EXIT_FAILED
        if not os.access(trace_file, os.R_OK):
            print(f"Error: Trace file is not readable: {trace_file}", file=sys.stderr)
            return EXIT_FAILED
        if not trace_file.lower().endswith(TRACE_EXTENSIONS) and not parsed_args.quiet:
            print(
                f"Warning: '{trace_file}' does not have a .chls or .chrlz extension; "
                "continuing anyway",
                file=sys.stderr,
            )

    converter = TraceToHarConverter(config)

    try:
        if parsed_args.output == "-":
            return _convert_to_stdout(converter, trace_files[0], parsed_args)

        if parsed_args.output_dir:
            Path(parsed_args.output_dir).mkdir(parents=True, exist_ok=True)

        jobs: List[Tuple[str, Path]] = []
        failures = 0
        for trace_file in trace_files:
            if parsed_args.output:
                output_path = Path(parsed_args.output)
            else:
                output_path = har_output_path(trace_file, parsed_args.output_dir)
            if output_path.exists() and not parsed_args.force:
                if not _confirm_overwrite(output_path):
                    print(
                        f"Error: Output file already exists: {output_path} (use --force to overwrite)",
                        file=sys.stderr,
                    )
                    failures += 1
                    continue
            jobs.append((trace_file, output_path))

        show_progress = parsed_args.progress and not parsed_args.quiet and len(jobs) > 1
        done = 0

        def on_result(result: ConversionResult) -> None:
            nonlocal done
            done += 1
            if show_progress:
                pct = int((done / len(jobs)) * 100)
                sys.stderr.write(f"\rConverting files: {done}/{len(jobs)} ({pct}%)")
                sys.stderr.flush()

        results = converter.convert_many(jobs, on_result=on_result)
        if show_progress:
            sys.stderr.write("\n")

        for result in results:
            _report(result, parsed_args.quiet)

        return _exit_code(results, failures)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


def _convert_to_stdout(converter: TraceToHarConverter, trace_file: str, parsed_args) -> int:
    try:
        result = converter.convert_to_stream(trace_file, sys.stdout.buffer)
    except (ConversionError, OSError) as e:
        if parsed_args.verbose:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()
    if parsed_args.verbose and result.warnings:
        print(f"{len(result.warnings)} warning(s)", file=sys.stderr)
    return _exit_code([result], 0)


if __name__ == "__main__":
    sys.exit(main())
