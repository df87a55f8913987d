from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Mapping, TextIO

from .compress import compress_build_output
from .errors import SiteCompressError
from .models import (
    BROTLI_QUALITY_RANGE,
    GZIP_LEVEL_RANGE,
    Codec,
    CompressionOptions,
    CompressionReport,
    DIST_PRESET_INCLUDE,
)

DISABLE_ENV = "SITECOMPRESS_DISABLE"
EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_ERROR = 2
PRESETS = {"dist": DIST_PRESET_INCLUDE}

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    options = build_options(args, os.environ)
    try:
        report = compress_build_output(args.root, options)
    except SiteCompressError as exc:
        logger.error("%s", exc)
        return EXIT_ERROR
    print_report(report)
    if report.skipped or report.ok:
        return EXIT_OK
    return EXIT_PARTIAL


def parse_args(args: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sitecompress",
        description="Write .br and .gz siblings for files in a static site build",
    )
    parser.add_argument("root", type=Path, help="build output directory")
    parser.add_argument("--include", action="append", default=[], metavar="GLOB")
    parser.add_argument("--exclude", action="append", default=[], metavar="GLOB")
    parser.add_argument("--preset", choices=sorted(PRESETS), help="add a preset include list")
    parser.add_argument(
        "--codec",
        action="append",
        default=[],
        type=_codec_arg,
        help="br or gz; repeat for both (default: both)",
    )
    parser.add_argument(
        "--brotli-quality",
        type=int,
        default=BROTLI_QUALITY_RANGE[1],
        help=f"{BROTLI_QUALITY_RANGE[0]}-{BROTLI_QUALITY_RANGE[1]} (default: %(default)s)",
    )
    parser.add_argument(
        "--gzip-level",
        type=int,
        default=GZIP_LEVEL_RANGE[1],
        help=f"{GZIP_LEVEL_RANGE[0]}-{GZIP_LEVEL_RANGE[1]} (default: %(default)s)",
    )
    parser.add_argument("--jobs", type=int, default=None, help="worker threads (default: CPU count)")
    parser.add_argument(
        "--require-clean",
        action="store_true",
        help="fail if compressed files from an earlier build already exist",
    )
    parser.add_argument(
        "--no-skip-compressed",
        dest="skip_compressed",
        action="store_false",
        help="do not implicitly exclude .br/.gz files that sit next to their source",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(args)


def build_options(args: argparse.Namespace, environ: Mapping[str, str]) -> CompressionOptions:
    include = list(args.include)
    if args.preset:
        include.extend(PRESETS[args.preset])
    codecs = frozenset(args.codec) if args.codec else frozenset(Codec)
    return CompressionOptions(
        should_run=not env_flag(environ.get(DISABLE_ENV, "")),
        include=tuple(dict.fromkeys(include)),
        exclude=tuple(args.exclude),
        codecs=codecs,
        brotli_quality=args.brotli_quality,
        gzip_level=args.gzip_level,
        skip_compressed_outputs=args.skip_compressed,
        require_clean_build=args.require_clean,
        max_workers=args.jobs,
    )


def env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def print_report(report: CompressionReport, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    if report.skipped:
        print(f"skipped {report.root} ({DISABLE_ENV} is set)", file=out)
        return
    for result in report.failed:
        kind = result.error_kind.value if result.error_kind else "error"
        print(f"FAILED {result.codec.suffix:4s} {kind:6s} {result.source}: {result.message}", file=out)
    saved = report.bytes_in - report.bytes_out
    percent = saved * 100 / report.bytes_in if report.bytes_in else 0.0
    print(
        f"{len(report.succeeded)} written, {len(report.failed)} failed | "
        f"{report.bytes_in:,d} -> {report.bytes_out:,d} bytes ({percent:.1f}% saved)",
        file=out,
    )


def _codec_arg(value: str) -> Codec:
    try:
        return Codec.parse(value)
    except SiteCompressError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
