from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
import logging
import os
import stat
import tempfile
import zlib
from threading import Lock
from typing import Any, BinaryIO, Callable, Iterable, Protocol, Sequence

import brotli

from .errors import ConfigurationError, DirtyBuildError
from .models import (
    Codec,
    CompressionOptions,
    CompressionReport,
    CompressionResult,
    ErrorKind,
)
from .select import select

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
TEMP_SUFFIX = ".tmp"


class Encoder(Protocol):
    def process(self, chunk: bytes) -> bytes: ...

    def finish(self) -> bytes: ...


EncoderFactory = Callable[[CompressionOptions], Encoder]


class GzipEncoder:
    def __init__(self, level: int) -> None:
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, zlib.MAX_WBITS | 16)

    def process(self, chunk: bytes) -> bytes:
        return self._compressor.compress(chunk)

    def finish(self) -> bytes:
        return self._compressor.flush()


def open_brotli(options: CompressionOptions) -> Encoder:
    return brotli.Compressor(
        mode=brotli.MODE_GENERIC,
        quality=options.brotli_quality,
        lgwin=options.brotli_window,
    )


def open_gzip(options: CompressionOptions) -> Encoder:
    return GzipEncoder(options.gzip_level)


_CODEC_REGISTRY: dict[Codec, EncoderFactory] = {}
_REGISTRY_LOCK = Lock()


class _UnitError(Exception):
    def __init__(self, kind: ErrorKind, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.kind = kind
        self.cause = cause


def compress_build_output(root: Path | str, options: CompressionOptions) -> CompressionReport:
    if not options.should_run:
        logger.info("compression disabled, skipping %s", root)
        return CompressionReport(root=Path(root), skipped=True)
    options.validate()
    exclude = list(options.exclude)
    if options.skip_compressed_outputs:
        exclude.extend(f"**/.*{codec.suffix}.*{TEMP_SUFFIX}" for codec in Codec)
    files = select(root, options.include, exclude)
    if options.skip_compressed_outputs:
        files = drop_sibling_outputs(files)
    root_path = Path(root).resolve()
    logger.info("selected %d file(s) under %s", len(files), root_path)
    check_output_collisions(files, options.enabled_codecs)
    existing = find_existing_outputs(files, options.enabled_codecs)
    if existing:
        if options.require_clean_build:
            raise DirtyBuildError(existing)
        logger.warning(
            "%d compressed file(s) already exist under %s; brotli output from a dirty build "
            "may compress noticeably worse than from a clean one",
            len(existing),
            root_path,
        )
    results = compress_files(files, options)
    report = CompressionReport.collect(root_path, results)
    log_report(report)
    return report


def compress_files(files: Iterable[Path], options: CompressionOptions) -> list[CompressionResult]:
    units = [(Path(source), codec) for source in files for codec in options.enabled_codecs]
    if not units:
        return []
    workers = min(options.max_workers or os.cpu_count() or 1, len(units))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sitecompress") as executor:
        return list(executor.map(lambda unit: compress_unit(unit[0], unit[1], options), units))


def compress_file(source: Path, options: CompressionOptions) -> list[CompressionResult]:
    return [compress_unit(Path(source), codec, options) for codec in options.enabled_codecs]


def compress_unit(source: Path, codec: Codec, options: CompressionOptions) -> CompressionResult:
    output = build_output_path(source, codec)
    try:
        original_size, compressed_size = _write_compressed(source, output, codec, options)
    except _UnitError as exc:
        logger.warning("%s failed for %s (%s): %s", codec.value, source, exc.kind.value, exc.cause)
        return CompressionResult(
            source=source,
            output=output,
            codec=codec,
            success=False,
            original_size=0,
            compressed_size=0,
            error_kind=exc.kind,
            message=str(exc.cause) or type(exc.cause).__name__,
        )
    logger.debug("%s -> %s (%d -> %d bytes)", source, output.name, original_size, compressed_size)
    return CompressionResult(source, output, codec, True, original_size, compressed_size)


def build_output_path(source: Path, codec: Codec) -> Path:
    return source.with_name(f"{source.name}{codec.suffix}")


def drop_sibling_outputs(files: Iterable[Path]) -> list[Path]:
    kept = []
    for path in files:
        codec = next((codec for codec in Codec if path.name.endswith(codec.suffix)), None)
        if codec is not None:
            source = path.with_name(path.name[: -len(codec.suffix)])
            if source.is_file() and not source.is_symlink():
                logger.info("not compressing %s, it is the %s output of %s", path, codec.value, source.name)
                continue
        kept.append(path)
    return kept


def check_output_collisions(files: Sequence[Path], codecs: Iterable[Codec]) -> None:
    inputs = set(files)
    for source in files:
        for codec in codecs:
            output = build_output_path(source, codec)
            if output in inputs:
                raise ConfigurationError(
                    f"compressing {source} would overwrite selected input {output}; "
                    "exclude already compressed files"
                )


def find_existing_outputs(files: Iterable[Path], codecs: Iterable[Codec]) -> list[Path]:
    codecs = tuple(codecs)
    existing = []
    for source in files:
        for codec in codecs:
            output = build_output_path(source, codec)
            if output.exists():
                existing.append(output)
    return existing


def _write_compressed(
    source: Path, output: Path, codec: Codec, options: CompressionOptions
) -> tuple[int, int]:
    registry = get_codec_registry()
    factory = registry.get(codec)
    if factory is None:
        raise _UnitError(ErrorKind.CODEC, LookupError(f"no encoder registered for {codec.value}"))
    try:
        reader = source.open("rb")
    except OSError as exc:
        raise _UnitError(ErrorKind.READ, exc) from exc
    with reader:
        try:
            mode = stat.S_IMODE(os.fstat(reader.fileno()).st_mode)
        except OSError as exc:
            raise _UnitError(ErrorKind.READ, exc) from exc
        try:
            fd, temp_name = tempfile.mkstemp(prefix=f".{output.name}.", suffix=TEMP_SUFFIX, dir=output.parent)
        except OSError as exc:
            raise _UnitError(ErrorKind.WRITE, exc) from exc
        temp = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as writer:
                encoder = _encode(factory, options)
                original_size, compressed_size = _stream(reader, writer, encoder)
                writer.flush()
                os.fsync(writer.fileno())
            os.chmod(temp, mode)
            os.replace(temp, output)
        except _UnitError:
            _discard(temp)
            raise
        except OSError as exc:
            _discard(temp)
            raise _UnitError(ErrorKind.WRITE, exc) from exc
        except BaseException:
            _discard(temp)
            raise
    return original_size, compressed_size


def _stream(reader: BinaryIO, writer: BinaryIO, encoder: Encoder) -> tuple[int, int]:
    original_size = 0
    compressed_size = 0
    while True:
        try:
            chunk = reader.read(CHUNK_SIZE)
        except OSError as exc:
            raise _UnitError(ErrorKind.READ, exc) from exc
        if not chunk:
            break
        original_size += len(chunk)
        compressed_size += _emit(writer, _encode(encoder.process, chunk))
    compressed_size += _emit(writer, _encode(encoder.finish))
    return original_size, compressed_size


def _encode(step: Callable[..., Any], *args: Any) -> Any:
    try:
        return step(*args)
    except _UnitError:
        raise
    except Exception as exc:
        raise _UnitError(ErrorKind.CODEC, exc) from exc


def _emit(writer: BinaryIO, data: bytes) -> int:
    if not data:
        return 0
    try:
        writer.write(data)
    except OSError as exc:
        raise _UnitError(ErrorKind.WRITE, exc) from exc
    return len(data)


def _discard(temp: Path) -> None:
    try:
        temp.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("could not remove temporary file %s: %s", temp, exc)


def log_report(report: CompressionReport) -> None:
    failed = len(report.failed)
    logger.info(
        "compressed %d unit(s) under %s, %d failed, %d -> %d bytes",
        len(report.succeeded),
        report.root,
        failed,
        report.bytes_in,
        report.bytes_out,
    )


def get_codec_registry() -> dict[Codec, EncoderFactory]:
    global _CODEC_REGISTRY
    with _REGISTRY_LOCK:
        if not _CODEC_REGISTRY:
            _CODEC_REGISTRY = {
                Codec.BROTLI: open_brotli,
                Codec.GZIP: open_gzip,
            }
        return _CODEC_REGISTRY


def set_codec_registry(registry: dict[Codec, EncoderFactory]) -> None:
    global _CODEC_REGISTRY
    with _REGISTRY_LOCK:
        _CODEC_REGISTRY = dict(registry)
