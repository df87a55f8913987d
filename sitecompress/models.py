from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Iterable

from .errors import CompressionFailed, ConfigurationError

DIST_PRESET_INCLUDE = ("static/**/*.css", "pkg/**/*.wasm", "pkg/**/*.js")
BROTLI_QUALITY_RANGE = (0, 11)
BROTLI_WINDOW_RANGE = (10, 24)
GZIP_LEVEL_RANGE = (0, 9)


class Codec(str, Enum):
    BROTLI = "brotli"
    GZIP = "gzip"

    @property
    def suffix(self) -> str:
        return _SUFFIXES[self]

    @classmethod
    def parse(cls, value: Codec | str) -> Codec:
        if isinstance(value, Codec):
            return value
        key = str(value).strip().lower().lstrip(".")
        for codec in cls:
            if key in {codec.value, codec.suffix.lstrip(".")}:
                return codec
        raise ConfigurationError(f"unknown codec: {value!r}")


_SUFFIXES = {Codec.BROTLI: ".br", Codec.GZIP: ".gz"}
CODEC_ORDER = (Codec.BROTLI, Codec.GZIP)


class ErrorKind(str, Enum):
    READ = "read"
    WRITE = "write"
    CODEC = "codec"


@dataclass(frozen=True)
class CompressionOptions:
    should_run: bool = True
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    codecs: frozenset[Codec | str] = frozenset(CODEC_ORDER)
    brotli_quality: int = 11
    brotli_window: int = 22
    gzip_level: int = 9
    skip_compressed_outputs: bool = True
    require_clean_build: bool = False
    max_workers: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "include", _as_patterns(self.include))
        object.__setattr__(self, "exclude", _as_patterns(self.exclude))
        codecs = [self.codecs] if isinstance(self.codecs, str) else self.codecs
        object.__setattr__(self, "codecs", frozenset(codecs))

    @classmethod
    def dist_preset(cls, **overrides: object) -> CompressionOptions:
        overrides.setdefault("include", DIST_PRESET_INCLUDE)
        return cls(**overrides)  # type: ignore[arg-type]

    @property
    def enabled_codecs(self) -> tuple[Codec, ...]:
        parsed = {Codec.parse(codec) for codec in self.codecs}
        return tuple(codec for codec in CODEC_ORDER if codec in parsed)

    def with_changes(self, **changes: object) -> CompressionOptions:
        return replace(self, **changes)  # type: ignore[arg-type]

    def validate(self) -> None:
        if not self.enabled_codecs:
            raise ConfigurationError("no codecs enabled")
        _check_range("brotli_quality", self.brotli_quality, BROTLI_QUALITY_RANGE)
        _check_range("brotli_window", self.brotli_window, BROTLI_WINDOW_RANGE)
        _check_range("gzip_level", self.gzip_level, GZIP_LEVEL_RANGE)
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {self.max_workers}")


@dataclass(frozen=True)
class CompressionResult:
    source: Path
    output: Path
    codec: Codec
    success: bool
    original_size: int
    compressed_size: int
    error_kind: ErrorKind | None = None
    message: str = ""


@dataclass(frozen=True)
class CompressionReport:
    root: Path
    results: tuple[CompressionResult, ...] = ()
    skipped: bool = False

    @classmethod
    def collect(cls, root: Path, results: Iterable[CompressionResult]) -> CompressionReport:
        ordered = sorted(results, key=lambda item: (str(item.source), CODEC_ORDER.index(item.codec)))
        return cls(root=root, results=tuple(ordered))

    @property
    def succeeded(self) -> tuple[CompressionResult, ...]:
        return tuple(result for result in self.results if result.success)

    @property
    def failed(self) -> tuple[CompressionResult, ...]:
        return tuple(result for result in self.results if not result.success)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)

    @property
    def bytes_in(self) -> int:
        return sum(result.original_size for result in self.succeeded)

    @property
    def bytes_out(self) -> int:
        return sum(result.compressed_size for result in self.succeeded)

    def raise_for_failures(self) -> None:
        if self.failed:
            raise CompressionFailed(self.failed)


def _as_patterns(patterns: Iterable[str] | str) -> tuple[str, ...]:
    if isinstance(patterns, str):
        return (patterns,)
    return tuple(patterns)


def _check_range(name: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ConfigurationError(f"{name} must be an integer in {low}..{high}, got {value!r}")
