from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .models import CompressionResult


class SiteCompressError(Exception):
    pass


class ConfigurationError(SiteCompressError):
    pass


class SelectionError(SiteCompressError):
    pass


class DirtyBuildError(ConfigurationError):
    def __init__(self, existing: Iterable[object]) -> None:
        self.existing = tuple(existing)
        preview = ", ".join(str(path) for path in self.existing[:5])
        more = f" (+{len(self.existing) - 5} more)" if len(self.existing) > 5 else ""
        super().__init__(
            f"build output is not clean, {len(self.existing)} compressed file(s) already exist: {preview}{more}"
        )


class CompressionFailed(SiteCompressError):
    def __init__(self, failures: Iterable[CompressionResult]) -> None:
        self.failures = tuple(failures)
        lines = [
            f"{result.source} [{result.codec.value}] {result.error_kind.value if result.error_kind else 'error'}: "
            f"{result.message}"
            for result in self.failures
        ]
        super().__init__(f"{len(self.failures)} compression unit(s) failed:\n" + "\n".join(lines))
