"""File selection for a build output tree.

Patterns are matched against the POSIX path of each regular file relative to
the build root. A file is selected when at least one include pattern matches
it and no exclude pattern does. Symlinks are never selected and symlinked
directories are not descended into. An unreadable root aborts selection;
an unreadable directory below it is skipped with a warning.

Pattern syntax:

- ``*`` matches any run of characters inside one path component
- ``?`` matches a single character
- ``[abc]``, ``[a-z]``, ``[!a]`` / ``[^a]`` are character classes
- ``**`` as a whole component matches zero or more components
- ``\\`` escapes the next character
- a leading ``./`` is ignored

Matching is case-sensitive on every platform.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from .errors import ConfigurationError, SelectionError

logger = logging.getLogger(__name__)


def select(root: Path | str, include: Sequence[str], exclude: Sequence[str] = ()) -> list[Path]:
    includes = compile_patterns(include)
    excludes = compile_patterns(exclude)
    root = check_root(root)
    if not includes:
        logger.debug("no include patterns, nothing selected under %s", root)
        return []
    selected: list[tuple[str, Path]] = []
    for relative, path in iter_regular_files(root):
        if not _matches_any(relative, includes):
            continue
        if _matches_any(relative, excludes):
            logger.debug("excluded %s", relative)
            continue
        selected.append((relative, path))
    selected.sort(key=lambda item: item[0])
    return [path for _, path in selected]


def is_selected(relative: str, include: Sequence[str], exclude: Sequence[str] = ()) -> bool:
    return _matches_any(relative, compile_patterns(include)) and not _matches_any(
        relative, compile_patterns(exclude)
    )


def check_root(root: Path | str) -> Path:
    path = Path(root)
    if not path.exists():
        raise ConfigurationError(f"build output root does not exist: {path}")
    if not path.is_dir():
        raise ConfigurationError(f"build output root is not a directory: {path}")
    return path.resolve()


def iter_regular_files(root: Path) -> Iterator[tuple[str, Path]]:
    yield from _walk(root, "")


def compile_patterns(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(compile_glob(pattern) for pattern in patterns)


def compile_glob(pattern: str) -> re.Pattern[str]:
    if not isinstance(pattern, str) or not pattern.strip():
        raise ConfigurationError(f"empty glob pattern: {pattern!r}")
    body = pattern
    while body.startswith("./"):
        body = body[2:]
    if body.startswith("/") or re.match(r"^[A-Za-z]:[\\/]", body):
        raise ConfigurationError(f"glob must be relative to the build root: {pattern!r}")
    components = [component for component in body.split("/") if component != "."]
    parts: list[str] = []
    for index, component in enumerate(components):
        last = index == len(components) - 1
        if component == "**":
            parts.append(".*" if last else "(?:.*/)?")
            continue
        if "**" in component:
            raise ConfigurationError(f"'**' must be a whole path component: {pattern!r}")
        if component == "..":
            raise ConfigurationError(f"glob must not leave the build root: {pattern!r}")
        parts.append(_translate_component(component, pattern))
        if not last:
            parts.append("/")
    return re.compile(r"(?s)\A" + "".join(parts) + r"\Z")


def _translate_component(component: str, pattern: str) -> str:
    out: list[str] = []
    index = 0
    length = len(component)
    while index < length:
        char = component[index]
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "\\":
            if index + 1 >= length:
                raise ConfigurationError(f"dangling escape in glob: {pattern!r}")
            index += 1
            out.append(re.escape(component[index]))
        elif char == "[":
            translated, index = _translate_class(component, index, pattern)
            out.append(translated)
            continue
        else:
            out.append(re.escape(char))
        index += 1
    return "".join(out)


def _translate_class(component: str, start: int, pattern: str) -> tuple[str, int]:
    index = start + 1
    negate = index < len(component) and component[index] in "!^"
    if negate:
        index += 1
    members: list[str] = []
    first = True
    while True:
        if index >= len(component):
            raise ConfigurationError(f"unclosed character class in glob: {pattern!r}")
        char = component[index]
        if char == "]" and not first:
            break
        first = False
        if index + 2 < len(component) and component[index + 1] == "-" and component[index + 2] != "]":
            low, high = char, component[index + 2]
            if low > high:
                raise ConfigurationError(f"invalid range {low}-{high} in glob: {pattern!r}")
            members.append(f"{re.escape(low)}-{re.escape(high)}")
            index += 3
            continue
        members.append(re.escape(char))
        index += 1
    body = "".join(members)
    translated = f"[^/{body}]" if negate else f"[{body}]"
    return translated, index + 1


def _matches_any(relative: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    return any(pattern.match(relative) for pattern in patterns)


def _walk(directory: Path, prefix: str) -> Iterator[tuple[str, Path]]:
    try:
        with os.scandir(directory) as scan:
            entries = sorted(scan, key=lambda entry: entry.name)
    except OSError as exc:
        if not prefix:
            raise SelectionError(f"cannot read build output root {directory}: {exc}") from exc
        logger.warning("skipping unreadable directory %s: %s", prefix.rstrip("/"), exc)
        return
    for entry in entries:
        relative = f"{prefix}{entry.name}"
        if entry.is_symlink():
            logger.debug("skipping symlink %s", relative)
            continue
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(Path(entry.path), f"{relative}/")
        elif entry.is_file(follow_symlinks=False):
            yield relative, Path(entry.path)
