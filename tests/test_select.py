import logging
import os
from pathlib import Path

import pytest

from conftest import make_tree
from sitecompress.errors import ConfigurationError, SelectionError
from sitecompress.select import compile_glob, is_selected, select


def names(root: Path, paths: list[Path]) -> list[str]:
    return [path.relative_to(root.resolve()).as_posix() for path in paths]


# Pattern compilation


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        ("**/*.css", "a.css", True),
        ("**/*.css", "x/y/a.css", True),
        ("**/*.css", "a.css.gz", False),
        ("*.css", "a.css", True),
        ("*.css", "x/a.css", False),
        ("*.css", ".hidden.css", True),
        ("static/**", "static/a/b.js", True),
        ("static/**", "static", False),
        ("static/**/*.js", "static/app.js", True),
        ("static/**/*.js", "other/static/app.js", False),
        ("./static/*.css", "static/a.css", True),
        ("?.css", "a.css", True),
        ("?.css", "ab.css", False),
        ("[ab].css", "b.css", True),
        ("[ab].css", "c.css", False),
        ("[!a].css", "b.css", True),
        ("[!a].css", "a.css", False),
        ("[^a].css", "a.css", False),
        ("[a-c]x", "bx", True),
        ("[]]x", "]x", True),
        (r"\*.css", "*.css", True),
        (r"\*.css", "a.css", False),
        ("A.css", "a.css", False),
        ("pkg/*.wasm", "pkg/app_bg.wasm", True),
    ],
)
def test_compile_glob_matches(pattern, path, expected):
    assert bool(compile_glob(pattern).match(path)) is expected


@pytest.mark.parametrize(
    "pattern",
    ["", "   ", "/abs/*.css", "C:/x/*.css", "a**/b", "**a", "../*.css", "x/../y", "[abc", "[]", "a\\", "[z-a]"],
)
def test_compile_glob_rejects_malformed(pattern):
    with pytest.raises(ConfigurationError):
        compile_glob(pattern)


# Include/exclude semantics


@pytest.mark.parametrize(
    "path, include, exclude, expected",
    [
        ("a.css", ["**/*.css"], [], True),
        ("a.css", ["**/*.css"], ["a.css"], False),
        ("a.css", ["**/*.css", "a.css"], ["**/a.css"], False),
        ("a.css", [], [], False),
        ("a.css", [], ["**/*.js"], False),
        ("x/a.js", ["**/*.css", "x/*"], [], True),
        ("x/a.js", ["**/*.css", "x/*"], ["**/*.js"], False),
        ("x/a.js", ["**/*.css"], ["**/*.js"], False),
    ],
)
def test_exclude_dominates_include(path, include, exclude, expected):
    assert is_selected(path, include, exclude) is expected


def test_static_scenario(static_dir):
    selected = select(static_dir, ["**/*.css"], ["**/dont_compress.css"])

    assert names(static_dir, selected) == ["a.css", "b.css"]
    assert all(path.is_absolute() for path in selected)


def test_overlapping_includes_are_collapsed(tmp_path):
    make_tree(tmp_path, {"css/site.css": b"x", "css/print.css": b"y"})

    selected = select(tmp_path, ["**/*.css", "css/*", "css/site.css"], [])

    assert names(tmp_path, selected) == ["css/print.css", "css/site.css"]


def test_directory_matches_contribute_nothing(tmp_path):
    make_tree(tmp_path, {"static/app.js": b"x", "static.js": b"y"})

    assert select(tmp_path, ["static"], []) == []
    assert names(tmp_path, select(tmp_path, ["static*"], [])) == ["static.js"]


def test_order_is_lexicographic_and_stable(tmp_path):
    make_tree(tmp_path, {"b/z.js": b"1", "a-c.js": b"2", "a/b.js": b"3", "a.js": b"4"})

    first = select(tmp_path, ["**/*.js"], [])
    second = select(tmp_path, ["**/*.js"], [])

    assert names(tmp_path, first) == ["a-c.js", "a.js", "a/b.js", "b/z.js"]
    assert first == second


def test_empty_include_selects_nothing(static_dir):
    assert select(static_dir, [], ["**/*.css"]) == []


def test_symlinks_are_skipped(tmp_path):
    make_tree(tmp_path, {"real/app.js": b"x"})
    try:
        os.symlink(tmp_path / "real" / "app.js", tmp_path / "link.js")
        os.symlink(tmp_path / "real", tmp_path / "linked_dir", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported here")

    assert names(tmp_path, select(tmp_path, ["**/*.js"], [])) == ["real/app.js"]


# Failures


def test_malformed_glob_fails_before_walk(static_dir, monkeypatch):
    def no_walk(path):
        raise AssertionError("filesystem walked before patterns were validated")

    monkeypatch.setattr(os, "scandir", no_walk)

    with pytest.raises(ConfigurationError, match="unclosed"):
        select(static_dir, ["**/*.css"], ["[oops"])


def test_missing_root(tmp_path):
    with pytest.raises(ConfigurationError, match="does not exist"):
        select(tmp_path / "nope", ["**/*"], [])


def test_root_is_a_file(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")

    with pytest.raises(ConfigurationError, match="not a directory"):
        select(target, ["**/*"], [])


def test_unreadable_subdirectory_is_skipped(tmp_path, monkeypatch, caplog):
    make_tree(tmp_path, {"ok/a.css": b"x", "locked/b.css": b"y"})
    real_scandir = os.scandir

    def guarded(path):
        if Path(path).name == "locked":
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", guarded)

    with caplog.at_level(logging.WARNING, logger="sitecompress.select"):
        selected = select(tmp_path, ["**/*.css"], [])

    assert names(tmp_path, selected) == ["ok/a.css"]
    assert "locked" in caplog.text


def test_unreadable_root_aborts(tmp_path, monkeypatch):
    make_tree(tmp_path, {"a.css": b"x"})

    def refuse(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(os, "scandir", refuse)

    with pytest.raises(SelectionError, match="build output root"):
        select(tmp_path, ["**/*.css"], [])
