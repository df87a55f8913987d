from __future__ import annotations

from pathlib import Path

import pytest

from sitecompress.compress import get_codec_registry, set_codec_registry

CSS = b"body { color: #333; margin: 0; padding: 0; }\n" * 200
JS = b"function hello(name) { return 'hello ' + name; }\n" * 150


def make_tree(root: Path, files: dict[str, bytes]) -> Path:
    for relative, data in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


def snapshot(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def static_dir(tmp_path: Path) -> Path:
    return make_tree(
        tmp_path / "dist" / "static",
        {
            "a.css": CSS,
            "b.css": CSS + b"/* b */\n",
            "dont_compress.css": CSS,
            "img.png": b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4,
        },
    )


@pytest.fixture
def codec_registry():
    saved = dict(get_codec_registry())
    yield saved
    set_codec_registry(saved)
