from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, MutableMapping

from .compress import compress_build_output
from .models import CompressionOptions

PLUGIN_NAME = "sitecompress"
HOOK_EVENTS = ("after_successful_build", "after_successful_export")

HookAction = Callable[..., None]


@dataclass(frozen=True)
class CompressionPlugin:
    options: CompressionOptions
    root: Path = Path("dist")
    name: str = PLUGIN_NAME
    actions: dict[str, HookAction] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))
        object.__setattr__(self, "actions", {event: self.run for event in HOOK_EVENTS})

    def run(self, root: Path | str | None = None) -> None:
        report = compress_build_output(self.root if root is None else root, self.options)
        report.raise_for_failures()

    def register(self, registry: MutableMapping[str, list[tuple[str, HookAction]]]) -> None:
        for event, action in self.actions.items():
            registry.setdefault(event, []).append((self.name, action))


def get_compression_plugin(
    options: CompressionOptions | None = None, root: Path | str = "dist"
) -> CompressionPlugin:
    return CompressionPlugin(options=options or CompressionOptions.dist_preset(), root=Path(root))
