from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol, Sequence

from dupecache.core.paths import normalize_path


class VolumeResolver(Protocol):
    def resolve(self, path: Path) -> Path | None: ...


def _is_within(path: str, root: str) -> bool:
    if root == "/":
        return path.startswith("/")
    return path == root or path.startswith(root.rstrip("/") + "/")


class ConfiguredVolumeResolver:
    def __init__(self, roots: Sequence[Path] = (), *, fallback_to_mount: bool = True):
        normalized = {normalize_path(str(root)) for root in roots}
        self._roots = sorted(normalized, key=len, reverse=True)
        self._fallback_to_mount = fallback_to_mount

    def resolve(self, path: Path) -> Path | None:
        normalized = normalize_path(str(path))
        for root in self._roots:
            if _is_within(normalized, root):
                return Path(root)
        if not self._fallback_to_mount:
            return None
        return self._mount_point(Path(normalized))

    def _mount_point(self, path: Path) -> Path | None:
        current = path if path.is_dir() else path.parent
        while True:
            if current.exists() and os.path.ismount(current):
                return current
            if current.parent == current:
                return None
            current = current.parent
