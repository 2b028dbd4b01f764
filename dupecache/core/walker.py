from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

IgnorePredicate = Callable[[Path], bool]
ContinuePredicate = Callable[[], bool]


@dataclass(frozen=True, slots=True)
class WalkedFile:
    path: Path
    size_bytes: int
    mtime_ms: int


def _never_ignore(_path: Path) -> bool:
    return False


def _always_continue() -> bool:
    return True


def stat_to_mtime_ms(stat_result: os.stat_result) -> int:
    return int(stat_result.st_mtime_ns // 1_000_000)


class FileWalker:
    def walk(
        self,
        root: Path,
        ignore: IgnorePredicate | None = None,
        should_continue: ContinuePredicate | None = None,
    ) -> Iterator[WalkedFile]:
        ignore = ignore or _never_ignore
        should_continue = should_continue or _always_continue

        stack: list[Path] = [Path(root)]
        while stack:
            if not should_continue():
                return
            current = stack.pop()
            if ignore(current):
                continue

            try:
                info = current.lstat()
            except OSError as exc:
                logger.warning("Skipping unreadable entry %s: %s", current, exc)
                continue

            if _is_regular_file(info):
                yield WalkedFile(path=current, size_bytes=int(info.st_size), mtime_ms=stat_to_mtime_ms(info))
                continue
            if not _is_directory(info):
                continue

            try:
                with os.scandir(current) as entries:
                    children = sorted(Path(entry.path) for entry in entries)
            except OSError as exc:
                logger.warning("Skipping unreadable directory %s: %s", current, exc)
                continue
            # reversed so that pops come out in name order
            stack.extend(reversed(children))


def _is_regular_file(info: os.stat_result) -> bool:
    return stat.S_ISREG(info.st_mode)


def _is_directory(info: os.stat_result) -> bool:
    return stat.S_ISDIR(info.st_mode)
