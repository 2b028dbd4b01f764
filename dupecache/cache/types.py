from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from dupecache.core.paths import normalize_path
from dupecache.core.walker import stat_to_mtime_ms


class CacheStatus(str, Enum):
    MISS = "miss"
    STALE = "stale"
    FRESH = "fresh"


@dataclass(frozen=True, slots=True)
class FileRecord:
    path: str
    normalized_path: str
    size_bytes: int
    mtime_ms: int
    hash_hex: str | None = None

    @classmethod
    def from_path(cls, path: str | Path, hash_hex: str | None = None) -> "FileRecord":
        info = Path(path).stat()
        raw = str(path)
        return cls(
            path=raw,
            normalized_path=normalize_path(raw),
            size_bytes=int(info.st_size),
            mtime_ms=stat_to_mtime_ms(info),
            hash_hex=hash_hex,
        )

    @property
    def has_hash(self) -> bool:
        return bool(self.hash_hex)

    def with_hash(self, hash_hex: str | None) -> "FileRecord":
        return replace(self, hash_hex=hash_hex)


@dataclass(frozen=True, slots=True)
class CacheLookupResult:
    status: CacheStatus
    cached: FileRecord | None = None


@dataclass(frozen=True, slots=True)
class GroupKey:
    size_bytes: int
    hash_hex: str

    @classmethod
    def of(cls, record: FileRecord | None) -> "GroupKey | None":
        if record is None or not record.hash_hex:
            return None
        return cls(size_bytes=record.size_bytes, hash_hex=record.hash_hex)
