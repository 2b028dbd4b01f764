from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from dupecache.cache.types import FileRecord


class GroupSortKey(str, Enum):
    COUNT = "count"
    TOTAL_BYTES = "total_bytes"
    SIZE = "size"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(slots=True)
class DuplicateGroupSnapshot:
    size_bytes: int
    hash_hex: str
    file_count: int
    total_bytes: int
    snapshot_version: int

    @property
    def group_key(self) -> str:
        return f"{self.size_bytes}:{self.hash_hex}"


@dataclass(frozen=True, slots=True)
class PagerSnapshot:
    version: int | None
    total: int


@dataclass(slots=True)
class GroupPage:
    items: list[DuplicateGroupSnapshot]
    version: int | None
    offset: int
    next_offset: int | None
    stale: bool


@dataclass(slots=True)
class GroupMemberPage:
    items: list[FileRecord]
    next_cursor: str | None
