from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True)
class TrashEntrySnapshot:
    id: str
    original_path: str
    trashed_path: str
    size_bytes: int
    mtime_ms: int
    hash_hex: str | None
    deleted_at_ms: int
    volume_root: str


@dataclass(slots=True)
class TrashListResult:
    items: list[TrashEntrySnapshot]
    next_cursor: str | None


@dataclass(slots=True)
class MoveResult:
    success: bool
    entry: TrashEntrySnapshot | None = None
    message: str | None = None
    rolled_back: bool = False


class RestoreOutcome(str, Enum):
    RESTORED = "restored"
    CONFLICT_TARGET_EXISTS = "conflict_target_exists"
    TRASHED_FILE_MISSING = "trashed_file_missing"
    MOVE_FAILED = "move_failed"
    DB_UPDATE_FAILED = "db_update_failed"


@dataclass(slots=True)
class RestoreResult:
    outcome: RestoreOutcome
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is RestoreOutcome.RESTORED
