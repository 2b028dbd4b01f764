from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from dupecache.cache.types import FileRecord


class HashStateKind(str, Enum):
    NOT_NEEDED = "not_needed"
    PENDING = "pending"
    COMPUTED = "computed"


@dataclass(frozen=True, slots=True)
class HashState:
    kind: HashStateKind
    digest: str | None = None

    @classmethod
    def not_needed(cls) -> "HashState":
        return cls(HashStateKind.NOT_NEEDED)

    @classmethod
    def pending(cls) -> "HashState":
        return cls(HashStateKind.PENDING)

    @classmethod
    def computed(cls, digest: str) -> "HashState":
        if not digest:
            raise ValueError("computed hash state requires a digest")
        return cls(HashStateKind.COMPUTED, digest)


@dataclass(slots=True)
class ScannedEntry:
    record: FileRecord
    state: HashState

    def finalized(self) -> FileRecord:
        if self.state.kind is HashStateKind.COMPUTED:
            return self.record.with_hash(self.state.digest)
        return self.record


class ScanPhase(str, Enum):
    COLLECTING = "collecting"
    DETECTING = "detecting"
    HASHING = "hashing"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass(slots=True)
class ScanTotals:
    collected: int = 0
    detected: int = 0
    hash_candidates: int = 0
    hashes_computed: int = 0
    hashes_reused: int = 0
    hash_errors: int = 0
    persisted: int = 0


@dataclass(slots=True)
class ScanDurations:
    collecting_ms: int = 0
    detecting_ms: int = 0
    hashing_ms: int = 0


@dataclass(frozen=True, slots=True)
class ScanProgress:
    phase: ScanPhase
    processed: int
    total: int | None
    current_path: str | None = None


ProgressCallback = Callable[[ScanProgress], None]


@dataclass(slots=True)
class DuplicateFileGroup:
    hash_hex: str
    files: list[FileRecord]


@dataclass(slots=True)
class ScanResult:
    scanned_at_ms: int
    files: list[FileRecord]
    duplicate_groups: list[DuplicateFileGroup]
    cancelled: bool = False
    totals: ScanTotals = field(default_factory=ScanTotals)
    durations: ScanDurations = field(default_factory=ScanDurations)


@dataclass(slots=True)
class ScanReportSnapshot:
    id: str
    started_at_ms: int
    finished_at_ms: int
    roots: list[str]
    cancelled: bool
    collected_count: int
    detected_count: int
    hash_candidates: int
    hashes_computed: int
    hash_errors: int
    collecting_ms: int
    detecting_ms: int
    hashing_ms: int
