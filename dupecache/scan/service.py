from __future__ import annotations

import logging
import time
from collections import Counter
from pathlib import Path
from typing import Iterable, Sequence

from sqlalchemy.orm import Session, sessionmaker

from dupecache.cache.service import FreshnessCache, classify
from dupecache.cache.types import CacheStatus, FileRecord
from dupecache.core.config import Settings
from dupecache.core.hashing import FileHasher, StreamingFileHasher
from dupecache.core.paths import normalize_path
from dupecache.core.walker import ContinuePredicate, FileWalker, IgnorePredicate
from dupecache.scan.types import (
    DuplicateFileGroup,
    HashState,
    HashStateKind,
    ProgressCallback,
    ScanDurations,
    ScanPhase,
    ScanProgress,
    ScanResult,
    ScannedEntry,
    ScanTotals,
)

logger = logging.getLogger(__name__)

_COLLECT_PROGRESS_EVERY = 256


def _now_ms() -> int:
    return int(time.time() * 1000)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class _CancellationLatch:
    def __init__(self, should_continue: ContinuePredicate | None):
        self._should_continue = should_continue
        self.cancelled = False

    def __call__(self) -> bool:
        if self.cancelled:
            return False
        if self._should_continue is not None and not self._should_continue():
            self.cancelled = True
        return not self.cancelled


def group_by_hash(files: Iterable[FileRecord], *, exclude_zero_size: bool = False) -> list[DuplicateFileGroup]:
    buckets: dict[str, list[FileRecord]] = {}
    for record in files:
        if not record.hash_hex:
            continue
        if exclude_zero_size and record.size_bytes <= 0:
            continue
        buckets.setdefault(record.hash_hex, []).append(record)
    return [DuplicateFileGroup(hash_hex=hash_hex, files=members) for hash_hex, members in buckets.items() if len(members) > 1]


def merge_results(scanned_at_ms: int, results: Sequence[ScanResult], *, exclude_zero_size: bool = False) -> ScanResult:
    files = [record for result in results for record in result.files]
    return ScanResult(
        scanned_at_ms=scanned_at_ms,
        files=files,
        duplicate_groups=group_by_hash(files, exclude_zero_size=exclude_zero_size),
        cancelled=any(result.cancelled for result in results),
    )


def filter_for_display(result: ScanResult, *, hide_zero_size: bool) -> ScanResult:
    files = [record for record in result.files if record.size_bytes > 0] if hide_zero_size else list(result.files)
    return ScanResult(
        scanned_at_ms=result.scanned_at_ms,
        files=files,
        duplicate_groups=[] if result.cancelled else group_by_hash(files),
        cancelled=result.cancelled,
        totals=result.totals,
        durations=result.durations,
    )


class IncrementalScanEngine:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        hasher: FileHasher | None = None,
        walker: FileWalker | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._cache = FreshnessCache(settings, session_factory)
        self._hasher = hasher or StreamingFileHasher(
            algorithm=settings.hash_algorithm,
            chunk_bytes=int(settings.hash_read_chunk_bytes),
        )
        self._walker = walker or FileWalker()

    @property
    def cache(self) -> FreshnessCache:
        return self._cache

    def scan(
        self,
        roots: Sequence[str | Path] | str | Path,
        *,
        ignore: IgnorePredicate | None = None,
        should_continue: ContinuePredicate | None = None,
        skip_zero_size_in_db: bool | None = None,
        match_cached_sizes: bool | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResult:
        if isinstance(roots, (str, Path)):
            roots = [roots]
        if skip_zero_size_in_db is None:
            skip_zero_size_in_db = bool(self._settings.skip_zero_size_in_db)
        if match_cached_sizes is None:
            match_cached_sizes = bool(self._settings.scan_match_cached_sizes)

        scanned_at_ms = _now_ms()
        latch = _CancellationLatch(should_continue)
        totals = ScanTotals()
        durations = ScanDurations()

        started = time.monotonic()
        collected = self._collect(roots, ignore, latch, on_progress)
        durations.collecting_ms = _elapsed_ms(started)
        totals.collected = len(collected)
        if latch.cancelled:
            logger.info("Scan cancelled while collecting after %d files", len(collected))
            return self._empty_result(scanned_at_ms, totals, durations)

        started = time.monotonic()
        entries = self._detect(collected, match_cached_sizes)
        durations.detecting_ms = _elapsed_ms(started)
        totals.detected = len(entries)
        totals.hash_candidates = sum(1 for entry in entries if entry.state.kind is HashStateKind.PENDING)
        if not latch():
            logger.info("Scan cancelled while detecting")
            return self._empty_result(scanned_at_ms, totals, durations)

        started = time.monotonic()
        files, unreadable = self._hash(entries, latch, totals, on_progress)
        durations.hashing_ms = _elapsed_ms(started)
        if latch.cancelled:
            logger.info("Scan cancelled while hashing: %d/%d files processed", len(files), len(entries))
            return ScanResult(
                scanned_at_ms=scanned_at_ms,
                files=files,
                duplicate_groups=[],
                cancelled=True,
                totals=totals,
                durations=durations,
            )

        self._report(on_progress, ScanPhase.PERSISTING, 0, len(files))
        # unreadable files are stored without a hash
        persisted = [
            record for record in [*files, *unreadable] if not skip_zero_size_in_db or record.size_bytes > 0
        ]
        totals.persisted = self._cache.upsert_all(persisted)
        self._report(on_progress, ScanPhase.DONE, len(files), len(files))

        logger.info(
            "Scan finished: collected=%d unique=%d candidates=%d computed=%d reused=%d errors=%d",
            totals.collected,
            totals.detected,
            totals.hash_candidates,
            totals.hashes_computed,
            totals.hashes_reused,
            totals.hash_errors,
        )
        return ScanResult(
            scanned_at_ms=scanned_at_ms,
            files=files,
            duplicate_groups=group_by_hash(files),
            cancelled=False,
            totals=totals,
            durations=durations,
        )

    def _empty_result(self, scanned_at_ms: int, totals: ScanTotals, durations: ScanDurations) -> ScanResult:
        return ScanResult(
            scanned_at_ms=scanned_at_ms,
            files=[],
            duplicate_groups=[],
            cancelled=True,
            totals=totals,
            durations=durations,
        )

    def _collect(
        self,
        roots: Sequence[str | Path],
        ignore: IgnorePredicate | None,
        latch: _CancellationLatch,
        on_progress: ProgressCallback | None,
    ) -> list[FileRecord]:
        collected: list[FileRecord] = []
        for root in roots:
            if not latch():
                break
            for walked in self._walker.walk(Path(root), ignore=ignore, should_continue=latch):
                raw = str(walked.path)
                collected.append(
                    FileRecord(
                        path=raw,
                        normalized_path=normalize_path(raw),
                        size_bytes=walked.size_bytes,
                        mtime_ms=walked.mtime_ms,
                    )
                )
                if len(collected) % _COLLECT_PROGRESS_EVERY == 0:
                    self._report(on_progress, ScanPhase.COLLECTING, len(collected), None, raw)
        self._report(on_progress, ScanPhase.COLLECTING, len(collected), len(collected))
        return collected

    def _detect(self, collected: list[FileRecord], match_cached_sizes: bool) -> list[ScannedEntry]:
        unique: dict[str, FileRecord] = {}
        for record in collected:
            unique.setdefault(record.normalized_path, record)

        size_counts = Counter(record.size_bytes for record in unique.values())
        candidate_sizes = {size for size, count in size_counts.items() if count >= 2}

        singletons = [record for record in unique.values() if record.size_bytes not in candidate_sizes]
        if match_cached_sizes and singletons:
            candidate_sizes |= self._sizes_shared_with_cache(singletons)

        entries = []
        for record in unique.values():
            state = HashState.pending() if record.size_bytes in candidate_sizes else HashState.not_needed()
            entries.append(ScannedEntry(record=record, state=state))
        return entries

    def _sizes_shared_with_cache(self, singletons: list[FileRecord]) -> set[int]:
        cached_counts = self._cache.count_by_sizes(record.size_bytes for record in singletons)
        own_sizes = self._cache.sizes_for_paths(record.normalized_path for record in singletons)
        shared: set[int] = set()
        for record in singletons:
            others = cached_counts.get(record.size_bytes, 0)
            if own_sizes.get(record.normalized_path) == record.size_bytes:
                others -= 1
            if others > 0:
                shared.add(record.size_bytes)
        return shared

    def _hash(
        self,
        entries: list[ScannedEntry],
        latch: _CancellationLatch,
        totals: ScanTotals,
        on_progress: ProgressCallback | None,
    ) -> tuple[list[FileRecord], list[FileRecord]]:
        cached_records = self._cache.get_many(entry.record.normalized_path for entry in entries)

        files: list[FileRecord] = []
        unreadable: list[FileRecord] = []
        processed = 0
        for entry in entries:
            if entry.state.kind is HashStateKind.NOT_NEEDED:
                # keep a still-valid digest so later scans and the group index can use it
                lookup = classify(entry.record, cached_records.get(entry.record.normalized_path))
                if lookup.status is CacheStatus.FRESH and lookup.cached is not None:
                    entry.record = entry.record.with_hash(lookup.cached.hash_hex)
                files.append(entry.finalized())
                continue

            if not latch():
                break
            processed += 1
            self._report(on_progress, ScanPhase.HASHING, processed, totals.hash_candidates, entry.record.path)

            lookup = classify(entry.record, cached_records.get(entry.record.normalized_path))
            if lookup.status is CacheStatus.FRESH and lookup.cached is not None and lookup.cached.hash_hex:
                entry.state = HashState.computed(lookup.cached.hash_hex)
                totals.hashes_reused += 1
            else:
                try:
                    digest = self._hasher.hash(Path(entry.record.path))
                except OSError as exc:
                    logger.warning("Skipping unreadable file %s: %s", entry.record.path, exc)
                    totals.hash_errors += 1
                    unreadable.append(entry.record.with_hash(None))
                    continue
                entry.state = HashState.computed(digest)
                totals.hashes_computed += 1
            files.append(entry.finalized())
        return files, unreadable

    def _report(
        self,
        on_progress: ProgressCallback | None,
        phase: ScanPhase,
        processed: int,
        total: int | None,
        current_path: str | None = None,
    ) -> None:
        if on_progress is None:
            return
        on_progress(ScanProgress(phase=phase, processed=processed, total=total, current_path=current_path))
