from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from dupecache.cache.service import FreshnessCache, delete_record, upsert_records
from dupecache.cache.types import FileRecord, GroupKey
from dupecache.core.config import Settings
from dupecache.core.hashing import FileHasher, StreamingFileHasher
from dupecache.core.walker import ContinuePredicate, stat_to_mtime_ms
from dupecache.groups.service import refresh_keys
from dupecache.maintenance.types import MaintenanceProgress, MaintenanceProgressCallback, MaintenanceReport

logger = logging.getLogger(__name__)

MAINTENANCE_BATCH_SIZE = 200


def _touched_keys(before: FileRecord | None, after: FileRecord | None) -> list[GroupKey]:
    keys = [GroupKey.of(before), GroupKey.of(after)]
    return [key for key in keys if key is not None]


class CacheMaintenanceService:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        hasher: FileHasher | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._cache = FreshnessCache(settings, session_factory)
        self._hasher = hasher or StreamingFileHasher(
            algorithm=settings.hash_algorithm,
            chunk_bytes=int(settings.hash_read_chunk_bytes),
        )

    def run(
        self,
        *,
        delete_missing: bool = True,
        rehash_stale: bool = True,
        rehash_missing: bool = True,
        on_progress: MaintenanceProgressCallback | None = None,
        should_continue: ContinuePredicate | None = None,
        batch_size: int = MAINTENANCE_BATCH_SIZE,
    ) -> MaintenanceReport:
        report = MaintenanceReport(total=self._cache.count())
        after_path: str | None = None
        while True:
            batch = self._cache.list_page_after(after_path, max(1, batch_size))
            if not batch:
                break
            for record in batch:
                if should_continue is not None and not should_continue():
                    report.cancelled = True
                    logger.info("Cache maintenance cancelled after %d records", report.processed)
                    return report
                self._reconcile(record, report, delete_missing, rehash_stale, rehash_missing)
                report.processed += 1
                if on_progress is not None:
                    on_progress(MaintenanceProgress(processed=report.processed, total=report.total, current_path=record.path))
            after_path = batch[-1].normalized_path

        logger.info(
            "Cache maintenance finished: processed=%d deleted=%d rehashed=%d missing_hashed=%d errors=%d",
            report.processed,
            report.deleted,
            report.rehashed,
            report.missing_hashed,
            report.errors,
        )
        return report

    def _reconcile(
        self,
        record: FileRecord,
        report: MaintenanceReport,
        delete_missing: bool,
        rehash_stale: bool,
        rehash_missing: bool,
    ) -> None:
        path = Path(record.path or record.normalized_path)
        try:
            info = path.stat()
        except FileNotFoundError:
            if delete_missing:
                self._forget(record)
                report.deleted += 1
            return
        except OSError as exc:
            logger.warning("Cannot stat cached file %s: %s", path, exc)
            report.errors += 1
            return

        size_bytes = int(info.st_size)
        mtime_ms = stat_to_mtime_ms(info)
        is_stale = size_bytes != record.size_bytes or mtime_ms != record.mtime_ms
        should_hash = False
        if rehash_stale and is_stale:
            should_hash = True
        if rehash_missing and not record.has_hash:
            should_hash = True
        if not should_hash:
            return

        try:
            digest = self._hasher.hash(path)
        except OSError as exc:
            logger.warning("Cannot hash cached file %s: %s", path, exc)
            report.errors += 1
            return

        if rehash_stale and is_stale:
            report.rehashed += 1
        elif rehash_missing and not record.has_hash:
            report.missing_hashed += 1

        updated = FileRecord(
            path=record.path,
            normalized_path=record.normalized_path,
            size_bytes=size_bytes,
            mtime_ms=mtime_ms,
            hash_hex=digest,
        )
        with self._session_factory() as session, session.begin():
            upsert_records(session, [updated])
            refresh_keys(session, _touched_keys(record, updated))

    def _forget(self, record: FileRecord) -> None:
        with self._session_factory() as session, session.begin():
            delete_record(session, record.normalized_path)
            refresh_keys(session, _touched_keys(record, None))


def maintenance_report_to_dict(report: MaintenanceReport) -> dict[str, Any]:
    return asdict(report)
