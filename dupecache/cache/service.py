from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from dupecache.cache.types import CacheLookupResult, CacheStatus, FileRecord
from dupecache.core.config import Settings
from dupecache.db.models import CachedFile

logger = logging.getLogger(__name__)

# stays below SQLite's default host-parameter limit
SQLITE_VARIABLE_LIMIT = 900
_UPSERT_COLUMNS = ("path", "size_bytes", "mtime_ms", "hash_hex")


def _to_record(row: CachedFile) -> FileRecord:
    return FileRecord(
        path=row.path,
        normalized_path=row.normalized_path,
        size_bytes=int(row.size_bytes),
        mtime_ms=int(row.mtime_ms),
        hash_hex=row.hash_hex or None,
    )


def _to_params(record: FileRecord) -> dict[str, Any]:
    return {
        "normalized_path": record.normalized_path,
        "path": record.path,
        "size_bytes": record.size_bytes,
        "mtime_ms": record.mtime_ms,
        "hash_hex": record.hash_hex or None,
    }


def _chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _insert_for(session: Session):  # type: ignore[no-untyped-def]
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "sqlite":
        return sqlite.insert(CachedFile.__table__)
    if dialect_name == "postgresql":
        return postgresql.insert(CachedFile.__table__)
    raise NotImplementedError(f"Upsert is not supported for dialect {dialect_name}")


def upsert_records(session: Session, records: Sequence[FileRecord], *, chunk_size: int = 500) -> int:
    """Replace cached rows for every record, last write wins. Runs in the caller's transaction."""
    if not records:
        return 0
    base = _insert_for(session)
    statement = base.on_conflict_do_update(
        index_elements=[CachedFile.__table__.c.normalized_path],
        set_={
            **{column: base.excluded[column] for column in _UPSERT_COLUMNS},
            "updated_at": func.now(),
        },
    )
    written = 0
    for chunk in _chunked(list(records), max(1, chunk_size)):
        session.execute(statement, [_to_params(record) for record in chunk])
        written += len(chunk)
    return written


def classify(candidate: FileRecord, cached: FileRecord | None) -> CacheLookupResult:
    if cached is None:
        return CacheLookupResult(CacheStatus.MISS)
    is_fresh = (
        cached.size_bytes == candidate.size_bytes
        and cached.mtime_ms == candidate.mtime_ms
        and cached.has_hash
    )
    return CacheLookupResult(CacheStatus.FRESH if is_fresh else CacheStatus.STALE, cached)


def fetch_record(session: Session, normalized_path: str) -> FileRecord | None:
    row = session.get(CachedFile, normalized_path)
    return _to_record(row) if row is not None else None


def delete_record(session: Session, normalized_path: str) -> int:
    result = session.execute(delete(CachedFile).where(CachedFile.normalized_path == normalized_path))
    return int(result.rowcount or 0)


class FreshnessCache:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def lookup(self, candidate: FileRecord) -> CacheLookupResult:
        return classify(candidate, self.get(candidate.normalized_path))

    def get(self, normalized_path: str) -> FileRecord | None:
        with self._session_factory() as session:
            return fetch_record(session, normalized_path)

    def get_many(self, normalized_paths: Iterable[str]) -> dict[str, FileRecord]:
        unique_paths = sorted(set(normalized_paths))
        records: dict[str, FileRecord] = {}
        if not unique_paths:
            return records
        with self._session_factory() as session:
            for chunk in _chunked(unique_paths, SQLITE_VARIABLE_LIMIT):
                rows = session.scalars(select(CachedFile).where(CachedFile.normalized_path.in_(chunk))).all()
                for row in rows:
                    records[row.normalized_path] = _to_record(row)
        return records

    def upsert(self, record: FileRecord) -> None:
        self.upsert_all([record])

    def upsert_all(self, records: Sequence[FileRecord]) -> int:
        if not records:
            return 0
        with self._session_factory() as session, session.begin():
            written = upsert_records(session, records, chunk_size=int(self._settings.scan_write_batch_size))
        logger.debug("Upserted %d cache records", written)
        return written

    def delete(self, normalized_path: str) -> bool:
        with self._session_factory() as session, session.begin():
            return delete_record(session, normalized_path) > 0

    def clear(self) -> int:
        with self._session_factory() as session, session.begin():
            result = session.execute(delete(CachedFile))
            return int(result.rowcount or 0)

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(CachedFile)) or 0)

    def count_by_sizes(self, sizes: Iterable[int]) -> dict[int, int]:
        unique_sizes = sorted(set(sizes))
        counts: dict[int, int] = {}
        if not unique_sizes:
            return counts
        with self._session_factory() as session:
            for chunk in _chunked(unique_sizes, SQLITE_VARIABLE_LIMIT):
                rows = session.execute(
                    select(CachedFile.size_bytes, func.count())
                    .where(CachedFile.size_bytes.in_(chunk))
                    .group_by(CachedFile.size_bytes)
                ).all()
                for size_bytes, count in rows:
                    counts[int(size_bytes)] = counts.get(int(size_bytes), 0) + int(count)
        return counts

    def sizes_for_paths(self, normalized_paths: Iterable[str]) -> dict[str, int]:
        unique_paths = sorted(set(normalized_paths))
        sizes: dict[str, int] = {}
        if not unique_paths:
            return sizes
        with self._session_factory() as session:
            for chunk in _chunked(unique_paths, SQLITE_VARIABLE_LIMIT):
                rows = session.execute(
                    select(CachedFile.normalized_path, CachedFile.size_bytes).where(
                        CachedFile.normalized_path.in_(chunk)
                    )
                ).all()
                for normalized_path, size_bytes in rows:
                    sizes[str(normalized_path)] = int(size_bytes)
        return sizes

    def list_page_after(self, after_path: str | None, limit: int) -> list[FileRecord]:
        statement = select(CachedFile).order_by(CachedFile.normalized_path.asc()).limit(max(1, limit))
        if after_path is not None:
            statement = statement.where(CachedFile.normalized_path > after_path)
        with self._session_factory() as session:
            return [_to_record(row) for row in session.scalars(statement).all()]

    def list_members(
        self,
        size_bytes: int,
        hash_hex: str,
        *,
        after_path: str | None = None,
        limit: int = 100,
    ) -> list[FileRecord]:
        statement = (
            select(CachedFile)
            .where(CachedFile.size_bytes == size_bytes, CachedFile.hash_hex == hash_hex)
            .order_by(CachedFile.normalized_path.asc())
            .limit(max(1, limit))
        )
        if after_path is not None:
            statement = statement.where(CachedFile.normalized_path > after_path)
        with self._session_factory() as session:
            return [_to_record(row) for row in session.scalars(statement).all()]
