from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy import delete, func, select, text
from sqlalchemy.orm import Session, sessionmaker

from dupecache.cache.types import GroupKey
from dupecache.core.config import Settings
from dupecache.db.models import DUPE_GROUPS_INDEX_NAME, DuplicateGroup, IndexState
from dupecache.groups.types import DuplicateGroupSnapshot

logger = logging.getLogger(__name__)


class GroupIndexError(RuntimeError):
    pass


_REBUILD_STATEMENT = text(
    """
    INSERT INTO dupe_groups (size_bytes, hash_hex, file_count, total_bytes, snapshot_version)
    SELECT
        size_bytes,
        hash_hex,
        COUNT(*) AS file_count,
        COUNT(*) * size_bytes AS total_bytes,
        :version AS snapshot_version
    FROM cached_files
    WHERE hash_hex IS NOT NULL
      AND hash_hex != ''
    GROUP BY size_bytes, hash_hex
    HAVING COUNT(*) >= 2
    """
)

_REFRESH_KEY_STATEMENT = text(
    """
    INSERT INTO dupe_groups (size_bytes, hash_hex, file_count, total_bytes, snapshot_version)
    SELECT
        size_bytes,
        hash_hex,
        COUNT(*) AS file_count,
        COUNT(*) * size_bytes AS total_bytes,
        :version AS snapshot_version
    FROM cached_files
    WHERE size_bytes = :size_bytes
      AND hash_hex = :hash_hex
    GROUP BY size_bytes, hash_hex
    HAVING COUNT(*) >= 2
    """
)


def installed_version(session: Session) -> int | None:
    value = session.scalar(select(IndexState.version).where(IndexState.name == DUPE_GROUPS_INDEX_NAME))
    return int(value) if value is not None else None


def _install_version(session: Session, version: int) -> None:
    state = session.get(IndexState, DUPE_GROUPS_INDEX_NAME)
    if state is None:
        session.add(IndexState(name=DUPE_GROUPS_INDEX_NAME, version=version))
    else:
        state.version = version
    session.flush()


def refresh_keys(session: Session, keys: Iterable[GroupKey], *, fallback_version: int | None = None) -> int:
    """Recompute the group rows for ``keys`` inside the caller's transaction.

    Rows are stamped with the installed snapshot version so that an in-flight
    paginated read pinned to that version keeps working. ``fallback_version``
    (default 1) is installed only when no version exists yet. Returns how many
    of the keys still form a group.
    """
    unique_keys = {key for key in keys if key.hash_hex}
    if not unique_keys:
        return 0

    stamp = installed_version(session)
    if stamp is None:
        stamp = fallback_version if fallback_version is not None else 1
        _install_version(session, stamp)

    present = 0
    for key in sorted(unique_keys, key=lambda item: (item.size_bytes, item.hash_hex)):
        session.execute(
            delete(DuplicateGroup).where(
                DuplicateGroup.size_bytes == key.size_bytes,
                DuplicateGroup.hash_hex == key.hash_hex,
            )
        )
        result = session.execute(
            _REFRESH_KEY_STATEMENT,
            {"size_bytes": key.size_bytes, "hash_hex": key.hash_hex, "version": stamp},
        )
        if (result.rowcount or 0) > 0:
            present += 1
    return present


def _to_snapshot(row: Any) -> DuplicateGroupSnapshot:
    return DuplicateGroupSnapshot(
        size_bytes=int(row["size_bytes"]),
        hash_hex=str(row["hash_hex"]),
        file_count=int(row["file_count"]),
        total_bytes=int(row["total_bytes"]),
        snapshot_version=int(row["snapshot_version"]),
    )


class DuplicateGroupIndex:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def current_version(self) -> int | None:
        with self._session_factory() as session:
            return installed_version(session)

    def rebuild_all(self, version: int | None = None) -> int:
        with self._session_factory() as session, session.begin():
            installed = installed_version(session)
            target = version if version is not None else (installed or 0) + 1
            if installed is not None and target <= installed:
                raise ValueError(f"Snapshot version must increase: installed={installed}, requested={target}")

            session.execute(delete(DuplicateGroup))
            session.execute(_REBUILD_STATEMENT, {"version": target})
            _install_version(session, target)
            rows = int(
                session.scalar(
                    select(func.count()).select_from(DuplicateGroup).where(DuplicateGroup.snapshot_version == target)
                )
                or 0
            )

        logger.info("Rebuilt duplicate group index: version=%d groups=%d", target, rows)
        return target

    def refresh_one(self, size_bytes: int, hash_hex: str, version: int | None = None) -> bool:
        if size_bytes < 0:
            raise ValueError("size_bytes must be >= 0")
        if not hash_hex.strip():
            raise ValueError("hash_hex cannot be blank")
        with self._session_factory() as session, session.begin():
            present = refresh_keys(session, [GroupKey(size_bytes, hash_hex)], fallback_version=version)
        return present > 0

    def get(self, size_bytes: int, hash_hex: str) -> DuplicateGroupSnapshot | None:
        with self._session_factory() as session:
            row = session.get(DuplicateGroup, (size_bytes, hash_hex))
            if row is None:
                return None
            return DuplicateGroupSnapshot(
                size_bytes=int(row.size_bytes),
                hash_hex=row.hash_hex,
                file_count=int(row.file_count),
                total_bytes=int(row.total_bytes),
                snapshot_version=int(row.snapshot_version),
            )

    def count(self, version: int | None = None) -> int:
        statement = select(func.count()).select_from(DuplicateGroup)
        if version is not None:
            statement = statement.where(DuplicateGroup.snapshot_version == version)
        with self._session_factory() as session:
            return int(session.scalar(statement) or 0)

    def clear(self) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(delete(DuplicateGroup))

    def verify_against_cache(self) -> list[DuplicateGroupSnapshot]:
        """Return index rows whose count or total differ from a live recomputation."""
        statement = text(
            """
            SELECT g.size_bytes, g.hash_hex, g.file_count, g.total_bytes, g.snapshot_version
            FROM dupe_groups AS g
            LEFT JOIN (
                SELECT size_bytes, hash_hex, COUNT(*) AS live_count
                FROM cached_files
                WHERE hash_hex IS NOT NULL AND hash_hex != ''
                GROUP BY size_bytes, hash_hex
            ) AS live
              ON live.size_bytes = g.size_bytes AND live.hash_hex = g.hash_hex
            WHERE live.live_count IS NULL
               OR live.live_count < 2
               OR live.live_count != g.file_count
               OR live.live_count * g.size_bytes != g.total_bytes
            ORDER BY g.size_bytes ASC, g.hash_hex ASC
            """
        )
        with self._session_factory() as session:
            rows = session.execute(statement).mappings().all()
        drifted = [_to_snapshot(row) for row in rows]
        if drifted:
            logger.warning("Duplicate group index drifted from cache for %d keys", len(drifted))
        return drifted


def duplicate_group_snapshot_to_dict(snapshot: DuplicateGroupSnapshot) -> dict[str, Any]:
    return {
        "group_key": snapshot.group_key,
        "size_bytes": snapshot.size_bytes,
        "hash_hex": snapshot.hash_hex,
        "file_count": snapshot.file_count,
        "total_bytes": snapshot.total_bytes,
        "snapshot_version": snapshot.snapshot_version,
    }
