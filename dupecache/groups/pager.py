from __future__ import annotations

import base64
import binascii
from typing import Any, Iterator

from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from dupecache.cache.service import FreshnessCache
from dupecache.core.config import Settings
from dupecache.groups.service import GroupIndexError, installed_version
from dupecache.groups.types import (
    DuplicateGroupSnapshot,
    GroupMemberPage,
    GroupPage,
    GroupSortKey,
    PagerSnapshot,
    SortDirection,
)

# Every chain ends in the primary key so ordering is total within a version.
_ORDER_COLUMNS: dict[GroupSortKey, tuple[str, ...]] = {
    GroupSortKey.COUNT: ("file_count", "total_bytes", "size_bytes", "hash_hex"),
    GroupSortKey.TOTAL_BYTES: ("total_bytes", "file_count", "size_bytes", "hash_hex"),
    GroupSortKey.SIZE: ("size_bytes", "file_count", "hash_hex"),
}


def _order_clause(sort_key: GroupSortKey, direction: SortDirection) -> str:
    keyword = "ASC" if direction is SortDirection.ASC else "DESC"
    return ", ".join(f"{column} {keyword}" for column in _ORDER_COLUMNS[sort_key])


def _encode_path_cursor(normalized_path: str) -> str:
    return base64.urlsafe_b64encode(normalized_path.encode("utf-8")).decode("ascii").rstrip("=")


def _decode_path_cursor(cursor: str) -> str:
    token = cursor.strip()
    if not token:
        raise ValueError("Invalid group members cursor")
    padded = token + ("=" * (-len(token) % 4))
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise ValueError("Invalid group members cursor") from exc


class SnapshotPager:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory
        self._cache = FreshnessCache(settings, session_factory)

    def _normalize_limit(self, limit: int | None) -> int:
        if limit is None:
            return int(self._settings.default_page_size)
        return max(1, min(int(limit), int(self._settings.max_page_size)))

    def _size_filter(self) -> str:
        return "AND size_bytes > 0" if self._settings.hide_zero_size_in_results else ""

    def begin(self) -> PagerSnapshot:
        with self._session_factory() as session:
            version = installed_version(session)
            if version is None:
                return PagerSnapshot(version=None, total=0)
            total = session.execute(
                text(
                    f"""
                    SELECT COUNT(1)
                    FROM dupe_groups
                    WHERE snapshot_version = :version
                    {self._size_filter()}
                    """
                ),
                {"version": version},
            ).scalar_one()
        return PagerSnapshot(version=version, total=int(total))

    def page(
        self,
        version: int | None,
        *,
        offset: int = 0,
        limit: int | None = None,
        sort_key: GroupSortKey = GroupSortKey.COUNT,
        direction: SortDirection = SortDirection.DESC,
    ) -> GroupPage:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        bounded_limit = self._normalize_limit(limit)
        sort_key = GroupSortKey(sort_key)
        direction = SortDirection(direction)

        if version is None:
            return GroupPage(items=[], version=None, offset=offset, next_offset=None, stale=False)

        statement = text(
            f"""
            SELECT size_bytes, hash_hex, file_count, total_bytes, snapshot_version
            FROM dupe_groups
            WHERE snapshot_version = :version
            {self._size_filter()}
            ORDER BY {_order_clause(sort_key, direction)}
            LIMIT :limit_plus_one OFFSET :offset
            """
        )
        with self._session_factory() as session:
            installed = installed_version(session)
            rows = list(
                session.execute(
                    statement,
                    {"version": version, "limit_plus_one": bounded_limit + 1, "offset": offset},
                )
                .mappings()
                .all()
            )

        items = [self._to_snapshot(row) for row in rows[:bounded_limit]]
        next_offset = offset + len(items) if len(rows) > bounded_limit else None
        return GroupPage(
            items=items,
            version=version,
            offset=offset,
            next_offset=next_offset,
            stale=installed != version,
        )

    def iter_all(
        self,
        *,
        page_size: int | None = None,
        sort_key: GroupSortKey = GroupSortKey.COUNT,
        direction: SortDirection = SortDirection.DESC,
    ) -> Iterator[DuplicateGroupSnapshot]:
        snapshot = self.begin()
        offset: int | None = 0
        while offset is not None:
            result = self.page(
                snapshot.version,
                offset=offset,
                limit=page_size,
                sort_key=sort_key,
                direction=direction,
            )
            if result.stale:
                raise GroupIndexError(f"Duplicate group snapshot {snapshot.version} was replaced during iteration")
            yield from result.items
            offset = result.next_offset

    def list_members(
        self,
        size_bytes: int,
        hash_hex: str,
        *,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> GroupMemberPage:
        if size_bytes < 0:
            raise ValueError("size_bytes must be >= 0")
        token = hash_hex.strip()
        if not token:
            raise ValueError("hash_hex cannot be blank")
        bounded_limit = self._normalize_limit(limit)
        after_path = _decode_path_cursor(cursor) if cursor is not None else None

        rows = self._cache.list_members(size_bytes, token, after_path=after_path, limit=bounded_limit + 1)
        items = rows[:bounded_limit]
        next_cursor = _encode_path_cursor(items[-1].normalized_path) if len(rows) > bounded_limit and items else None
        return GroupMemberPage(items=items, next_cursor=next_cursor)

    def _to_snapshot(self, row: Any) -> DuplicateGroupSnapshot:
        hash_hex = str(row["hash_hex"] or "")
        if not hash_hex:
            raise GroupIndexError("Blank hash value found in duplicate group rows")
        return DuplicateGroupSnapshot(
            size_bytes=int(row["size_bytes"]),
            hash_hex=hash_hex,
            file_count=int(row["file_count"]),
            total_bytes=int(row["total_bytes"]),
            snapshot_version=int(row["snapshot_version"]),
        )
