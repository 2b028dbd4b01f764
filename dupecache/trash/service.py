from __future__ import annotations

import base64
import json
import logging
import os
import shutil
import time
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dupecache.cache.service import classify, delete_record, fetch_record, upsert_records
from dupecache.cache.types import CacheStatus, FileRecord, GroupKey
from dupecache.core.config import Settings
from dupecache.core.paths import validate_absolute_path
from dupecache.core.walker import stat_to_mtime_ms
from dupecache.db.models import TrashEntry
from dupecache.groups.service import refresh_keys
from dupecache.trash.types import (
    MoveResult,
    RestoreOutcome,
    RestoreResult,
    TrashEntrySnapshot,
    TrashListResult,
)
from dupecache.trash.volumes import ConfiguredVolumeResolver, VolumeResolver

logger = logging.getLogger(__name__)

TRASH_BIN_DIR = "trashbin"
NOMEDIA_MARKER = ".nomedia"


class TrashVaultError(RuntimeError):
    pass


class TrashEntryNotFoundError(RuntimeError):
    pass


def move_file(source: Path, destination: Path) -> None:
    """Rename ``source`` to ``destination``, copying across volumes when rename fails.

    A failed copy never leaves a partial destination behind. Raises OSError
    when both strategies fail; ``source`` is then still in place.
    """
    try:
        os.rename(source, destination)
        return
    except OSError as exc:
        logger.info("Rename %s -> %s failed (%s), falling back to copy", source, destination, exc)

    try:
        shutil.copy2(source, destination)
        os.unlink(source)
    except OSError:
        if source.exists() and destination.exists():
            try:
                os.unlink(destination)
            except OSError as cleanup_exc:
                logger.warning("Failed to remove partial copy %s: %s", destination, cleanup_exc)
        raise


def ensure_trash_layout(volume_root: Path, app_dir_name: str) -> Path:
    app_root = volume_root / app_dir_name
    app_root.mkdir(parents=True, exist_ok=True)
    (app_root / NOMEDIA_MARKER).touch(exist_ok=True)
    trash_dir = app_root / TRASH_BIN_DIR
    trash_dir.mkdir(parents=True, exist_ok=True)
    return trash_dir


class TrashVault:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        volume_resolver: VolumeResolver | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._volume_resolver = volume_resolver or ConfiguredVolumeResolver(settings.trash_volume_roots)

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def _normalize_limit(self, limit: int | None) -> int:
        if limit is None:
            return int(self._settings.default_page_size)
        return max(1, min(int(limit), int(self._settings.max_page_size)))

    def _to_snapshot(self, row: TrashEntry) -> TrashEntrySnapshot:
        return TrashEntrySnapshot(
            id=row.id,
            original_path=row.original_path,
            trashed_path=row.trashed_path,
            size_bytes=int(row.size_bytes),
            mtime_ms=int(row.mtime_ms),
            hash_hex=row.hash_hex,
            deleted_at_ms=int(row.deleted_at_ms),
            volume_root=row.volume_root,
        )

    def move_to_trash(self, path: str | Path) -> MoveResult:
        source = validate_absolute_path(str(path))
        normalized = source.as_posix()

        if not source.exists():
            with self._session_factory() as session, session.begin():
                cached = fetch_record(session, normalized)
                delete_record(session, normalized)
                key = GroupKey.of(cached)
                if key is not None:
                    refresh_keys(session, [key])
            logger.info("Trash target %s is already gone; dropped its cache record", normalized)
            return MoveResult(success=True, message="File no longer exists")

        if not source.is_file():
            return MoveResult(success=False, message="Only regular files can be moved to trash")

        volume_root = self._volume_resolver.resolve(source)
        if volume_root is None:
            return MoveResult(success=False, message="Unable to resolve storage root")
        app_root = volume_root / self._settings.trash_dir_name
        if app_root in source.parents:
            raise TrashVaultError(f"Refusing to trash a file inside the trash area: {normalized}")

        try:
            trash_dir = ensure_trash_layout(volume_root, self._settings.trash_dir_name)
        except OSError as exc:
            return MoveResult(success=False, message=f"Failed to initialize trash layout: {exc}")

        entry_id = str(uuid.uuid4())
        deleted_at_ms = self._now_ms()
        base_name = source.name or "file"
        destination = trash_dir / f"{deleted_at_ms}_{entry_id[:8]}_{base_name}"

        with self._session_factory() as session:
            cached = fetch_record(session, normalized)
        info = source.stat()
        current = FileRecord(
            path=normalized,
            normalized_path=normalized,
            size_bytes=int(info.st_size),
            mtime_ms=stat_to_mtime_ms(info),
        )
        # a cached digest only travels with the file while it still describes its content
        lookup = classify(current, cached)
        row = TrashEntry(
            id=entry_id,
            original_path=normalized,
            trashed_path=destination.as_posix(),
            size_bytes=current.size_bytes,
            mtime_ms=current.mtime_ms,
            hash_hex=cached.hash_hex if lookup.status is CacheStatus.FRESH and cached is not None else None,
            deleted_at_ms=deleted_at_ms,
            volume_root=volume_root.as_posix(),
        )

        try:
            move_file(source, destination)
        except OSError as exc:
            logger.warning("Failed to move %s to trash: %s", normalized, exc)
            return MoveResult(success=False, message=f"Failed to move file: {exc}")

        try:
            with self._session_factory() as session, session.begin():
                delete_record(session, normalized)
                session.add(row)
                key = GroupKey.of(cached)
                if key is not None:
                    refresh_keys(session, [key])
                session.flush()
                snapshot = self._to_snapshot(row)
        except SQLAlchemyError:
            logger.exception("Trash bookkeeping failed for %s, moving it back", normalized)
            rolled_back = self._compensate(destination, source)
            return MoveResult(success=False, message="DB update failed", rolled_back=rolled_back)

        logger.info("Moved %s to trash as %s", normalized, destination)
        return MoveResult(success=True, entry=snapshot)

    def restore_from_trash(self, entry: TrashEntrySnapshot) -> RestoreResult:
        trashed = Path(entry.trashed_path)
        if not trashed.exists():
            with self._session_factory() as session, session.begin():
                session.execute(delete(TrashEntry).where(TrashEntry.id == entry.id))
            return RestoreResult(RestoreOutcome.TRASHED_FILE_MISSING, "Trashed file is missing; entry removed")

        target = Path(entry.original_path)
        if os.path.lexists(target):
            return RestoreResult(RestoreOutcome.CONFLICT_TARGET_EXISTS, "A file already exists at the original path")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            move_file(trashed, target)
        except OSError as exc:
            logger.warning("Failed to restore %s: %s", entry.original_path, exc)
            return RestoreResult(RestoreOutcome.MOVE_FAILED, str(exc))

        info = target.stat()
        restored = FileRecord(
            path=entry.original_path,
            normalized_path=entry.original_path,
            size_bytes=int(info.st_size),
            mtime_ms=stat_to_mtime_ms(info),
            hash_hex=None,
        )
        if restored.size_bytes == entry.size_bytes and restored.mtime_ms == entry.mtime_ms:
            restored = restored.with_hash(entry.hash_hex)
        try:
            with self._session_factory() as session, session.begin():
                upsert_records(session, [restored])
                session.execute(delete(TrashEntry).where(TrashEntry.id == entry.id))
                key = GroupKey.of(restored)
                if key is not None:
                    refresh_keys(session, [key])
        except SQLAlchemyError:
            logger.exception("Restore bookkeeping failed for %s, returning it to trash", entry.original_path)
            self._compensate(target, trashed)
            return RestoreResult(RestoreOutcome.DB_UPDATE_FAILED, "DB update failed")

        logger.info("Restored %s from trash", entry.original_path)
        return RestoreResult(RestoreOutcome.RESTORED)

    def delete_permanently(self, entry: TrashEntrySnapshot) -> bool:
        trashed = Path(entry.trashed_path)
        if trashed.exists():
            try:
                os.unlink(trashed)
            except OSError as exc:
                logger.warning("Failed to delete trashed file %s: %s", trashed, exc)
                return False
        with self._session_factory() as session, session.begin():
            session.execute(delete(TrashEntry).where(TrashEntry.id == entry.id))
        return True

    def empty_trash(self) -> int:
        deleted = 0
        cursor: str | None = None
        while True:
            page = self.list_entries(limit=int(self._settings.max_page_size), cursor=cursor)
            for entry in page.items:
                if self.delete_permanently(entry):
                    deleted += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
        logger.info("Emptied trash: %d entries deleted", deleted)
        return deleted

    def get_entry(self, entry_id: str) -> TrashEntrySnapshot:
        with self._session_factory() as session:
            row = session.get(TrashEntry, entry_id)
            if row is None:
                raise TrashEntryNotFoundError(f"Trash entry not found: {entry_id}")
            return self._to_snapshot(row)

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(TrashEntry)) or 0)

    def list_entries(self, *, limit: int | None = None, cursor: str | None = None) -> TrashListResult:
        bounded_limit = self._normalize_limit(limit)
        statement = select(TrashEntry).order_by(TrashEntry.deleted_at_ms.desc(), TrashEntry.id.desc())
        if cursor is not None:
            anchor_deleted_at, anchor_id = self._decode_cursor(cursor)
            statement = statement.where(
                or_(
                    TrashEntry.deleted_at_ms < anchor_deleted_at,
                    and_(TrashEntry.deleted_at_ms == anchor_deleted_at, TrashEntry.id < anchor_id),
                )
            )
        with self._session_factory() as session:
            rows = session.scalars(statement.limit(bounded_limit + 1)).all()
            items = [self._to_snapshot(row) for row in rows[:bounded_limit]]

        next_cursor = self._encode_cursor(items[-1]) if len(rows) > bounded_limit and items else None
        return TrashListResult(items=items, next_cursor=next_cursor)

    def _encode_cursor(self, entry: TrashEntrySnapshot) -> str:
        raw = json.dumps({"deleted_at_ms": entry.deleted_at_ms, "id": entry.id}, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    def _decode_cursor(self, cursor: str) -> tuple[int, str]:
        token = cursor.strip()
        if not token:
            raise ValueError("Invalid trash cursor")
        padded = token + ("=" * (-len(token) % 4))
        try:
            payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
            return int(payload["deleted_at_ms"]), str(payload["id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ValueError("Invalid trash cursor") from exc

    def _compensate(self, source: Path, destination: Path) -> bool:
        try:
            move_file(source, destination)
        except OSError as exc:
            logger.error("Compensating move %s -> %s failed: %s", source, destination, exc)
            return False
        return True


def trash_entry_snapshot_to_dict(snapshot: TrashEntrySnapshot) -> dict[str, Any]:
    return asdict(snapshot)
