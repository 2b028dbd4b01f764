from __future__ import annotations

import errno
import json
import os
import shutil
from pathlib import Path

import dupecache.db.session as db_session_module
import dupecache.trash.service as trash_service_module
import pytest
from sqlalchemy.exc import SQLAlchemyError

from dupecache.cache.service import FreshnessCache
from dupecache.cache.types import CacheStatus, FileRecord
from dupecache.core.config import get_settings
from dupecache.core.hashing import hash_bytes
from dupecache.db.init_db import initialize_database
from dupecache.groups.service import DuplicateGroupIndex
from dupecache.trash.service import NOMEDIA_MARKER, TrashEntryNotFoundError, TrashVault, TrashVaultError
from dupecache.trash.types import RestoreOutcome
from dupecache.trash.volumes import ConfiguredVolumeResolver


class TrashEnv:
    def __init__(self, vault: TrashVault, cache: FreshnessCache, index: DuplicateGroupIndex, volume: Path):
        self.vault = vault
        self.cache = cache
        self.index = index
        self.volume = volume

    def add_file(self, relative: str, content: bytes = b"payload", hash_hex: str | None = "aa") -> Path:
        path = self.volume / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        self.cache.upsert(FileRecord.from_path(path, hash_hex=hash_hex))
        return path


def setup_env(tmp_path: Path) -> TrashEnv:
    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)
    volume = tmp_path / "vol"
    volume.mkdir(parents=True, exist_ok=True)

    for key in [name for name in os.environ if name.startswith("DUPECACHE_")]:
        del os.environ[key]
    os.environ["DUPECACHE_STATE_ROOT"] = state_root.as_posix()
    os.environ["DUPECACHE_TRASH_VOLUME_ROOTS"] = json.dumps([volume.as_posix()])
    os.environ["DUPECACHE_DEFAULT_PAGE_SIZE"] = "2"
    os.environ["DUPECACHE_MAX_PAGE_SIZE"] = "2"

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    settings = get_settings()
    session_factory = db_session_module.get_session_factory()
    return TrashEnv(
        TrashVault(settings, session_factory),
        FreshnessCache(settings, session_factory),
        DuplicateGroupIndex(settings, session_factory),
        volume,
    )


def test_move_and_restore_round_trip(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("photos/a.jpg")

    moved = env.vault.move_to_trash(source)

    assert moved.success is True
    entry = moved.entry
    assert entry is not None
    assert not source.exists()
    trashed = Path(entry.trashed_path)
    assert trashed.exists()
    assert trashed.parent == env.volume / ".dupecache" / "trashbin"
    assert trashed.name.startswith(f"{entry.deleted_at_ms}_{entry.id[:8]}_")
    assert trashed.name.endswith("_a.jpg")
    assert (env.volume / ".dupecache" / NOMEDIA_MARKER).exists()
    assert entry.hash_hex == "aa"
    assert entry.volume_root == env.volume.as_posix()
    assert env.cache.get(source.as_posix()) is None
    assert env.vault.count() == 1

    restored = env.vault.restore_from_trash(entry)

    assert restored.success is True
    assert source.read_bytes() == b"payload"
    assert not trashed.exists()
    assert env.vault.count() == 0
    cached = env.cache.get(source.as_posix())
    assert cached is not None
    assert cached.hash_hex == "aa"


def test_outdated_cached_hash_is_not_carried_through_trash(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin", b"old", hash_hex=hash_bytes(b"old"))
    source.write_bytes(b"new")
    stat = source.stat()
    os.utime(source, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    moved = env.vault.move_to_trash(source)

    assert moved.entry.hash_hex is None
    assert moved.entry.mtime_ms == FileRecord.from_path(moved.entry.trashed_path).mtime_ms

    assert env.vault.restore_from_trash(moved.entry).success is True
    lookup = env.cache.lookup(FileRecord.from_path(source))
    assert lookup.status is CacheStatus.STALE
    assert lookup.cached.hash_hex is None


def test_restore_drops_hash_when_trashed_file_changed(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin", b"same", hash_hex=hash_bytes(b"same"))
    moved = env.vault.move_to_trash(source)
    assert moved.entry.hash_hex == hash_bytes(b"same")
    trashed = Path(moved.entry.trashed_path)
    trashed.write_bytes(b"edit")
    stat = trashed.stat()
    os.utime(trashed, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    assert env.vault.restore_from_trash(moved.entry).success is True

    cached = env.cache.get(source.as_posix())
    assert cached is not None
    assert cached.hash_hex is None
    assert env.cache.lookup(FileRecord.from_path(source)).status is CacheStatus.STALE


def test_move_refreshes_group_and_keeps_version(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    first = env.add_file("a.bin")
    env.add_file("b.bin")
    env.add_file("c.bin")
    version = env.index.rebuild_all()
    assert env.index.get(7, "aa").file_count == 3

    assert env.vault.move_to_trash(first).success is True
    group = env.index.get(7, "aa")
    assert group.file_count == 2
    assert group.snapshot_version == version

    assert env.vault.move_to_trash(env.volume / "b.bin").success is True
    assert env.index.get(7, "aa") is None
    assert env.index.current_version() == version


def test_restore_brings_group_back(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    first = env.add_file("a.bin")
    env.add_file("b.bin")
    env.index.rebuild_all()
    moved = env.vault.move_to_trash(first)
    assert env.index.get(7, "aa") is None

    env.vault.restore_from_trash(moved.entry)

    assert env.index.get(7, "aa").file_count == 2


def test_missing_file_counts_as_success_and_drops_cache_row(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("gone.bin")
    env.add_file("other.bin")
    env.index.rebuild_all()
    source.unlink()

    result = env.vault.move_to_trash(source)

    assert result.success is True
    assert result.entry is None
    assert result.message == "File no longer exists"
    assert env.cache.get(source.as_posix()) is None
    assert env.index.get(7, "aa") is None
    assert env.vault.count() == 0


def test_directory_is_rejected(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    folder = env.volume / "folder"
    folder.mkdir()

    result = env.vault.move_to_trash(folder)

    assert result.success is False
    assert folder.exists()


def test_unresolvable_volume_root_fails(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin")
    vault = TrashVault(
        get_settings(),
        db_session_module.get_session_factory(),
        volume_resolver=ConfiguredVolumeResolver((), fallback_to_mount=False),
    )

    result = vault.move_to_trash(source)

    assert result.success is False
    assert result.message == "Unable to resolve storage root"
    assert source.exists()


def test_trashing_inside_trash_area_is_refused(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    moved = env.vault.move_to_trash(env.add_file("a.bin"))

    with pytest.raises(TrashVaultError):
        env.vault.move_to_trash(moved.entry.trashed_path)


def test_relative_path_is_rejected(tmp_path: Path) -> None:
    env = setup_env(tmp_path)

    with pytest.raises(ValueError):
        env.vault.move_to_trash("relative/a.bin")


def test_restore_conflict_leaves_both_files(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin")
    moved = env.vault.move_to_trash(source)
    source.write_bytes(b"newcomer")

    result = env.vault.restore_from_trash(moved.entry)

    assert result.outcome is RestoreOutcome.CONFLICT_TARGET_EXISTS
    assert source.read_bytes() == b"newcomer"
    assert Path(moved.entry.trashed_path).exists()
    assert env.vault.count() == 1


def test_restore_of_missing_trashed_file_drops_entry(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    moved = env.vault.move_to_trash(env.add_file("a.bin"))
    Path(moved.entry.trashed_path).unlink()

    result = env.vault.restore_from_trash(moved.entry)

    assert result.outcome is RestoreOutcome.TRASHED_FILE_MISSING
    assert env.vault.count() == 0
    with pytest.raises(TrashEntryNotFoundError):
        env.vault.get_entry(moved.entry.id)


def test_delete_permanently_and_empty_trash(tmp_path: Path) -> None:
    env = setup_env(tmp_path)
    entries = [env.vault.move_to_trash(env.add_file(f"f{idx}.bin")).entry for idx in range(5)]

    assert env.vault.delete_permanently(entries[0]) is True
    assert not Path(entries[0].trashed_path).exists()
    assert env.vault.count() == 4

    Path(entries[1].trashed_path).unlink()
    assert env.vault.empty_trash() == 4
    assert env.vault.count() == 0
    assert all(not Path(entry.trashed_path).exists() for entry in entries)


def test_list_entries_pages_newest_first(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env = setup_env(tmp_path)
    clock = iter([1_000, 2_000, 2_000, 3_000, 4_000])
    monkeypatch.setattr(env.vault, "_now_ms", lambda: next(clock))
    for idx in range(5):
        env.vault.move_to_trash(env.add_file(f"f{idx}.bin"))

    seen = []
    cursor = None
    while True:
        page = env.vault.list_entries(cursor=cursor)
        assert len(page.items) <= 2
        seen.extend(page.items)
        if page.next_cursor is None:
            break
        cursor = page.next_cursor

    assert len({entry.id for entry in seen}) == 5
    keys = [(entry.deleted_at_ms, entry.id) for entry in seen]
    assert keys == sorted(keys, reverse=True)

    with pytest.raises(ValueError):
        env.vault.list_entries(cursor="not-a-cursor")


def test_cross_device_rename_falls_back_to_copy(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin")

    def _exdev(_src, _dst):  # type: ignore[no-untyped-def]
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(trash_service_module.os, "rename", _exdev)

    result = env.vault.move_to_trash(source)

    assert result.success is True
    assert not source.exists()
    assert Path(result.entry.trashed_path).read_bytes() == b"payload"


def test_failed_copy_removes_partial_destination(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin")

    def _exdev(_src, _dst):  # type: ignore[no-untyped-def]
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    def _partial_copy(_src, dst):  # type: ignore[no-untyped-def]
        Path(dst).write_bytes(b"pay")
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(trash_service_module.os, "rename", _exdev)
    monkeypatch.setattr(shutil, "copy2", _partial_copy)

    result = env.vault.move_to_trash(source)

    assert result.success is False
    assert source.read_bytes() == b"payload"
    assert list((env.volume / ".dupecache" / "trashbin").iterdir()) == []
    assert env.cache.get(source.as_posix()) is not None
    assert env.vault.count() == 0


def test_db_failure_moves_file_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin")

    def _boom(*_args, **_kwargs):  # type: ignore[no-untyped-def]
        raise SQLAlchemyError("boom")

    monkeypatch.setattr(trash_service_module, "refresh_keys", _boom)

    result = env.vault.move_to_trash(source)

    assert result.success is False
    assert result.message == "DB update failed"
    assert result.rolled_back is True
    assert source.read_bytes() == b"payload"
    assert env.cache.get(source.as_posix()) is not None
    assert env.vault.count() == 0


def test_restore_db_failure_returns_file_to_trash(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env = setup_env(tmp_path)
    source = env.add_file("a.bin")
    moved = env.vault.move_to_trash(source)

    def _boom(*_args, **_kwargs):  # type: ignore[no-untyped-def]
        raise SQLAlchemyError("boom")

    monkeypatch.setattr(trash_service_module, "refresh_keys", _boom)

    result = env.vault.restore_from_trash(moved.entry)

    assert result.outcome is RestoreOutcome.DB_UPDATE_FAILED
    assert not source.exists()
    assert Path(moved.entry.trashed_path).exists()
    assert env.vault.count() == 1


def test_volume_resolver_prefers_longest_root(tmp_path: Path) -> None:
    outer = tmp_path / "mnt"
    inner = outer / "disk2"
    resolver = ConfiguredVolumeResolver([outer, inner], fallback_to_mount=False)

    assert resolver.resolve(inner / "x" / "file.bin") == inner
    assert resolver.resolve(outer / "disk1" / "file.bin") == outer
    assert resolver.resolve(tmp_path / "mntx" / "file.bin") is None


def test_volume_resolver_falls_back_to_mount_point(tmp_path: Path) -> None:
    target = tmp_path / "file.bin"
    target.write_bytes(b"x")

    resolved = ConfiguredVolumeResolver().resolve(target)

    assert resolved is not None
    assert os.path.ismount(resolved)
    assert target.as_posix().startswith(resolved.as_posix())
