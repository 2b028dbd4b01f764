from __future__ import annotations

import os
from pathlib import Path

import dupecache.db.session as db_session_module
import pytest

from dupecache.cache.service import FreshnessCache
from dupecache.cache.types import FileRecord
from dupecache.core.config import get_settings
from dupecache.db.init_db import initialize_database
from dupecache.groups.pager import SnapshotPager
from dupecache.groups.service import DuplicateGroupIndex, duplicate_group_snapshot_to_dict


def setup_env(tmp_path: Path) -> tuple[DuplicateGroupIndex, FreshnessCache]:
    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)

    for key in [name for name in os.environ if name.startswith("DUPECACHE_")]:
        del os.environ[key]
    os.environ["DUPECACHE_STATE_ROOT"] = state_root.as_posix()

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    settings = get_settings()
    session_factory = db_session_module.get_session_factory()
    return DuplicateGroupIndex(settings, session_factory), FreshnessCache(settings, session_factory)


def _record(path: str, size_bytes: int, hash_hex: str | None) -> FileRecord:
    return FileRecord(path=path, normalized_path=path, size_bytes=size_bytes, mtime_ms=1_000, hash_hex=hash_hex)


def test_rebuild_groups_by_size_and_hash(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all(
        [
            _record("/a", 10, "h1"),
            _record("/b", 10, "h1"),
            _record("/c", 20, "h2"),
            _record("/d", 30, None),
            _record("/e", 30, None),
        ]
    )

    version = index.rebuild_all()

    assert version == 1
    assert index.current_version() == 1
    assert index.count() == 1
    group = index.get(10, "h1")
    assert group is not None
    assert group.file_count == 2
    assert group.total_bytes == 20
    assert group.snapshot_version == 1
    assert index.get(20, "h2") is None
    assert duplicate_group_snapshot_to_dict(group)["group_key"] == "10:h1"


def test_same_hash_with_different_size_is_separate_key(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "h1"), _record("/b", 11, "h1"), _record("/c", 11, "h1")])

    index.rebuild_all()

    assert index.get(10, "h1") is None
    assert index.get(11, "h1").file_count == 2


def test_rebuild_versions_must_increase(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "h1"), _record("/b", 10, "h1")])

    assert index.rebuild_all(5) == 5
    with pytest.raises(ValueError):
        index.rebuild_all(5)
    with pytest.raises(ValueError):
        index.rebuild_all(3)
    assert index.rebuild_all() == 6
    assert index.count(version=6) == 1
    assert index.count(version=5) == 0


def test_refresh_one_keeps_installed_version(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "h1"), _record("/b", 10, "h1")])
    index.rebuild_all(4)

    cache.upsert(_record("/c", 10, "h1"))
    assert index.refresh_one(10, "h1") is True

    group = index.get(10, "h1")
    assert group.file_count == 3
    assert group.total_bytes == 30
    assert group.snapshot_version == 4
    assert index.current_version() == 4


def test_refresh_one_drops_group_below_two_members(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "h1"), _record("/b", 10, "h1")])
    index.rebuild_all()

    cache.delete("/b")
    assert index.refresh_one(10, "h1") is False

    assert index.get(10, "h1") is None
    assert index.count() == 0


def test_refresh_one_installs_fallback_version_when_index_is_empty(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "h1"), _record("/b", 10, "h1")])

    assert index.current_version() is None
    assert index.refresh_one(10, "h1", version=7) is True
    assert index.current_version() == 7
    assert index.get(10, "h1").snapshot_version == 7
    assert index.rebuild_all() == 8


def test_refresh_one_rejects_invalid_keys(tmp_path: Path) -> None:
    index, _cache = setup_env(tmp_path)

    with pytest.raises(ValueError):
        index.refresh_one(-1, "h1")
    with pytest.raises(ValueError):
        index.refresh_one(10, "   ")


def test_verify_against_cache_reports_drift(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all(
        [
            _record("/a", 10, "h1"),
            _record("/b", 10, "h1"),
            _record("/c", 20, "h2"),
            _record("/d", 20, "h2"),
        ]
    )
    index.rebuild_all()
    assert index.verify_against_cache() == []

    cache.delete("/a")
    cache.upsert(_record("/e", 20, "h2"))

    drifted = index.verify_against_cache()
    assert [(item.size_bytes, item.hash_hex) for item in drifted] == [(10, "h1"), (20, "h2")]

    index.refresh_one(10, "h1")
    index.refresh_one(20, "h2")
    assert index.verify_against_cache() == []


def test_clear_removes_rows(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "h1"), _record("/b", 10, "h1")])
    index.rebuild_all()

    index.clear()

    assert index.count() == 0
    assert index.current_version() == 1


def test_members_of_group_are_listed_by_exact_hash(tmp_path: Path) -> None:
    index, cache = setup_env(tmp_path)
    cache.upsert_all([_record("/a", 10, "H1"), _record("/b", 10, "H1"), _record("/c", 20, "H2")])
    index.rebuild_all()
    pager = SnapshotPager(get_settings(), db_session_module.get_session_factory())

    members = pager.list_members(10, "H1")

    assert index.get(10, "H1").file_count == 2
    assert [item.path for item in members.items] == ["/a", "/b"]
    assert pager.list_members(10, "h1").items == []
