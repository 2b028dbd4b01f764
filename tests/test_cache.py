from __future__ import annotations

import os
from pathlib import Path

import dupecache.db.session as db_session_module

from dupecache.cache.service import FreshnessCache
from dupecache.cache.types import CacheStatus, FileRecord
from dupecache.core.config import get_settings
from dupecache.db.init_db import initialize_database


def make_cache(tmp_path: Path) -> FreshnessCache:
    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)

    for key in [name for name in os.environ if name.startswith("DUPECACHE_")]:
        del os.environ[key]
    os.environ["DUPECACHE_STATE_ROOT"] = state_root.as_posix()

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    return FreshnessCache(get_settings(), db_session_module.get_session_factory())


def _record(path: str, size_bytes: int = 10, mtime_ms: int = 1_000, hash_hex: str | None = "aa") -> FileRecord:
    return FileRecord(path=path, normalized_path=path, size_bytes=size_bytes, mtime_ms=mtime_ms, hash_hex=hash_hex)


def test_lookup_reports_miss_fresh_and_stale(tmp_path: Path) -> None:
    cache = make_cache(tmp_path)
    cache.upsert(_record("/data/a.bin"))
    cache.upsert(_record("/data/unhashed.bin", hash_hex=None))

    assert cache.lookup(_record("/data/missing.bin")).status == CacheStatus.MISS

    fresh = cache.lookup(_record("/data/a.bin", hash_hex=None))
    assert fresh.status == CacheStatus.FRESH
    assert fresh.cached is not None
    assert fresh.cached.hash_hex == "aa"

    assert cache.lookup(_record("/data/a.bin", size_bytes=11)).status == CacheStatus.STALE
    assert cache.lookup(_record("/data/a.bin", mtime_ms=2_000)).status == CacheStatus.STALE
    assert cache.lookup(_record("/data/unhashed.bin")).status == CacheStatus.STALE


def test_upsert_replaces_previous_record(tmp_path: Path) -> None:
    cache = make_cache(tmp_path)
    cache.upsert(_record("/data/a.bin", size_bytes=10, hash_hex="aa"))
    cache.upsert(_record("/data/a.bin", size_bytes=20, hash_hex=None))

    stored = cache.get("/data/a.bin")
    assert stored is not None
    assert stored.size_bytes == 20
    assert stored.hash_hex is None
    assert cache.count() == 1


def test_upsert_all_writes_in_batches(tmp_path: Path) -> None:
    cache = make_cache(tmp_path)
    records = [_record(f"/data/f{idx:04d}.bin", size_bytes=idx) for idx in range(1_200)]

    assert cache.upsert_all(records) == 1_200
    assert cache.count() == 1_200

    counts = cache.count_by_sizes(range(1_200))
    assert len(counts) == 1_200
    assert all(value == 1 for value in counts.values())


def test_count_by_sizes_and_sizes_for_paths(tmp_path: Path) -> None:
    cache = make_cache(tmp_path)
    cache.upsert_all(
        [
            _record("/data/a.bin", size_bytes=5),
            _record("/data/b.bin", size_bytes=5),
            _record("/data/c.bin", size_bytes=7),
        ]
    )

    assert cache.count_by_sizes([5, 7, 9]) == {5: 2, 7: 1}
    assert cache.sizes_for_paths(["/data/a.bin", "/data/zzz.bin"]) == {"/data/a.bin": 5}
    assert set(cache.get_many(["/data/a.bin", "/data/c.bin"])) == {"/data/a.bin", "/data/c.bin"}


def test_list_page_after_walks_every_record_once(tmp_path: Path) -> None:
    cache = make_cache(tmp_path)
    paths = [f"/data/{name}.bin" for name in ("e", "a", "d", "b", "c")]
    cache.upsert_all([_record(path) for path in paths])

    seen: list[str] = []
    after: str | None = None
    while True:
        page = cache.list_page_after(after, 2)
        if not page:
            break
        seen.extend(record.normalized_path for record in page)
        after = page[-1].normalized_path

    assert seen == sorted(paths)


def test_delete_and_clear(tmp_path: Path) -> None:
    cache = make_cache(tmp_path)
    cache.upsert_all([_record("/data/a.bin"), _record("/data/b.bin")])

    assert cache.delete("/data/a.bin") is True
    assert cache.delete("/data/a.bin") is False
    assert cache.clear() == 1
    assert cache.count() == 0
