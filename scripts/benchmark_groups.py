from __future__ import annotations

import argparse
import os
import time
from pathlib import Path

import dupecache.db.session as db_session_module
from sqlalchemy import text

from dupecache.cache.service import FreshnessCache
from dupecache.cache.types import FileRecord
from dupecache.core.config import get_settings
from dupecache.db.init_db import initialize_database
from dupecache.groups.pager import SnapshotPager
from dupecache.groups.service import DuplicateGroupIndex
from dupecache.groups.types import GroupSortKey, SortDirection


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark duplicate group index rebuild and snapshot paging")
    parser.add_argument("--state-root", required=True, help="State root directory")
    parser.add_argument("--groups", type=int, default=5000, help="Number of duplicate groups")
    parser.add_argument("--files-per-group", type=int, default=2, help="Files per duplicate group")
    parser.add_argument("--singletons", type=int, default=5000, help="Cached files that belong to no group")
    parser.add_argument("--page-size", type=int, default=200, help="Group page size")
    parser.add_argument(
        "--sort",
        choices=[key.value for key in GroupSortKey],
        default=GroupSortKey.COUNT.value,
        help="Sort key used while paging",
    )
    parser.add_argument("--explain", action="store_true", help="Print query plan details")
    return parser.parse_args()


def configure_env(state_root: Path) -> None:
    state_root.mkdir(parents=True, exist_ok=True)
    os.environ["DUPECACHE_STATE_ROOT"] = state_root.as_posix()

    get_settings.cache_clear()
    db_session_module.reset_engine()


def seed_fixture(total_groups: int, files_per_group: int, singletons: int) -> int:
    cache = FreshnessCache(get_settings(), db_session_module.get_session_factory())
    records: list[FileRecord] = []
    for group_idx in range(total_groups):
        hash_hex = f"{group_idx:064x}"
        for file_idx in range(files_per_group):
            path = f"/fixture/g{group_idx}/f{file_idx}.bin"
            records.append(
                FileRecord(
                    path=path,
                    normalized_path=path,
                    size_bytes=2048 + (group_idx % 97),
                    mtime_ms=1700000000000 + file_idx,
                    hash_hex=hash_hex,
                )
            )
    for idx in range(singletons):
        path = f"/fixture/single/s{idx}.bin"
        records.append(
            FileRecord(path=path, normalized_path=path, size_bytes=1_000_000 + idx, mtime_ms=1700000000000)
        )
    return cache.upsert_all(records)


def benchmark(page_size: int, sort_key: GroupSortKey) -> tuple[int, float, float]:
    settings = get_settings()
    session_factory = db_session_module.get_session_factory()

    start = time.perf_counter()
    DuplicateGroupIndex(settings, session_factory).rebuild_all()
    rebuild_elapsed = time.perf_counter() - start

    pager = SnapshotPager(settings, session_factory)
    start = time.perf_counter()
    total_groups = sum(
        1 for _ in pager.iter_all(page_size=page_size, sort_key=sort_key, direction=SortDirection.DESC)
    )
    paging_elapsed = time.perf_counter() - start
    return total_groups, rebuild_elapsed, paging_elapsed


def maybe_print_explain() -> None:
    with db_session_module.get_session_factory()() as session:
        rows = session.execute(
            text(
                """
                EXPLAIN QUERY PLAN
                SELECT size_bytes, hash_hex, file_count, total_bytes
                FROM dupe_groups
                WHERE snapshot_version = 1
                ORDER BY file_count DESC, total_bytes DESC, size_bytes DESC, hash_hex DESC
                LIMIT 200 OFFSET 1000
                """
            )
        ).all()

    print("Query plan:")
    for row in rows:
        print(f"- {row[3]}")


def main() -> None:
    args = parse_args()
    configure_env(Path(args.state_root))
    initialize_database()
    seeded = seed_fixture(args.groups, args.files_per_group, args.singletons)
    total_groups, rebuild_elapsed, paging_elapsed = benchmark(args.page_size, GroupSortKey(args.sort))
    print(
        f"files={seeded} groups={total_groups} rebuild_seconds={rebuild_elapsed:.3f} "
        f"paging_seconds={paging_elapsed:.3f} page_size={args.page_size}"
    )
    if args.explain:
        maybe_print_explain()


if __name__ == "__main__":
    main()
