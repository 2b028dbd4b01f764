from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sqlalchemy import Connection, Engine, inspect, text

from dupecache.db.models import DUPE_GROUPS_INDEX_NAME


@dataclass(frozen=True)
class MigrationStep:
    version: int
    name: str
    apply: Callable[[Connection], None]


def _ensure_schema_migrations_table(conn: Connection) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
    )


def _table_exists(conn: Connection, table_name: str) -> bool:
    inspector = inspect(conn)
    return inspector.has_table(table_name)


def _column_exists(conn: Connection, table_name: str, column_name: str) -> bool:
    if not _table_exists(conn, table_name):
        return False

    if conn.engine.dialect.name == "sqlite":
        rows = conn.execute(text(f"PRAGMA table_info('{table_name}')")).mappings().all()
        return any(str(row["name"]) == column_name for row in rows)

    inspector = inspect(conn)
    return any(col["name"] == column_name for col in inspector.get_columns(table_name))


def _migration_0001_baseline(_conn: Connection) -> None:
    return


def _migration_0002_cached_files_group_key_index(conn: Connection) -> None:
    if not _table_exists(conn, "cached_files"):
        return
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_cached_files_size ON cached_files (size_bytes)"))
    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_cached_files_group_key "
            "ON cached_files (size_bytes, hash_hex, normalized_path)"
        )
    )


def _migration_0003_dupe_groups_snapshot_version(conn: Connection) -> None:
    if not _table_exists(conn, "dupe_groups"):
        return

    if not _column_exists(conn, "dupe_groups", "snapshot_version"):
        conn.execute(text("ALTER TABLE dupe_groups ADD COLUMN snapshot_version BIGINT NOT NULL DEFAULT 0"))
        # legacy rows carried a wall-clock stamp that doubled as the snapshot token
        if _column_exists(conn, "dupe_groups", "updated_at_ms"):
            conn.execute(text("UPDATE dupe_groups SET snapshot_version = updated_at_ms"))

    conn.execute(text("DROP INDEX IF EXISTS ix_dupe_groups_file_count"))
    conn.execute(text("DROP INDEX IF EXISTS ix_dupe_groups_total_bytes"))
    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_dupe_groups_version_count "
            "ON dupe_groups (snapshot_version, file_count)"
        )
    )
    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_dupe_groups_version_total "
            "ON dupe_groups (snapshot_version, total_bytes)"
        )
    )
    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS ix_dupe_groups_version_size "
            "ON dupe_groups (snapshot_version, size_bytes)"
        )
    )


def _migration_0004_index_state_table(conn: Connection) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS index_state (
                name VARCHAR(64) PRIMARY KEY,
                version BIGINT NOT NULL,
                updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
    )
    if not _table_exists(conn, "dupe_groups"):
        return

    installed = conn.execute(
        text("SELECT version FROM index_state WHERE name = :name"),
        {"name": DUPE_GROUPS_INDEX_NAME},
    ).scalar_one_or_none()
    if installed is not None:
        return

    latest = conn.execute(text("SELECT MAX(snapshot_version) FROM dupe_groups")).scalar_one_or_none()
    if latest is None:
        return
    conn.execute(
        text("INSERT INTO index_state(name, version) VALUES (:name, :version)"),
        {"name": DUPE_GROUPS_INDEX_NAME, "version": int(latest)},
    )


def _migration_0005_scan_report_hash_errors(conn: Connection) -> None:
    if not _table_exists(conn, "scan_reports"):
        return
    if not _column_exists(conn, "scan_reports", "hash_errors"):
        conn.execute(text("ALTER TABLE scan_reports ADD COLUMN hash_errors INTEGER NOT NULL DEFAULT 0"))


def _migration_0006_trash_entries_paging_index(conn: Connection) -> None:
    if not _table_exists(conn, "trash_entries"):
        return
    conn.execute(text("DROP INDEX IF EXISTS ix_trash_entries_deleted_at_ms"))
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_trash_entries_deleted_id ON trash_entries (deleted_at_ms, id)")
    )
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_trash_entries_original_path ON trash_entries (original_path)")
    )


MIGRATIONS: tuple[MigrationStep, ...] = (
    MigrationStep(version=1, name="baseline", apply=_migration_0001_baseline),
    MigrationStep(
        version=2,
        name="cached_files_group_key_index",
        apply=_migration_0002_cached_files_group_key_index,
    ),
    MigrationStep(
        version=3,
        name="dupe_groups_snapshot_version",
        apply=_migration_0003_dupe_groups_snapshot_version,
    ),
    MigrationStep(
        version=4,
        name="index_state_table",
        apply=_migration_0004_index_state_table,
    ),
    MigrationStep(
        version=5,
        name="scan_report_hash_errors",
        apply=_migration_0005_scan_report_hash_errors,
    ),
    MigrationStep(
        version=6,
        name="trash_entries_paging_index",
        apply=_migration_0006_trash_entries_paging_index,
    ),
)


def apply_migrations(engine: Engine) -> None:
    with engine.begin() as conn:
        _ensure_schema_migrations_table(conn)

        existing_versions = {
            int(row[0])
            for row in conn.execute(text("SELECT version FROM schema_migrations ORDER BY version ASC")).all()
        }

        for step in MIGRATIONS:
            if step.version in existing_versions:
                continue

            step.apply(conn)
            conn.execute(
                text("INSERT INTO schema_migrations(version, name) VALUES (:version, :name)"),
                {"version": step.version, "name": step.name},
            )
