from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


DUPE_GROUPS_INDEX_NAME = "dupe_groups"


class CachedFile(Base):
    __tablename__ = "cached_files"

    normalized_path: Mapped[str] = mapped_column(String(4096), primary_key=True)
    path: Mapped[str] = mapped_column(String(4096), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mtime_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash_hex: Mapped[str | None] = mapped_column(String(128), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_cached_files_size", "size_bytes"),
        Index("ix_cached_files_group_key", "size_bytes", "hash_hex", "normalized_path"),
    )


class DuplicateGroup(Base):
    __tablename__ = "dupe_groups"

    size_bytes: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    hash_hex: Mapped[str] = mapped_column(String(128), primary_key=True)
    file_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    snapshot_version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_dupe_groups_version_count", "snapshot_version", "file_count"),
        Index("ix_dupe_groups_version_total", "snapshot_version", "total_bytes"),
        Index("ix_dupe_groups_version_size", "snapshot_version", "size_bytes"),
    )


class IndexState(Base):
    __tablename__ = "index_state"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class TrashEntry(Base):
    __tablename__ = "trash_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    original_path: Mapped[str] = mapped_column(String(4096), nullable=False)
    trashed_path: Mapped[str] = mapped_column(String(4096), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mtime_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash_hex: Mapped[str | None] = mapped_column(String(128), nullable=True)
    deleted_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    volume_root: Mapped[str] = mapped_column(String(4096), nullable=False)

    __table_args__ = (
        Index("ix_trash_entries_deleted_id", "deleted_at_ms", "id"),
        Index("ix_trash_entries_original_path", "original_path"),
    )


class ScanReport(Base):
    __tablename__ = "scan_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    started_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    finished_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    roots: Mapped[list[Any]] = mapped_column(JSON(none_as_null=True), nullable=False, default=list)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    collected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    detected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hash_candidates: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hashes_computed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hash_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    collecting_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    detecting_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    hashing_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (Index("ix_scan_reports_started", "started_at_ms", "id"),)


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
