from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RebuildRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int | None = Field(default=None, ge=1)


class SnapshotResponse(BaseModel):
    version: int | None
    total: int


class DuplicateGroupResponse(BaseModel):
    group_key: str
    size_bytes: int
    hash_hex: str
    file_count: int
    total_bytes: int
    snapshot_version: int


class DuplicateGroupPageResponse(BaseModel):
    items: list[DuplicateGroupResponse]
    version: int | None
    offset: int
    next_offset: int | None
    stale: bool


class DuplicateFileResponse(BaseModel):
    path: str
    normalized_path: str
    size_bytes: int
    mtime_ms: int
    hash_hex: str | None


class DuplicateFileListResponse(BaseModel):
    items: list[DuplicateFileResponse]
    next_cursor: str | None
