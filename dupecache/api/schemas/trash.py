from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MoveToTrashRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1, max_length=4096)


class TrashEntryResponse(BaseModel):
    id: str
    original_path: str
    trashed_path: str
    size_bytes: int
    mtime_ms: int
    hash_hex: str | None
    deleted_at_ms: int
    volume_root: str


class TrashEntryListResponse(BaseModel):
    items: list[TrashEntryResponse]
    next_cursor: str | None
    total: int


class MoveToTrashResponse(BaseModel):
    success: bool
    entry: TrashEntryResponse | None
    message: str | None
    rolled_back: bool


class RestoreResponse(BaseModel):
    outcome: str
    message: str | None


class EmptyTrashResponse(BaseModel):
    deleted: int
