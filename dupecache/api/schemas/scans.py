from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StartScanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    roots: list[str] = Field(min_length=1, max_length=64)
    ignore_names: list[str] = Field(default_factory=list, max_length=256)


class ScanResponse(BaseModel):
    id: str
    roots: list[str]
    status: str
    phase: str | None
    processed: int
    total: int | None
    file_count: int | None
    group_count: int | None
    snapshot_version: int | None
    report_id: str | None
    error_message: str | None


class ScanReportResponse(BaseModel):
    id: str
    started_at_ms: int
    finished_at_ms: int
    roots: list[str]
    cancelled: bool
    collected_count: int
    detected_count: int
    hash_candidates: int
    hashes_computed: int
    hash_errors: int
    collecting_ms: int
    detecting_ms: int
    hashing_ms: int


class ScanReportListResponse(BaseModel):
    items: list[ScanReportResponse]
