from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class CacheMaintenanceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    delete_missing: bool = True
    rehash_stale: bool = True
    rehash_missing: bool = True


class CacheMaintenanceResponse(BaseModel):
    total: int
    processed: int
    deleted: int
    rehashed: int
    missing_hashed: int
    errors: int
    cancelled: bool
