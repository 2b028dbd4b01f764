from __future__ import annotations

from fastapi import APIRouter, Depends

from dupecache.api.schemas.maintenance import CacheMaintenanceRequest, CacheMaintenanceResponse
from dupecache.core.config import get_settings
from dupecache.db.session import get_session_factory
from dupecache.maintenance.service import CacheMaintenanceService, maintenance_report_to_dict

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def get_cache_maintenance_service() -> CacheMaintenanceService:
    return CacheMaintenanceService(settings=get_settings(), session_factory=get_session_factory())


@router.post("/cache", response_model=CacheMaintenanceResponse)
def run_cache_maintenance(
    request: CacheMaintenanceRequest,
    service: CacheMaintenanceService = Depends(get_cache_maintenance_service),
) -> CacheMaintenanceResponse:
    report = service.run(
        delete_missing=request.delete_missing,
        rehash_stale=request.rehash_stale,
        rehash_missing=request.rehash_missing,
    )
    return CacheMaintenanceResponse.model_validate(maintenance_report_to_dict(report))
