from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from dupecache.api.schemas.scans import ScanReportListResponse, ScanReportResponse, ScanResponse, StartScanRequest
from dupecache.core.config import get_settings
from dupecache.core.paths import validate_absolute_path
from dupecache.db.session import get_session_factory
from dupecache.scan.reports import ScanReportService, scan_report_snapshot_to_dict
from dupecache.worker.pipeline import ScanNotFoundError, ScanWorker, scan_snapshot_to_dict

router = APIRouter(prefix="/scans", tags=["scans"])


def get_scan_worker(request: Request) -> ScanWorker:
    return request.app.state.scan_worker


def get_scan_report_service() -> ScanReportService:
    return ScanReportService(settings=get_settings(), session_factory=get_session_factory())


@router.post("", response_model=ScanResponse, status_code=status.HTTP_202_ACCEPTED)
def start_scan(request: StartScanRequest, worker: ScanWorker = Depends(get_scan_worker)) -> ScanResponse:
    roots: list[Path] = []
    try:
        for raw_root in request.roots:
            root = validate_absolute_path(raw_root)
            if not root.is_dir():
                raise ValueError(f"Scan root is not a directory: {root.as_posix()}")
            roots.append(root)
        handle = worker.submit(roots, ignore_names=request.ignore_names)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return ScanResponse.model_validate(scan_snapshot_to_dict(handle.to_snapshot()))


@router.get("/reports", response_model=ScanReportListResponse)
def list_scan_reports(
    limit: int | None = Query(default=None, ge=1),
    service: ScanReportService = Depends(get_scan_report_service),
) -> ScanReportListResponse:
    reports = service.list_recent(limit=limit)
    return ScanReportListResponse(
        items=[ScanReportResponse.model_validate(scan_report_snapshot_to_dict(item)) for item in reports]
    )


@router.get("/{scan_id}", response_model=ScanResponse)
def get_scan(scan_id: str, worker: ScanWorker = Depends(get_scan_worker)) -> ScanResponse:
    try:
        handle = worker.get(scan_id)
    except ScanNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ScanResponse.model_validate(scan_snapshot_to_dict(handle.to_snapshot()))


@router.post("/{scan_id}/cancel", response_model=ScanResponse)
def cancel_scan(scan_id: str, worker: ScanWorker = Depends(get_scan_worker)) -> ScanResponse:
    try:
        handle = worker.cancel(scan_id)
    except ScanNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ScanResponse.model_validate(scan_snapshot_to_dict(handle.to_snapshot()))
