from __future__ import annotations

import time
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from dupecache.core.config import Settings
from dupecache.db.models import ScanReport
from dupecache.scan.types import ScanReportSnapshot, ScanResult


class ScanReportNotFoundError(RuntimeError):
    pass


class ScanReportService:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _normalize_limit(self, limit: int | None) -> int:
        if limit is None:
            return int(self._settings.default_page_size)
        return max(1, min(int(limit), int(self._settings.max_page_size)))

    def _to_snapshot(self, row: ScanReport) -> ScanReportSnapshot:
        return ScanReportSnapshot(
            id=row.id,
            started_at_ms=int(row.started_at_ms),
            finished_at_ms=int(row.finished_at_ms),
            roots=[str(item) for item in (row.roots or [])],
            cancelled=bool(row.cancelled),
            collected_count=int(row.collected_count),
            detected_count=int(row.detected_count),
            hash_candidates=int(row.hash_candidates),
            hashes_computed=int(row.hashes_computed),
            hash_errors=int(row.hash_errors),
            collecting_ms=int(row.collecting_ms),
            detecting_ms=int(row.detecting_ms),
            hashing_ms=int(row.hashing_ms),
        )

    def record(
        self,
        roots: Sequence[str | Path],
        result: ScanResult,
        *,
        finished_at_ms: int | None = None,
        report_id: str | None = None,
    ) -> ScanReportSnapshot:
        row = ScanReport(
            id=report_id or str(uuid.uuid4()),
            started_at_ms=result.scanned_at_ms,
            finished_at_ms=finished_at_ms if finished_at_ms is not None else int(time.time() * 1000),
            roots=[str(root) for root in roots],
            cancelled=result.cancelled,
            collected_count=result.totals.collected,
            detected_count=result.totals.detected,
            hash_candidates=result.totals.hash_candidates,
            hashes_computed=result.totals.hashes_computed,
            hash_errors=result.totals.hash_errors,
            collecting_ms=result.durations.collecting_ms,
            detecting_ms=result.durations.detecting_ms,
            hashing_ms=result.durations.hashing_ms,
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_snapshot(row)

    def get(self, report_id: str) -> ScanReportSnapshot:
        with self._session_factory() as session:
            row = session.get(ScanReport, report_id)
            if row is None:
                raise ScanReportNotFoundError(f"Scan report not found: {report_id}")
            return self._to_snapshot(row)

    def list_recent(self, *, limit: int | None = None) -> list[ScanReportSnapshot]:
        bounded_limit = self._normalize_limit(limit)
        with self._session_factory() as session:
            rows = session.scalars(
                select(ScanReport)
                .order_by(ScanReport.started_at_ms.desc(), ScanReport.id.desc())
                .limit(bounded_limit)
            ).all()
            return [self._to_snapshot(row) for row in rows]


def scan_report_snapshot_to_dict(snapshot: ScanReportSnapshot) -> dict[str, Any]:
    return asdict(snapshot)
