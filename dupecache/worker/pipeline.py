from __future__ import annotations

import fnmatch
import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from sqlalchemy.orm import Session, sessionmaker

from dupecache.core.config import Settings, get_settings
from dupecache.core.walker import IgnorePredicate
from dupecache.db.session import get_session_factory
from dupecache.groups.service import DuplicateGroupIndex
from dupecache.scan.reports import ScanReportService
from dupecache.scan.service import IncrementalScanEngine
from dupecache.scan.types import ScanProgress, ScanResult

logger = logging.getLogger(__name__)


class ScanNotFoundError(RuntimeError):
    pass


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_FINISHED_STATUSES = frozenset({ScanStatus.COMPLETED, ScanStatus.CANCELLED, ScanStatus.FAILED})


@dataclass(slots=True)
class ScanSnapshot:
    id: str
    roots: list[str]
    status: ScanStatus
    phase: str | None
    processed: int
    total: int | None
    file_count: int | None
    group_count: int | None
    snapshot_version: int | None
    report_id: str | None
    error_message: str | None


def ignore_by_names(patterns: Sequence[str]) -> IgnorePredicate | None:
    cleaned = [pattern for pattern in (item.strip() for item in patterns) if pattern]
    if not cleaned:
        return None

    def _ignore(path: Path) -> bool:
        return any(fnmatch.fnmatch(path.name, pattern) for pattern in cleaned)

    return _ignore


class ScanHandle:
    def __init__(self, scan_id: str, roots: list[str]):
        self.id = scan_id
        self.roots = roots
        self.status = ScanStatus.PENDING
        self.progress: ScanProgress | None = None
        self.result: ScanResult | None = None
        self.snapshot_version: int | None = None
        self.report_id: str | None = None
        self.error_message: str | None = None
        self.future: Future[None] | None = None
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    def should_continue(self) -> bool:
        return not self._cancel_event.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def to_snapshot(self) -> ScanSnapshot:
        progress = self.progress
        return ScanSnapshot(
            id=self.id,
            roots=list(self.roots),
            status=self.status,
            phase=progress.phase.value if progress is not None else None,
            processed=progress.processed if progress is not None else 0,
            total=progress.total if progress is not None else None,
            file_count=len(self.result.files) if self.result is not None else None,
            group_count=len(self.result.duplicate_groups) if self.result is not None else None,
            snapshot_version=self.snapshot_version,
            report_id=self.report_id,
            error_message=self.error_message,
        )


class ScanWorker:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        engine: IncrementalScanEngine | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._engine = engine or IncrementalScanEngine(settings, session_factory)
        self._index = DuplicateGroupIndex(settings, session_factory)
        self._reports = ScanReportService(settings, session_factory)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dupecache-scan")
        self._handles: dict[str, ScanHandle] = {}
        self._lock = threading.Lock()

    def submit(self, roots: Sequence[str | Path], *, ignore_names: Sequence[str] = ()) -> ScanHandle:
        normalized_roots = [str(root) for root in roots]
        if not normalized_roots:
            raise ValueError("At least one scan root is required")

        handle = ScanHandle(str(uuid.uuid4()), normalized_roots)
        with self._lock:
            self._handles[handle.id] = handle
            self._evict_finished_locked()
        handle.future = self._executor.submit(self._run, handle, ignore_by_names(ignore_names))
        logger.info("Queued scan %s for roots=%s", handle.id, normalized_roots)
        return handle

    def get(self, scan_id: str) -> ScanHandle:
        with self._lock:
            handle = self._handles.get(scan_id)
        if handle is None:
            raise ScanNotFoundError(f"Scan not found: {scan_id}")
        return handle

    def cancel(self, scan_id: str) -> ScanHandle:
        handle = self.get(scan_id)
        handle.cancel()
        return handle

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            if handle.status in {ScanStatus.PENDING, ScanStatus.RUNNING}:
                handle.cancel()
        self._executor.shutdown(wait=wait)

    def _evict_finished_locked(self) -> None:
        # oldest finished handles go first; pending and running ones are always kept
        limit = int(self._settings.scan_history_limit)
        for scan_id in list(self._handles):
            if len(self._handles) <= limit:
                break
            if self._handles[scan_id].status in _FINISHED_STATUSES:
                del self._handles[scan_id]

    def _run(self, handle: ScanHandle, ignore: IgnorePredicate | None) -> None:
        handle.status = ScanStatus.RUNNING

        def _on_progress(progress: ScanProgress) -> None:
            handle.progress = progress

        try:
            result = self._engine.scan(
                handle.roots,
                ignore=ignore,
                should_continue=handle.should_continue,
                on_progress=_on_progress,
            )
            handle.result = result
            if not result.cancelled:
                handle.snapshot_version = self._index.rebuild_all()
            report = self._reports.record(handle.roots, result, finished_at_ms=int(time.time() * 1000))
            handle.report_id = report.id
            handle.status = ScanStatus.CANCELLED if result.cancelled else ScanStatus.COMPLETED
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scan %s failed", handle.id)
            handle.error_message = str(exc)
            handle.status = ScanStatus.FAILED


def run_scan_once(
    roots: Sequence[str | Path],
    *,
    ignore_names: Sequence[str] = (),
) -> tuple[ScanResult, int | None]:
    settings = get_settings()
    session_factory = get_session_factory()
    engine = IncrementalScanEngine(settings, session_factory)
    result = engine.scan(roots, ignore=ignore_by_names(ignore_names))
    version = None
    if not result.cancelled:
        version = DuplicateGroupIndex(settings, session_factory).rebuild_all()
    ScanReportService(settings, session_factory).record(roots, result)
    return result, version


def scan_snapshot_to_dict(snapshot: ScanSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "roots": snapshot.roots,
        "status": snapshot.status.value,
        "phase": snapshot.phase,
        "processed": snapshot.processed,
        "total": snapshot.total,
        "file_count": snapshot.file_count,
        "group_count": snapshot.group_count,
        "snapshot_version": snapshot.snapshot_version,
        "report_id": snapshot.report_id,
        "error_message": snapshot.error_message,
    }
