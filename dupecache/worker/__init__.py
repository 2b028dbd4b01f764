from dupecache.worker.pipeline import (
    ScanHandle,
    ScanNotFoundError,
    ScanSnapshot,
    ScanStatus,
    ScanWorker,
    ignore_by_names,
    run_scan_once,
    scan_snapshot_to_dict,
)

__all__ = [
    "ScanHandle",
    "ScanNotFoundError",
    "ScanSnapshot",
    "ScanStatus",
    "ScanWorker",
    "ignore_by_names",
    "run_scan_once",
    "scan_snapshot_to_dict",
]
