from dupecache.scan.reports import ScanReportNotFoundError, ScanReportService, scan_report_snapshot_to_dict
from dupecache.scan.service import IncrementalScanEngine, filter_for_display, group_by_hash, merge_results
from dupecache.scan.types import (
    DuplicateFileGroup,
    HashState,
    HashStateKind,
    ScanDurations,
    ScanPhase,
    ScanProgress,
    ScanReportSnapshot,
    ScanResult,
    ScanTotals,
)

__all__ = [
    "IncrementalScanEngine",
    "ScanReportNotFoundError",
    "ScanReportService",
    "filter_for_display",
    "group_by_hash",
    "merge_results",
    "scan_report_snapshot_to_dict",
    "DuplicateFileGroup",
    "HashState",
    "HashStateKind",
    "ScanDurations",
    "ScanPhase",
    "ScanProgress",
    "ScanReportSnapshot",
    "ScanResult",
    "ScanTotals",
]
