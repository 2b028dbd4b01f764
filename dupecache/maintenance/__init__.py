from dupecache.maintenance.service import CacheMaintenanceService, maintenance_report_to_dict
from dupecache.maintenance.types import MaintenanceProgress, MaintenanceReport

__all__ = [
    "CacheMaintenanceService",
    "MaintenanceProgress",
    "MaintenanceReport",
    "maintenance_report_to_dict",
]
