from dupecache.cache.service import FreshnessCache
from dupecache.cache.types import CacheLookupResult, CacheStatus, FileRecord, GroupKey

__all__ = [
    "FreshnessCache",
    "CacheLookupResult",
    "CacheStatus",
    "FileRecord",
    "GroupKey",
]
