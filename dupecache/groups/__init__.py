from dupecache.groups.pager import SnapshotPager
from dupecache.groups.service import DuplicateGroupIndex, GroupIndexError
from dupecache.groups.types import (
    DuplicateGroupSnapshot,
    GroupMemberPage,
    GroupPage,
    GroupSortKey,
    PagerSnapshot,
    SortDirection,
)

__all__ = [
    "DuplicateGroupIndex",
    "GroupIndexError",
    "SnapshotPager",
    "DuplicateGroupSnapshot",
    "GroupMemberPage",
    "GroupPage",
    "GroupSortKey",
    "PagerSnapshot",
    "SortDirection",
]
