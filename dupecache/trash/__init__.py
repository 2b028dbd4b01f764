from dupecache.trash.service import (
    TrashEntryNotFoundError,
    TrashVault,
    TrashVaultError,
    trash_entry_snapshot_to_dict,
)
from dupecache.trash.types import MoveResult, RestoreOutcome, RestoreResult, TrashEntrySnapshot, TrashListResult
from dupecache.trash.volumes import ConfiguredVolumeResolver, VolumeResolver

__all__ = [
    "TrashEntryNotFoundError",
    "TrashVault",
    "TrashVaultError",
    "trash_entry_snapshot_to_dict",
    "MoveResult",
    "RestoreOutcome",
    "RestoreResult",
    "TrashEntrySnapshot",
    "TrashListResult",
    "ConfiguredVolumeResolver",
    "VolumeResolver",
]
