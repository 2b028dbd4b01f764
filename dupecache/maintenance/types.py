from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


@dataclass(slots=True)
class MaintenanceReport:
    total: int = 0
    processed: int = 0
    deleted: int = 0
    rehashed: int = 0
    missing_hashed: int = 0
    errors: int = 0
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class MaintenanceProgress:
    processed: int
    total: int
    current_path: str | None


MaintenanceProgressCallback = Callable[[MaintenanceProgress], None]
