from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_HASH_ALGORITHMS = {"blake3", "sha256"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DUPECACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "dupecache"
    environment: str = "production"
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/state"))
    database_url: str | None = None

    hash_algorithm: str = "sha256"
    hash_read_chunk_bytes: PositiveInt = 1024 * 1024

    scan_write_batch_size: PositiveInt = 500
    scan_match_cached_sizes: bool = False
    skip_zero_size_in_db: bool = False
    hide_zero_size_in_results: bool = False
    scan_history_limit: PositiveInt = 64

    default_page_size: PositiveInt = 100
    max_page_size: PositiveInt = 1000

    trash_dir_name: str = ".dupecache"
    trash_volume_roots: list[Path] = Field(default_factory=list)

    @field_validator("state_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @field_validator("trash_volume_roots", mode="after")
    @classmethod
    def _normalize_volume_roots(cls, value: list[Path]) -> list[Path]:
        roots: list[Path] = []
        for root in value:
            if not root.is_absolute():
                raise ValueError("trash_volume_roots entries must be absolute")
            roots.append(root)
        return roots

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        self.state_root.mkdir(parents=True, exist_ok=True)

        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be greater than or equal to default_page_size")

        normalized_algorithm = self.hash_algorithm.lower().strip()
        if normalized_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"hash_algorithm must be one of {sorted(SUPPORTED_HASH_ALGORITHMS)}")
        self.hash_algorithm = normalized_algorithm

        trash_dir_name = self.trash_dir_name.strip()
        if not trash_dir_name or "/" in trash_dir_name or "\\" in trash_dir_name or trash_dir_name in {".", ".."}:
            raise ValueError("trash_dir_name must be a single path segment")
        self.trash_dir_name = trash_dir_name

        return self

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "dupecache.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
