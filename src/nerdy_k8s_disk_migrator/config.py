from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from .naming import DEFAULT_MAX_NAME_LENGTH, DEFAULT_MIGRATION_SUFFIX

DEFAULT_HISTORY_DB_PATH = Path(os.getenv("NKDM_HISTORY_DB_PATH", "./data/migrations.db"))


def _optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


@dataclass(frozen=True)
class MigratorConfig:
    project: str
    storage_class: str
    namespace: str = "default"
    disk_type: str | None = None
    migration_suffix: str = os.getenv("NKDM_MIGRATION_SUFFIX", DEFAULT_MIGRATION_SUFFIX)
    max_name_length: int = DEFAULT_MAX_NAME_LENGTH
    fs_type: str = os.getenv("NKDM_FS_TYPE", "ext4")
    poll_interval_seconds: float = float(os.getenv("NKDM_POLL_INTERVAL_SECONDS", "5"))
    detach_timeout_seconds: float | None = _optional_float(os.getenv("NKDM_DETACH_TIMEOUT_SECONDS"))
    deletion_timeout_seconds: float | None = float(os.getenv("NKDM_DELETION_TIMEOUT_SECONDS", "300"))
    request_timeout_seconds: int = int(os.getenv("NKDM_REQUEST_TIMEOUT_SECONDS", "30"))
    manifest_dir: Path = Path(os.getenv("NKDM_MANIFEST_DIR", "."))
    history_db_path: Path | None = DEFAULT_HISTORY_DB_PATH

    def __post_init__(self) -> None:
        if not self.project.strip():
            raise ValueError("project is required")
        if not self.storage_class.strip():
            raise ValueError("storage_class is required")
        if not self.namespace.strip():
            raise ValueError("namespace must not be empty")
        if not self.migration_suffix.strip():
            raise ValueError("migration_suffix must not be empty")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.detach_timeout_seconds is not None and self.detach_timeout_seconds <= 0:
            raise ValueError("detach_timeout_seconds must be positive when set")
        if self.deletion_timeout_seconds is not None and self.deletion_timeout_seconds <= 0:
            raise ValueError("deletion_timeout_seconds must be positive when set")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")

    @property
    def target_disk_type(self) -> str:
        return self.disk_type or self.storage_class


def ensure_directories(config: MigratorConfig) -> None:
    config.manifest_dir.mkdir(parents=True, exist_ok=True)
    if config.history_db_path is not None:
        config.history_db_path.parent.mkdir(parents=True, exist_ok=True)
