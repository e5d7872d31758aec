"""Backup engine configuration.

Values come from environment variables (optionally loaded from a ``.env``
file via python-dotenv); anything unset falls back to the defaults below.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

MIB = 1024 * 1024

ENV_PREFIX = "STRONGBOX_"


@dataclass
class BackupConfig:
    """Recognized options for the backup engine.

    ``storage_budget_bytes`` is the ceiling enforced by budget eviction;
    it defaults to the per-backup cap.  ``retention_period_days = 0``
    disables expiry for new backups, and ``max_backups = 0`` means no count
    cap.
    """
    storage_directory: Path = Path("data/backups")
    max_backup_size_bytes: int = 100 * MIB
    storage_budget_bytes: int = 100 * MIB
    retention_period_days: int = 30
    max_backups: int = 0
    budget_target_fraction: float = 0.8
    kdf_iterations: int = 100_000
    operation_timeout_seconds: float = 60.0
    retention_interval_seconds: float = 3600.0

    def __post_init__(self):
        self.storage_directory = Path(self.storage_directory)

    @property
    def catalog_path(self) -> Path:
        return self.storage_directory / "catalog.json"

    def validate(self) -> "BackupConfig":
        """Raise ValueError for settings the engine cannot run with."""
        if self.max_backup_size_bytes <= 0:
            raise ValueError("max_backup_size_bytes must be positive")
        if self.storage_budget_bytes <= 0:
            raise ValueError("storage_budget_bytes must be positive")
        if self.retention_period_days < 0:
            raise ValueError("retention_period_days cannot be negative")
        if self.max_backups < 0:
            raise ValueError("max_backups cannot be negative")
        if not 0 < self.budget_target_fraction <= 1:
            raise ValueError("budget_target_fraction must be in (0, 1]")
        if self.kdf_iterations <= 0:
            raise ValueError("kdf_iterations must be positive")
        if self.operation_timeout_seconds <= 0:
            raise ValueError("operation_timeout_seconds must be positive")
        if self.retention_interval_seconds <= 0:
            raise ValueError("retention_interval_seconds must be positive")
        return self

    @classmethod
    def from_env(
        cls, dotenv_path: Optional[Union[str, Path]] = None
    ) -> "BackupConfig":
        """Build a config from STRONGBOX_* environment variables.

        A ``.env`` file is loaded first; real environment variables win.
        """
        load_dotenv(dotenv_path=dotenv_path, override=False)
        defaults = cls()

        def _get(name, cast, default):
            raw = os.getenv(ENV_PREFIX + name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from None

        return cls(
            storage_directory=_get("STORAGE_DIR", Path, defaults.storage_directory),
            max_backup_size_bytes=_get(
                "MAX_BACKUP_SIZE_BYTES", int, defaults.max_backup_size_bytes
            ),
            storage_budget_bytes=_get(
                "STORAGE_BUDGET_BYTES", int, defaults.storage_budget_bytes
            ),
            retention_period_days=_get(
                "RETENTION_PERIOD_DAYS", int, defaults.retention_period_days
            ),
            max_backups=_get("MAX_BACKUPS", int, defaults.max_backups),
            budget_target_fraction=_get(
                "BUDGET_TARGET_FRACTION", float, defaults.budget_target_fraction
            ),
            kdf_iterations=_get("KDF_ITERATIONS", int, defaults.kdf_iterations),
            operation_timeout_seconds=_get(
                "OPERATION_TIMEOUT_SECONDS", float, defaults.operation_timeout_seconds
            ),
            retention_interval_seconds=_get(
                "RETENTION_INTERVAL_SECONDS", float, defaults.retention_interval_seconds
            ),
        ).validate()
