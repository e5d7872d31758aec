"""Aggregate reporting over active backup records."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .catalog import BackupRecord


@dataclass(frozen=True)
class BackupStats:
    total_backups: int
    total_size: int
    average_size: float
    oldest_backup: Optional[datetime]
    newest_backup: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_backups": self.total_backups,
            "total_size": self.total_size,
            "average_size": self.average_size,
            "oldest_backup": self.oldest_backup.isoformat() if self.oldest_backup else None,
            "newest_backup": self.newest_backup.isoformat() if self.newest_backup else None,
        }


def compute_statistics(records: Iterable[BackupRecord]) -> BackupStats:
    """Count, total/average logical size and age range.  Empty → zeros/None."""
    records = list(records)
    if not records:
        return BackupStats(
            total_backups=0,
            total_size=0,
            average_size=0,
            oldest_backup=None,
            newest_backup=None,
        )

    total_size = sum(r.size_bytes for r in records)
    timestamps = [r.created_at for r in records]
    return BackupStats(
        total_backups=len(records),
        total_size=total_size,
        average_size=total_size / len(records),
        oldest_backup=min(timestamps),
        newest_backup=max(timestamps),
    )
