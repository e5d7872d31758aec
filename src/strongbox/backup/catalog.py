"""Backup catalog: durable index of backup records.

The whole catalog is one JSON array on disk.  Every operation loads it in
full, and mutations rewrite it whole through a temp file + os.replace()
so concurrent readers only ever see a complete catalog.

Load-modify-persist is not atomic on its own, so every mutation runs under
``catalog.lock``: one re-entrant lock per catalog file, shared by every
BackupCatalog on that path and backed by an OS file lock so separate
processes (CLI next to a server) serialize too.  Multi-step writers (the
backup manager, retention) hold it across their whole sequence.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import StorageIOError
from .file_lock import lock_for
from .fsutil import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_NAME = "Backup"


@dataclass(frozen=True)
class BackupRecord:
    """Catalog entry for one stored backup."""
    id: str                            # UUID, also names the blob file
    name: str                          # Caller label (not unique)
    size_bytes: int                    # Plaintext size
    created_at: datetime               # UTC
    expires_at: Optional[datetime]     # UTC; None = never expires
    checksum: str                      # SHA-256 of plaintext

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupRecord":
        expires_at = data.get("expires_at")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or DEFAULT_BACKUP_NAME),
            size_bytes=int(data["size_bytes"]),
            created_at=_parse_utc(data["created_at"]),
            expires_at=_parse_utc(expires_at) if expires_at else None,
            checksum=str(data["checksum"]),
        )


def _parse_utc(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class BackupCatalog:
    """JSON-file persistence for backup records.

    Args:
        path: Catalog file.  Parent directories are created on demand.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = lock_for(self.path)

    # ── Read ─────────────────────────────────────────────────────────

    def load(self) -> Dict[str, BackupRecord]:
        """Return the full catalog keyed by id.  Missing file → empty."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageIOError(f"Cannot read catalog {self.path}: {e}") from e

        try:
            entries = json.loads(raw)
            records = [BackupRecord.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError) as e:
            raise StorageIOError(f"Catalog {self.path} is unreadable: {e}") from e
        return {r.id: r for r in records}

    def get(self, backup_id: str) -> Optional[BackupRecord]:
        """Return one record (expired or not) or None."""
        return self.load().get(backup_id)

    def list_active(self, now: Optional[datetime] = None) -> List[BackupRecord]:
        """Return unexpired records, newest first."""
        now = now or datetime.now(timezone.utc)
        active = [r for r in self.load().values() if not r.is_expired(now)]
        active.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return active

    # ── Write ────────────────────────────────────────────────────────

    def upsert(self, record: BackupRecord) -> None:
        """Insert or replace a record by id and persist the catalog."""
        with self.lock:
            records = self.load()
            records[record.id] = record
            self._persist(records)

    def remove(self, backup_id: str) -> bool:
        """Delete a record.  Returns True if it existed; absent is a no-op."""
        with self.lock:
            records = self.load()
            if records.pop(backup_id, None) is None:
                return False
            self._persist(records)
            return True

    def _persist(self, records: Dict[str, BackupRecord]) -> None:
        """Rewrite the whole catalog atomically.  Caller holds the lock."""
        payload = json.dumps(
            [r.to_dict() for r in sorted(records.values(), key=lambda r: r.id)],
            indent=2,
        )
        try:
            atomic_write_text(self.path, payload)
        except OSError as e:
            raise StorageIOError(f"Cannot write catalog {self.path}: {e}") from e
        logger.debug("Catalog persisted: %d records", len(records))
