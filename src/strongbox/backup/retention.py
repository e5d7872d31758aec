"""Retention and space management for stored backups.

Three independent, idempotent policies:

- TTL eviction: delete every record whose expiry has passed.
- Count cap: keep only the newest ``max_backups`` active backups.
- Budget eviction: when active backups exceed a size budget, delete
  oldest-first until occupancy drops to a target fraction of the budget.

The orphan sweep removes blobs with no catalog entry, but only once they
are older than a grace period, so a blob whose catalog entry is still
being written is never taken.

Deletion order is always blob first, then catalog entry, so a failure in
between leaves an orphan blob rather than a catalog entry with no data.
A failure on one record is logged and the sweep moves on.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .blob_store import BlobStore
from .catalog import BackupCatalog, BackupRecord
from .exceptions import BackupError, BackupNotFound

logger = logging.getLogger(__name__)

DEFAULT_TARGET_FRACTION = 0.8
DEFAULT_ORPHAN_GRACE_SECONDS = 60.0

# Called after a record is fully deleted: (record, reason)
DeleteCallback = Callable[[BackupRecord, str], None]


@dataclass
class SpaceReport:
    """Outcome of one budget-eviction pass."""
    max_bytes: int
    total_size_before: int
    total_size_after: int
    backup_count: int
    deleted_count: int
    deleted_ids: List[str] = field(default_factory=list)

    @property
    def remaining_space(self) -> int:
        return self.max_bytes - self.total_size_after

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_bytes": self.max_bytes,
            "total_size_before": self.total_size_before,
            "total_size_after": self.total_size_after,
            "backup_count": self.backup_count,
            "deleted_count": self.deleted_count,
            "remaining_space": self.remaining_space,
        }


class RetentionManager:
    """Applies TTL and budget eviction to a catalog + blob store pair.

    Args:
        catalog: Backup catalog (its lock serializes every sweep).
        blob_store: Where the encrypted payloads live.
        target_fraction: Budget eviction stops once total size is at or
                         below ``max_bytes * target_fraction``.
        on_delete: Optional hook called for every record deleted.
        orphan_grace_seconds: Blobs younger than this (by mtime) are never
                              treated as orphans.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        blob_store: BlobStore,
        target_fraction: float = DEFAULT_TARGET_FRACTION,
        on_delete: Optional[DeleteCallback] = None,
        orphan_grace_seconds: float = DEFAULT_ORPHAN_GRACE_SECONDS,
    ):
        if not 0 < target_fraction <= 1:
            raise ValueError("target_fraction must be in (0, 1]")
        self._catalog = catalog
        self._blobs = blob_store
        self._target_fraction = target_fraction
        self._on_delete = on_delete
        self._orphan_grace = max(0.0, orphan_grace_seconds)

    # ── TTL ──────────────────────────────────────────────────────────

    def expire_old(self, now: Optional[datetime] = None) -> int:
        """Delete every record with ``expires_at <= now``.  Returns count deleted."""
        now = now or datetime.now(timezone.utc)
        deleted = 0
        with self._catalog.lock:
            expired = [r for r in self._catalog.load().values() if r.is_expired(now)]
            for record in sorted(expired, key=lambda r: (r.created_at, r.id)):
                if self._delete_record(record, "expired"):
                    deleted += 1

        if deleted:
            logger.info("Expired %d backup(s)", deleted)
        return deleted

    # ── Count ────────────────────────────────────────────────────────

    def enforce_count(self, max_backups: int, now: Optional[datetime] = None) -> int:
        """Keep the newest ``max_backups`` active backups, delete the rest.

        ``max_backups <= 0`` means unlimited.  Older backups go first; ties
        on ``created_at`` are broken by id.  Returns count deleted.
        """
        if max_backups <= 0:
            return 0
        now = now or datetime.now(timezone.utc)
        deleted = 0
        with self._catalog.lock:
            active = self._catalog.list_active(now)  # newest first
            surplus = active[max_backups:]
            for record in sorted(surplus, key=lambda r: (r.created_at, r.id)):
                if self._delete_record(record, "evicted"):
                    deleted += 1

        if deleted:
            logger.info(
                "Count cap: %d backup(s) removed (limit %d)", deleted, max_backups
            )
        return deleted

    # ── Budget ───────────────────────────────────────────────────────

    def enforce_budget(
        self, max_bytes: int, now: Optional[datetime] = None
    ) -> SpaceReport:
        """Evict oldest active backups while total size exceeds the budget.

        Eviction only starts if the total is above ``max_bytes``; once
        started it continues down to the target fraction so the next
        small backup does not immediately trip the threshold again.
        Ties on ``created_at`` are broken by id.
        """
        now = now or datetime.now(timezone.utc)
        with self._catalog.lock:
            active = self._catalog.list_active(now)
            total = sum(r.size_bytes for r in active)
            report = SpaceReport(
                max_bytes=max_bytes,
                total_size_before=total,
                total_size_after=total,
                backup_count=len(active),
                deleted_count=0,
            )
            if total <= max_bytes:
                return report

            target = max_bytes * self._target_fraction
            for record in sorted(active, key=lambda r: (r.created_at, r.id)):
                if total <= target:
                    break
                if self._delete_record(record, "evicted"):
                    total -= record.size_bytes
                    report.deleted_count += 1
                    report.deleted_ids.append(record.id)

            report.total_size_after = total

        logger.info(
            "Budget eviction: %d -> %d bytes (budget %d), %d backup(s) evicted",
            report.total_size_before, report.total_size_after,
            max_bytes, report.deleted_count,
        )
        return report

    # ── Orphans ──────────────────────────────────────────────────────

    def sweep_orphans(self) -> int:
        """Delete blobs that have no catalog entry.  Returns count removed.

        Blobs are listed before the catalog is read, and blobs modified
        within the grace period are skipped.
        """
        removed = 0
        with self._catalog.lock:
            on_disk = self._blobs.list_ids()
            known = set(self._catalog.load())
            cutoff = time.time() - self._orphan_grace
            for backup_id in on_disk:
                if backup_id in known:
                    continue
                try:
                    if self._blobs.modified_at(backup_id) > cutoff:
                        logger.debug("Skipping recent unreferenced blob %s", backup_id)
                        continue
                    if self._blobs.delete(backup_id):
                        removed += 1
                        logger.warning("Removed orphan backup blob %s", backup_id)
                except BackupNotFound:
                    continue
                except BackupError as e:
                    logger.warning("Could not remove orphan blob %s: %s", backup_id, e)
        return removed

    # ── Helpers ──────────────────────────────────────────────────────

    def _delete_record(self, record: BackupRecord, reason: str) -> bool:
        """Blob, then catalog entry.  Returns True only if both steps succeeded."""
        try:
            if not self._blobs.delete(record.id):
                logger.warning(
                    "Backup blob already missing for %s (%s)", record.id, reason
                )
        except BackupError as e:
            logger.error("Failed to delete blob for %s (%s): %s", record.id, reason, e)
            return False

        try:
            self._catalog.remove(record.id)
        except BackupError as e:
            logger.error(
                "Failed to remove catalog entry %s (%s): %s", record.id, reason, e
            )
            return False

        if self._on_delete is not None:
            try:
                self._on_delete(record, reason)
            except Exception:
                logger.warning("on_delete hook failed for %s", record.id, exc_info=True)
        return True
