"""Backup manager: create, list, restore, verify and expire encrypted backups.

Each backup is an opaque plaintext payload supplied by the caller:

  - the plaintext is checksummed (SHA-256) before encryption
  - encrypted with AES-256-GCM under a passphrase-derived key
  - written to the blob store as ``<id>.enc.json``
  - recorded in the catalog (id, name, size, timestamps, checksum)

Write order is blob, then catalog entry.  A crash between the two leaves an
orphan blob that RetentionManager.sweep_orphans() removes later; it never
leaves a catalog entry pointing at missing data.

Restore is a linear pipeline: lookup → load → decrypt → verify checksum.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

from ..config import BackupConfig
from ..notifications import (
    Notification,
    NotificationBroker,
    NotificationPriority,
    NotificationType,
    SYSTEM_USER_ID,
)
from .backup_crypto import BackupCrypto, EncryptedPayload
from .blob_store import BlobStore
from .catalog import DEFAULT_BACKUP_NAME, BackupCatalog, BackupRecord
from .exceptions import (
    AuthenticationFailure,
    BackupError,
    BackupNotFound,
    CorruptCatalog,
    IntegrityViolation,
    StorageIOError,
    UnsupportedFormatVersion,
)
from .fsutil import atomic_write_text
from .integrity import checksum, verify_checksum
from .retention import RetentionManager, SpaceReport
from .stats import BackupStats, compute_statistics

logger = logging.getLogger(__name__)

# Bundle version for export/import files
_BUNDLE_VERSION = 1


@dataclass
class RetentionResult:
    """Outcome of one run_retention() pass."""
    expired: int
    evicted: int
    capped: int
    orphans_removed: int
    space: SpaceReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired": self.expired,
            "evicted": self.evicted,
            "capped": self.capped,
            "orphans_removed": self.orphans_removed,
            "space": self.space.to_dict(),
        }


class BackupManager:
    """Orchestrates backup creation, listing, restoration and retention.

    Args:
        config: Engine settings.  Defaults to BackupConfig().
        catalog: Backup catalog.  Created under config.storage_directory if None.
        blob_store: Encrypted blob store.  Created likewise if None.
        crypto: Cipher engine.  Built from config.kdf_iterations if None.
        broker: Optional notification broker for lifecycle notifications.
        notify_user_id: User id that lifecycle notifications are addressed to.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        config: Optional[BackupConfig] = None,
        catalog: Optional[BackupCatalog] = None,
        blob_store: Optional[BlobStore] = None,
        crypto: Optional[BackupCrypto] = None,
        broker: Optional[NotificationBroker] = None,
        notify_user_id: int = SYSTEM_USER_ID,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = (config or BackupConfig()).validate()
        self._catalog = catalog or BackupCatalog(self.config.catalog_path)
        self._blobs = blob_store or BlobStore(
            self.config.storage_directory,
            lambda: self.config.max_backup_size_bytes,
        )
        self._crypto = crypto or BackupCrypto(self.config.kdf_iterations)
        self._broker = broker
        self._notify_user_id = notify_user_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._retention = RetentionManager(
            self._catalog,
            self._blobs,
            target_fraction=self.config.budget_target_fraction,
            on_delete=self._on_retention_delete,
            orphan_grace_seconds=self.config.operation_timeout_seconds,
        )

    @property
    def catalog(self) -> BackupCatalog:
        return self._catalog

    @property
    def blob_store(self) -> BlobStore:
        return self._blobs

    @property
    def retention(self) -> RetentionManager:
        return self._retention

    # ── Create ───────────────────────────────────────────────────────

    def create_backup(
        self,
        plaintext: Union[bytes, str],
        passphrase: str,
        name: Optional[str] = None,
    ) -> BackupRecord:
        """Encrypt and store a payload.

        Args:
            plaintext: Serialized application state (str is UTF-8 encoded).
            passphrase: Encryption passphrase.
            name: Optional label; defaults to "Backup".

        Returns:
            The catalog record of the new backup.

        Raises:
            PayloadTooLarge: Before any encryption work is attempted.
            StorageIOError: Blob or catalog write failed.
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        if not passphrase:
            raise BackupError("Passphrase must not be empty.")
        name = name or DEFAULT_BACKUP_NAME

        try:
            record = self._create_backup(bytes(plaintext), passphrase, name)
        except BackupError as e:
            self._notify(
                NotificationType.BACKUP_FAILED,
                "Backup failed",
                f"Backup '{name}' failed: {e}",
                NotificationPriority.HIGH,
                {"name": name, "error": type(e).__name__},
            )
            raise

        self._audit_log("backup.created", f"Backup created: {record.id}", {
            "backup_id": record.id,
            "name": record.name,
            "size_bytes": record.size_bytes,
        })
        self._notify(
            NotificationType.BACKUP_CREATED,
            "Backup created",
            f"Backup '{record.name}' created ({record.size_bytes} bytes)",
            NotificationPriority.LOW,
            {"backup_id": record.id},
        )
        return record

    def _create_backup(self, plaintext: bytes, passphrase: str, name: str) -> BackupRecord:
        size = len(plaintext)
        self._blobs.check_size(size)

        digest = checksum(plaintext)
        # KDF + AES outside the lock; only the two writes are serialized
        payload = self._crypto.encrypt(plaintext, passphrase)

        with self._catalog.lock:
            existing = self._catalog.load()
            backup_id = str(uuid4())
            while backup_id in existing:
                backup_id = str(uuid4())

            created_at = self._clock()
            expires_at = None
            if self.config.retention_period_days > 0:
                expires_at = created_at + timedelta(days=self.config.retention_period_days)

            record = BackupRecord(
                id=backup_id,
                name=name,
                size_bytes=size,
                created_at=created_at,
                expires_at=expires_at,
                checksum=digest,
            )

            self._store(record, payload)

        logger.info("Backup created: %s (%d bytes)", backup_id, size)
        return record

    def _store(self, record: BackupRecord, payload: EncryptedPayload) -> None:
        """Write the blob, then the catalog entry.  Caller holds the lock."""
        self._blobs.put(record.id, payload, declared_size=record.size_bytes)
        try:
            self._catalog.upsert(record)
        except StorageIOError:
            # Don't leave an orphan behind if we can avoid it
            try:
                self._blobs.delete(record.id)
            except BackupError:
                logger.warning("Could not roll back blob %s", record.id)
            raise

    # ── List / Info ──────────────────────────────────────────────────

    def list_backups(self) -> List[BackupRecord]:
        """Return active (unexpired) backups, newest first."""
        return self._catalog.list_active(self._clock())

    def get_backup_info(self, backup_id: str) -> Optional[BackupRecord]:
        """Return a single active record or None."""
        record = self._catalog.get(backup_id)
        if record is None or record.is_expired(self._clock()):
            return None
        return record

    def get_statistics(self) -> BackupStats:
        return compute_statistics(self.list_backups())

    # ── Restore ──────────────────────────────────────────────────────

    def restore_backup(self, backup_id: str, passphrase: str) -> bytes:
        """Decrypt a backup and return its verified plaintext.

        Raises:
            BackupNotFound: Unknown or expired id.
            CorruptCatalog: Catalog entry exists but its blob is missing.
            AuthenticationFailure: Wrong passphrase or tampered blob.
            IntegrityViolation: Decrypted data does not match the checksum.
            UnsupportedFormatVersion: Blob written by an unknown format.
        """
        try:
            plaintext = self._restore(backup_id, passphrase)
        except BackupError as e:
            self._audit_log("backup.restore.failed", f"Restore failed: {backup_id}", {
                "backup_id": backup_id,
                "error": type(e).__name__,
            }, severity="investigate")
            self._notify(
                NotificationType.RESTORE_FAILED,
                "Restore failed",
                f"Restore of backup {backup_id} failed: {type(e).__name__}",
                NotificationPriority.HIGH,
                {"backup_id": backup_id, "error": type(e).__name__},
            )
            raise

        self._audit_log("backup.restored", f"Backup restored: {backup_id}", {
            "backup_id": backup_id,
            "size_bytes": len(plaintext),
        })
        self._notify(
            NotificationType.BACKUP_RESTORED,
            "Backup restored",
            f"Backup {backup_id} restored",
            NotificationPriority.MEDIUM,
            {"backup_id": backup_id},
        )
        return plaintext

    def _restore(self, backup_id: str, passphrase: str) -> bytes:
        # 1. Lookup
        record = self.get_backup_info(backup_id)
        if record is None:
            raise BackupNotFound(f"Backup not found: {backup_id}")

        # 2. Load
        try:
            payload = self._blobs.get(backup_id)
        except BackupNotFound:
            logger.error("Catalog entry %s has no blob on disk", backup_id)
            raise CorruptCatalog(
                f"Backup {backup_id} is in the catalog but its data file is missing."
            ) from None

        # 3. Decrypt (AuthenticationFailure propagates as-is)
        plaintext = self._crypto.decrypt(payload, passphrase)

        # 4. Verify checksum
        if not verify_checksum(plaintext, record.checksum):
            logger.error("Checksum mismatch for backup %s", backup_id)
            raise IntegrityViolation(
                f"Restored data for {backup_id} does not match its recorded checksum."
            )
        return plaintext

    def verify_backup(self, backup_id: str, passphrase: str) -> bool:
        """Run the full restore pipeline without returning the plaintext.

        Raises:
            BackupNotFound: Unknown or expired id.
        """
        try:
            self._restore(backup_id, passphrase)
        except (
            AuthenticationFailure,
            IntegrityViolation,
            CorruptCatalog,
            StorageIOError,
            UnsupportedFormatVersion,
        ) as e:
            logger.warning("Backup %s failed verification: %s", backup_id, type(e).__name__)
            return False
        return True

    # ── Retention ────────────────────────────────────────────────────

    def expire_old(self) -> int:
        return self._retention.expire_old(self._clock())

    def enforce_count(self, max_backups: Optional[int] = None) -> int:
        if max_backups is None:
            max_backups = self.config.max_backups
        return self._retention.enforce_count(max_backups, self._clock())

    def enforce_budget(self, max_bytes: Optional[int] = None) -> SpaceReport:
        if max_bytes is None:
            max_bytes = self.config.storage_budget_bytes
        return self._retention.enforce_budget(max_bytes, self._clock())

    def run_retention(self) -> RetentionResult:
        """TTL eviction, count cap, budget eviction, then orphan sweep."""
        expired = self.expire_old()
        capped = self.enforce_count()
        space = self.enforce_budget()
        orphans = self._retention.sweep_orphans()

        result = RetentionResult(
            expired=expired,
            evicted=space.deleted_count,
            capped=capped,
            orphans_removed=orphans,
            space=space,
        )
        if orphans:
            self._audit_log(
                "backup.orphan.removed",
                f"Removed {orphans} orphan backup blob(s)",
                {"count": orphans},
                severity="investigate",
            )
        self._audit_log("retention.completed", "Retention sweep completed", result.to_dict())
        evicted = capped + space.deleted_count
        if expired or evicted:
            self._notify(
                NotificationType.RETENTION_COMPLETED,
                "Old backups removed",
                f"{expired} expired and {evicted} evicted backup(s) removed",
                NotificationPriority.LOW,
                result.to_dict(),
            )
        return result

    def _on_retention_delete(self, record: BackupRecord, reason: str) -> None:
        self._audit_log(f"backup.{reason}", f"Backup {reason}: {record.id}", {
            "backup_id": record.id,
            "name": record.name,
            "size_bytes": record.size_bytes,
            "created_at": record.created_at.isoformat(),
        }, severity="alert")

    # ── Export / Import ──────────────────────────────────────────────

    def export_backup(self, backup_id: str, export_path: Union[str, Path]) -> Path:
        """Write a portable bundle (catalog record + encrypted payload).

        The bundle stays encrypted; importing it elsewhere still needs the
        passphrase it was created with.
        """
        record = self.get_backup_info(backup_id)
        if record is None:
            raise BackupNotFound(f"Backup not found: {backup_id}")
        try:
            payload = self._blobs.get(backup_id)
        except BackupNotFound:
            raise CorruptCatalog(
                f"Backup {backup_id} is in the catalog but its data file is missing."
            ) from None

        bundle = {
            "bundle_version": _BUNDLE_VERSION,
            "record": record.to_dict(),
            "payload": payload.to_dict(),
        }
        dest = Path(export_path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(dest, json.dumps(bundle, indent=2))
        except OSError as e:
            raise StorageIOError(f"Cannot write export bundle {dest}: {e}") from e

        self._audit_log("backup.exported", f"Backup exported: {backup_id}", {
            "backup_id": backup_id,
            "export_path": str(dest),
        })
        return dest

    def import_backup(self, import_path: Union[str, Path]) -> BackupRecord:
        """Import a bundle written by export_backup().

        Raises:
            BackupNotFound: Bundle file does not exist.
            BackupError: Bundle is malformed or its id already exists.
            PayloadTooLarge: Recorded size exceeds the configured maximum.
        """
        source = Path(import_path)
        try:
            raw = source.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise BackupNotFound(f"Import file not found: {source}") from None
        except OSError as e:
            raise StorageIOError(f"Cannot read import file {source}: {e}") from e

        try:
            bundle = json.loads(raw)
            record = BackupRecord.from_dict(bundle["record"])
            payload = EncryptedPayload.from_dict(bundle["payload"])
        except (ValueError, KeyError, TypeError) as e:
            raise BackupError(f"Invalid backup bundle {source}: {e}") from e

        self._blobs.check_size(record.size_bytes)

        with self._catalog.lock:
            if self._catalog.get(record.id) is not None:
                raise BackupError(f"Backup already exists: {record.id}")
            self._store(record, payload)

        self._audit_log("backup.imported", f"Backup imported: {record.id}", {
            "backup_id": record.id,
            "name": record.name,
            "source": str(source),
        })
        return record

    # ── Helpers ──────────────────────────────────────────────────────

    def _notify(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority,
        data: Dict[str, Any],
    ) -> None:
        if self._broker is None:
            return
        try:
            self._broker.publish(Notification(
                type=notification_type,
                title=title,
                message=message,
                user_id=self._notify_user_id,
                priority=priority,
                data=data,
            ))
        except Exception:
            logger.warning("Notification publish failed: %s", title, exc_info=True)

    @staticmethod
    def _audit_log(
        event_type_value: str, message: str, details: dict, severity: str = "info"
    ):
        """Best-effort audit logging; never breaks a backup operation."""
        try:
            from ..core.audit_log import EventSeverity, EventType, log_audit_event
            log_audit_event(
                EventType(event_type_value),
                EventSeverity(severity),
                message,
                details=details,
            )
        except Exception:
            logger.warning("Audit log failed: %s", message, exc_info=True)
