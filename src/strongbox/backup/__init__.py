"""Strongbox - encrypted backup storage, restore and retention."""

from .backup_crypto import BackupCrypto, EncryptedPayload
from .backup_manager import BackupManager, RetentionResult
from .blob_store import BlobStore
from .catalog import BackupCatalog, BackupRecord
from .exceptions import (
    AuthenticationFailure,
    BackupError,
    BackupNotFound,
    CorruptCatalog,
    IntegrityViolation,
    PayloadTooLarge,
    StorageIOError,
    UnsupportedFormatVersion,
)
from .retention import RetentionManager, SpaceReport
from .scheduler import RetentionScheduler
from .stats import BackupStats, compute_statistics

__all__ = [
    "BackupCrypto",
    "EncryptedPayload",
    "BackupManager",
    "RetentionResult",
    "BlobStore",
    "BackupCatalog",
    "BackupRecord",
    "RetentionManager",
    "SpaceReport",
    "RetentionScheduler",
    "BackupStats",
    "compute_statistics",
    "BackupError",
    "AuthenticationFailure",
    "IntegrityViolation",
    "BackupNotFound",
    "CorruptCatalog",
    "PayloadTooLarge",
    "StorageIOError",
    "UnsupportedFormatVersion",
]
