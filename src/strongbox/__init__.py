# Strongbox - Main Package
#
# Encrypted backup engine: AES-256-GCM at rest, SHA-256 integrity
# checks on restore, TTL and storage-budget retention.

__version__ = "0.1.0"
__author__ = "Strongbox Team"
__description__ = "Encrypted backup storage with verified restore and retention"

from .backup import (
    BackupError,
    BackupManager,
    BackupRecord,
)
from .config import BackupConfig
from .notifications import NotificationBroker

__all__ = [
    "__version__",
    "BackupConfig",
    "BackupError",
    "BackupManager",
    "BackupRecord",
    "NotificationBroker",
]
