"""
Backup Exception Classes
"""


class BackupError(Exception):
    """Base exception for backup/restore failures"""
    pass


class AuthenticationFailure(BackupError):
    """Raised when decryption fails (wrong passphrase or tampered data)"""
    pass


class IntegrityViolation(BackupError):
    """Raised when restored plaintext does not match the recorded checksum"""
    pass


class BackupNotFound(BackupError):
    """Raised when a backup id is unknown, expired, or has no stored blob"""
    pass


class CorruptCatalog(BackupError):
    """Raised when the catalog references a blob that is missing on disk"""
    pass


class PayloadTooLarge(BackupError):
    """Raised when a payload exceeds the configured maximum size"""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Backup payload too large: {size} bytes (max {limit})")
        self.size = size
        self.limit = limit


class StorageIOError(BackupError):
    """Raised when the underlying filesystem fails; the OSError is chained"""
    pass


class UnsupportedFormatVersion(BackupError):
    """Raised when a stored payload uses a format version this build cannot read"""

    def __init__(self, version: str):
        super().__init__(f"Unsupported backup format version: {version!r}")
        self.version = version
