"""Blob store: one encrypted payload file per backup id.

File layout: ``<storage_dir>/<backup_id>.enc.json`` holding the
EncryptedPayload as JSON (binary fields base64 encoded).
"""

import json
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Union

from .backup_crypto import EncryptedPayload
from .exceptions import BackupNotFound, PayloadTooLarge, StorageIOError
from .fsutil import atomic_write_text

logger = logging.getLogger(__name__)

BLOB_SUFFIX = ".enc.json"
MAX_BACKUP_SIZE = 100 * 1024 * 1024  # 100 MB

_VALID_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class BlobStore:
    """Reads and writes encrypted backup blobs on the local filesystem.

    Args:
        storage_dir: Directory holding the blob files.
        max_size: Maximum plaintext size accepted by check_size()/put(), or a
                  callable returning it (read on every check).
    """

    def __init__(
        self,
        storage_dir: Path,
        max_size: Union[int, Callable[[], int]] = MAX_BACKUP_SIZE,
    ):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._max_size = max_size

    @property
    def max_size(self) -> int:
        if callable(self._max_size):
            return self._max_size()
        return self._max_size

    def path_for(self, backup_id: str) -> Path:
        # Ids name files directly; refuse anything that could escape the dir
        if not _VALID_ID.match(backup_id):
            raise BackupNotFound(f"Invalid backup id: {backup_id!r}")
        return self.storage_dir / f"{backup_id}{BLOB_SUFFIX}"

    def check_size(self, size: int) -> None:
        """Raise PayloadTooLarge if size exceeds the configured maximum."""
        limit = self.max_size
        if size > limit:
            raise PayloadTooLarge(size, limit)

    def put(
        self,
        backup_id: str,
        payload: EncryptedPayload,
        declared_size: Optional[int] = None,
    ) -> Path:
        """Persist a payload and return its path.

        Args:
            backup_id: Catalog id of the backup.
            payload: Encrypted payload to store.
            declared_size: Plaintext size as declared by the caller.

        Raises:
            PayloadTooLarge: declared_size exceeds max_size.
            StorageIOError: Write failed.
        """
        if declared_size is not None:
            self.check_size(declared_size)

        path = self.path_for(backup_id)
        try:
            atomic_write_text(path, json.dumps(payload.to_dict()))
        except OSError as e:
            raise StorageIOError(f"Cannot write backup blob {path}: {e}") from e
        return path

    def get(self, backup_id: str) -> EncryptedPayload:
        """Load a stored payload.

        Raises:
            BackupNotFound: No blob for this id.
            StorageIOError: Read failed or file is not a valid payload.
        """
        path = self.path_for(backup_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise BackupNotFound(f"Backup blob not found: {backup_id}") from None
        except OSError as e:
            raise StorageIOError(f"Cannot read backup blob {path}: {e}") from e

        try:
            return EncryptedPayload.from_dict(json.loads(raw))
        except ValueError as e:
            raise StorageIOError(f"Backup blob {path} is malformed: {e}") from e

    def delete(self, backup_id: str) -> bool:
        """Remove a blob.  Returns False if it was already absent."""
        path = self.path_for(backup_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIOError(f"Cannot delete backup blob {path}: {e}") from e
        return True

    def exists(self, backup_id: str) -> bool:
        return self.path_for(backup_id).exists()

    def size_of(self, backup_id: str) -> int:
        """Physical size of the stored blob in bytes."""
        path = self.path_for(backup_id)
        try:
            return path.stat().st_size
        except FileNotFoundError:
            raise BackupNotFound(f"Backup blob not found: {backup_id}") from None
        except OSError as e:
            raise StorageIOError(f"Cannot stat backup blob {path}: {e}") from e

    def modified_at(self, backup_id: str) -> float:
        """Blob mtime as a POSIX timestamp."""
        path = self.path_for(backup_id)
        try:
            return path.stat().st_mtime
        except FileNotFoundError:
            raise BackupNotFound(f"Backup blob not found: {backup_id}") from None
        except OSError as e:
            raise StorageIOError(f"Cannot stat backup blob {path}: {e}") from e

    def list_ids(self) -> List[str]:
        """Ids of every blob currently on disk."""
        return sorted(
            p.name[: -len(BLOB_SUFFIX)]
            for p in self.storage_dir.glob(f"*{BLOB_SUFFIX}")
        )
