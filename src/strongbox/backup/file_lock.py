"""Re-entrant catalog lock shared by threads and processes.

Every BackupCatalog opened on the same file gets the same CatalogLock
(registry keyed by resolved path), so two managers in one process
serialize.  The outermost acquire also takes an exclusive OS lock on a
sidecar ``<catalog>.lock`` file, so the CLI and a running server
serialize as well.
"""

import logging
import os
import threading
from pathlib import Path
from typing import IO, Dict, Optional

from .exceptions import StorageIOError

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


def _lock_file(handle) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        # LK_LOCK retries for ~10s before raising
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)  # type: ignore[attr-defined]
        return
    import fcntl

    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(handle) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        return
    import fcntl

    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class CatalogLock:
    """Thread re-entrant lock backed by an exclusive OS file lock.

    Args:
        lock_path: Sidecar file used for the OS-level lock.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._rlock = threading.RLock()
        self._depth = 0
        self._handle: Optional[IO[bytes]] = None

    def acquire(self) -> bool:
        self._rlock.acquire()
        if self._depth == 0:
            try:
                self._handle = self._open_locked()
            except BaseException:
                self._rlock.release()
                raise
        self._depth += 1
        return True

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            handle, self._handle = self._handle, None
            try:
                _unlock_file(handle)
            except OSError as e:
                logger.warning("Could not unlock %s: %s", self.lock_path, e)
            finally:
                handle.close()
        self._rlock.release()

    def __enter__(self) -> "CatalogLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def held_by_process(self) -> bool:
        return self._handle is not None

    def _open_locked(self) -> IO[bytes]:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+b")
        except OSError as e:
            raise StorageIOError(f"Cannot open lock file {self.lock_path}: {e}") from e
        try:
            _lock_file(handle)
        except OSError as e:
            handle.close()
            raise StorageIOError(f"Cannot lock {self.lock_path}: {e}") from e
        return handle


_registry_lock = threading.Lock()
_locks: Dict[Path, CatalogLock] = {}


def lock_for(catalog_path: Path) -> CatalogLock:
    """Return the process-wide lock for a catalog file."""
    key = Path(catalog_path).resolve()
    with _registry_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = CatalogLock(key.with_name(key.name + LOCK_SUFFIX))
            _locks[key] = lock
        return lock
