"""Periodic retention trigger.

Runs BackupManager.run_retention() on a background daemon thread every
``interval`` seconds until stopped.
"""

import logging
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .backup_manager import BackupManager, RetentionResult

logger = logging.getLogger(__name__)


class RetentionScheduler:
    """Background thread that periodically applies retention.

    Args:
        manager: BackupManager to sweep.
        interval: Seconds between sweeps.  Defaults to
                  manager.config.retention_interval_seconds.
    """

    def __init__(self, manager: "BackupManager", interval: Optional[float] = None):
        self._manager = manager
        self._interval = interval or manager.config.retention_interval_seconds
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.last_result: Optional["RetentionResult"] = None

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background retention thread."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="backup-retention",
            daemon=True,
        )
        self._thread.start()
        logger.info("RetentionScheduler started (interval=%ss)", self._interval)

    def stop(self) -> None:
        """Stop the background thread."""
        self._running = False
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("RetentionScheduler stopped")

    # ── Work ─────────────────────────────────────────────────────

    def run_once(self) -> "RetentionResult":
        result = self._manager.run_retention()
        self.runs += 1
        self.last_result = result
        return result

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Retention sweep failed")
