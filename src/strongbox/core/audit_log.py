# Audit Log
#
# Append-only JSON trail of backup lifecycle events (create, restore,
# expiry, eviction, import/export, server start/stop).  One line per
# event, one file per day: audit_YYYY-MM-DD.log.
#
# Never pass passphrases, keys or plaintext in `details`.

import getpass
import logging
import socket
import sys
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "strongbox.audit"
DEFAULT_LOG_DIR = Path("./audit_logs")


class EventType(str, Enum):
    BACKUP_CREATED = "backup.created"
    BACKUP_RESTORED = "backup.restored"
    BACKUP_RESTORE_FAILED = "backup.restore.failed"
    BACKUP_EXPIRED = "backup.expired"
    BACKUP_EVICTED = "backup.evicted"
    BACKUP_ORPHAN_REMOVED = "backup.orphan.removed"
    BACKUP_IMPORTED = "backup.imported"
    BACKUP_EXPORTED = "backup.exported"
    RETENTION_COMPLETED = "retention.completed"
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """How much attention an event deserves.

    INFO for routine activity, INVESTIGATE for failed restores and orphan
    blobs, ALERT when data was removed, CRITICAL for integrity problems.
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


_structlog_ready = False


def _configure_structlog() -> None:
    global _structlog_ready
    if _structlog_ready:
        return
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="logged_at"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _structlog_ready = True


def _host_context() -> Dict[str, Any]:
    try:
        os_user = getpass.getuser()
    except (KeyError, OSError):
        os_user = None
    return {
        "os_user": os_user,
        "hostname": socket.gethostname(),
        "platform": sys.platform,
    }


class AuditLogger:
    """Writes structured audit events to a daily file under ``log_dir``.

    Args:
        log_dir: Directory for the audit files (default: ./audit_logs).
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"audit_{date.today().isoformat()}.log"

        _configure_structlog()

        self._handler = logging.FileHandler(self.log_file, encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        stdlib_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        stdlib_logger.setLevel(logging.INFO)
        stdlib_logger.addHandler(self._handler)

        self._host = _host_context()
        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    def close(self):
        logging.getLogger(AUDIT_LOGGER_NAME).removeHandler(self._handler)
        self._handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append one event and return its id.

        ``user_context`` defaults to the OS user, hostname and platform of
        this process.
        """
        event_id = str(uuid4())
        self.logger.info(
            "audit_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            user_context=user_context or self._host,
        )
        return event_id


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Process-wide AuditLogger, created on first use."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def log_audit_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs,
) -> str:
    """Shortcut for ``get_audit_logger().log_event(...)``.

        log_audit_event(
            EventType.BACKUP_CREATED,
            EventSeverity.INFO,
            "Backup created",
            details={"backup_id": "5f1c...", "size_bytes": 1024},
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
