"""
Shared pytest fixtures for the Strongbox test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger   -> temp directory  (prevents test events in ./audit_logs)
  - Backup routes  -> no leftover manager singleton between tests
"""

from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import strongbox.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_backup_routes():
    """Reset the routes' BackupManager singleton around every test."""
    from strongbox.api import backup_routes

    old = backup_routes._backup_manager
    backup_routes._backup_manager = None
    yield
    backup_routes._backup_manager = old


class FakeClock:
    """Controllable UTC clock for retention tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Fast config: low KDF cost, storage under tmp_path."""
    from strongbox.config import BackupConfig

    return BackupConfig(
        storage_directory=tmp_path / "backups",
        kdf_iterations=1_000,
    )


@pytest.fixture
def manager(config, clock):
    from strongbox.backup.backup_manager import BackupManager

    return BackupManager(config, clock=clock)


STRONGBOX_ENV_VARS = [
    "STRONGBOX_STORAGE_DIR",
    "STRONGBOX_MAX_BACKUP_SIZE_BYTES",
    "STRONGBOX_STORAGE_BUDGET_BYTES",
    "STRONGBOX_RETENTION_PERIOD_DAYS",
    "STRONGBOX_MAX_BACKUPS",
    "STRONGBOX_BUDGET_TARGET_FRACTION",
    "STRONGBOX_KDF_ITERATIONS",
    "STRONGBOX_OPERATION_TIMEOUT_SECONDS",
    "STRONGBOX_RETENTION_INTERVAL_SECONDS",
    "STRONGBOX_SESSION_TOKEN",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Strip STRONGBOX_* variables and run from an empty directory."""
    for name in STRONGBOX_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env in the working directory out of the picture
    monkeypatch.chdir(tmp_path)
    return monkeypatch
