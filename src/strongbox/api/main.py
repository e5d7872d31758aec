# Strongbox - FastAPI Backend
#
# REST API over the backup engine.  Binds to localhost by default;
# every backup route requires the per-process session token.

import logging
import os

import uvicorn
from fastapi import FastAPI, HTTPException

from ..backup.backup_manager import BackupManager
from ..backup.scheduler import RetentionScheduler
from ..config import BackupConfig
from ..core import EventSeverity, EventType, get_audit_logger
from ..notifications import NotificationBroker
from . import backup_routes
from .backup_routes import router as backup_router
from .security import get_session_token, initialize_session_token

logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Strongbox API",
    description="Encrypted backup storage with verified restore and retention",
    version="0.1.0"
)

app.include_router(backup_router)


def _log_notification(notification):
    logger.info(
        "Notification [%s] %s: %s",
        notification.priority.value, notification.title, notification.message,
    )


@app.on_event("startup")
async def startup_event():
    """Initialize session token, backup manager and retention scheduler."""
    token = initialize_session_token(os.getenv("STRONGBOX_SESSION_TOKEN"))
    logger.info("Session token initialized (%d chars)", len(token))

    config = BackupConfig.from_env()
    broker = NotificationBroker()
    broker.add_listener(_log_notification)
    manager = BackupManager(config, broker=broker)
    backup_routes.set_backup_manager(manager)

    scheduler = RetentionScheduler(manager)
    scheduler.start()

    app.state.notification_broker = broker
    app.state.retention_scheduler = scheduler

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Strongbox API server started",
        details={"storage_directory": str(config.storage_directory)},
    )


@app.get("/api/session")
async def get_session():
    """Hand the session token to local clients.

    Unprotected: the server binds to localhost and the token changes on
    every restart unless pinned with STRONGBOX_SESSION_TOKEN.
    """
    try:
        return {"session_token": get_session_token()}
    except RuntimeError:
        raise HTTPException(status_code=503, detail="Server is still starting")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the retention scheduler."""
    scheduler = getattr(app.state, "retention_scheduler", None)
    if scheduler:
        scheduler.stop()

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_STOP,
        severity=EventSeverity.INFO,
        message="Strongbox API server shutting down"
    )


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
