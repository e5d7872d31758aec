"""Backup API routes: create, list, restore, verify and run retention.

Payloads travel base64-encoded in JSON.  Blocking work (PBKDF2, file I/O)
runs in a worker thread bounded by ``operation_timeout_seconds``; on a
timeout the caller must assume nothing was stored.
"""

import asyncio
import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..backup.backup_manager import BackupManager
from ..backup.exceptions import (
    AuthenticationFailure,
    BackupError,
    BackupNotFound,
    CorruptCatalog,
    IntegrityViolation,
    PayloadTooLarge,
    StorageIOError,
    UnsupportedFormatVersion,
)
from ..config import BackupConfig
from .security import verify_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backups", tags=["backups"])

# ── Singleton ────────────────────────────────────────────────────────

_backup_manager: Optional[BackupManager] = None


def get_backup_manager() -> BackupManager:
    """Lazy singleton, created on first use from environment config."""
    global _backup_manager
    if _backup_manager is None:
        _backup_manager = BackupManager(BackupConfig.from_env())
    return _backup_manager


def set_backup_manager(manager: Optional[BackupManager]) -> None:
    """Install the manager used by the routes (startup wiring and tests)."""
    global _backup_manager
    _backup_manager = manager


# ── Pydantic Models ──────────────────────────────────────────────────


class CreateBackupRequest(BaseModel):
    data: str = Field(..., description="Base64-encoded payload")
    passphrase: str = Field(..., min_length=12)
    name: Optional[str] = Field(None, max_length=100)


class PassphraseRequest(BaseModel):
    passphrase: str = Field(..., min_length=12)


# ── Helpers ──────────────────────────────────────────────────────────


def _http_error(e: BackupError) -> HTTPException:
    """Map backup error kinds to HTTP responses."""
    if isinstance(e, BackupNotFound):
        return HTTPException(status_code=404, detail="Backup not found.")
    if isinstance(e, PayloadTooLarge):
        return HTTPException(status_code=413, detail=str(e))
    if isinstance(e, AuthenticationFailure):
        return HTTPException(status_code=400, detail="Invalid passphrase or corrupt backup.")
    if isinstance(e, (IntegrityViolation, CorruptCatalog, UnsupportedFormatVersion)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StorageIOError):
        logger.error("Backup storage failure: %s", e)
        return HTTPException(status_code=500, detail="Backup storage failure.")
    return HTTPException(status_code=400, detail=str(e))


async def _run_blocking(mgr: BackupManager, func, *args):
    """Run a blocking manager call in a thread under the operation timeout."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args),
            timeout=mgr.config.operation_timeout_seconds,
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Backup operation timed out.",
        )
    except BackupError as e:
        raise _http_error(e)


# ── Routes ───────────────────────────────────────────────────────────


@router.post("")
async def create_backup(
    body: CreateBackupRequest,
    _user: str = Depends(verify_session_token),
):
    """Encrypt and store a payload."""
    try:
        data = base64.b64decode(body.data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail="data must be valid base64.")

    mgr = get_backup_manager()
    record = await _run_blocking(mgr, mgr.create_backup, data, body.passphrase, body.name)
    return record.to_dict()


@router.get("")
async def list_backups(
    _user: str = Depends(verify_session_token),
):
    """List active backups, newest first."""
    mgr = get_backup_manager()
    backups = await _run_blocking(mgr, mgr.list_backups)
    return {"backups": [b.to_dict() for b in backups], "total": len(backups)}


@router.get("/stats")
async def get_statistics(
    _user: str = Depends(verify_session_token),
):
    """Aggregate counts and sizes over active backups."""
    mgr = get_backup_manager()
    stats = await _run_blocking(mgr, mgr.get_statistics)
    return stats.to_dict()


@router.post("/retention")
async def run_retention(
    _user: str = Depends(verify_session_token),
):
    """Expire old backups and enforce the storage budget."""
    mgr = get_backup_manager()
    result = await _run_blocking(mgr, mgr.run_retention)
    return result.to_dict()


@router.get("/{backup_id}")
async def get_backup_info(
    backup_id: str,
    _user: str = Depends(verify_session_token),
):
    """Get details for a specific backup."""
    mgr = get_backup_manager()
    info = await _run_blocking(mgr, mgr.get_backup_info, backup_id)
    if not info:
        raise HTTPException(status_code=404, detail="Backup not found.")
    return info.to_dict()


@router.post("/{backup_id}/restore")
async def restore_backup(
    backup_id: str,
    body: PassphraseRequest,
    _user: str = Depends(verify_session_token),
):
    """Decrypt a backup and return its verified payload."""
    mgr = get_backup_manager()
    plaintext = await _run_blocking(mgr, mgr.restore_backup, backup_id, body.passphrase)
    return {
        "backup_id": backup_id,
        "size_bytes": len(plaintext),
        "data": base64.b64encode(plaintext).decode("ascii"),
    }


@router.post("/{backup_id}/verify")
async def verify_backup(
    backup_id: str,
    body: PassphraseRequest,
    _user: str = Depends(verify_session_token),
):
    """Check that a backup decrypts and matches its checksum."""
    mgr = get_backup_manager()
    ok = await _run_blocking(mgr, mgr.verify_backup, backup_id, body.passphrase)
    return {"backup_id": backup_id, "valid": ok}
