"""
Backup API - list, create, download, delete and restore backup bundles.

Bundles are ZIP files in the backups directory containing the database,
optionally the cover images, and a manifest.json describing the contents.
"""

import logging
import uuid
from pathlib import Path
from typing import List, Optional

import aiofiles
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from sappho.services.backup import (
    BackupError,
    BackupInProgressError,
    BackupNotFoundError,
    BackupResult,
    BackupScheduler,
    BackupService,
    BackupStatus,
    BundleInfo,
    InvalidBackupNameError,
    RetentionResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backup", tags=["backup"])

UPLOAD_CHUNK_SIZE = 1024 * 1024
RESTORE_MESSAGE = "Restore complete. Server restart may be required."


# ============ Request / Response Models ============


class CreateBackupRequest(BaseModel):
    include_covers: bool = True


class RestoreRequest(BaseModel):
    restore_database: bool = True
    restore_covers: bool = True


class RetentionRequest(BaseModel):
    keep_count: Optional[int] = Field(None, ge=0)


class BackupListResponse(BaseModel):
    backups: List[BundleInfo]
    status: BackupStatus


class RestoreResponse(BaseModel):
    success: bool
    message: str
    database: bool
    covers: int
    manifest: Optional[dict] = None


class DeleteResponse(BaseModel):
    success: bool
    filename: str


# ============ Dependencies ============


def get_backup_service(request: Request) -> BackupService:
    return request.app.state.backup_service


def get_backup_scheduler(request: Request) -> BackupScheduler:
    return request.app.state.backup_scheduler


def _to_http_error(error: BackupError) -> HTTPException:
    if isinstance(error, InvalidBackupNameError):
        return HTTPException(status_code=400, detail="Invalid backup filename")
    if isinstance(error, BackupNotFoundError):
        return HTTPException(status_code=404, detail="Backup not found")
    if isinstance(error, BackupInProgressError):
        return HTTPException(status_code=409, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


# ============ Endpoints ============


@router.get("", response_model=BackupListResponse)
def list_backups(
    service: BackupService = Depends(get_backup_service),
    scheduler: BackupScheduler = Depends(get_backup_scheduler),
):
    """List all backups with the scheduler status."""
    return BackupListResponse(backups=service.list_backups(), status=scheduler.get_status())


@router.get("/status", response_model=BackupStatus)
def backup_status(scheduler: BackupScheduler = Depends(get_backup_scheduler)):
    return scheduler.get_status()


@router.post("", response_model=BackupResult)
async def create_backup(
    body: CreateBackupRequest = CreateBackupRequest(),
    service: BackupService = Depends(get_backup_service),
):
    """Create a backup bundle now."""
    logger.info("Creating manual backup...")
    try:
        return await service.create_backup(include_covers=body.include_covers)
    except BackupError as e:
        logger.error(f"Error creating backup: {e}")
        raise _to_http_error(e)


@router.post("/retention", response_model=RetentionResult)
def apply_retention(
    body: RetentionRequest = RetentionRequest(),
    service: BackupService = Depends(get_backup_service),
):
    """Delete all but the keep_count most recent backups (default: BACKUP_RETENTION)."""
    keep_count = body.keep_count if body.keep_count is not None else service.settings.backup_retention
    return service.apply_retention(keep_count)


@router.post("/restore/{filename}", response_model=RestoreResponse)
async def restore_from_server(
    filename: str,
    body: RestoreRequest = RestoreRequest(),
    service: BackupService = Depends(get_backup_service),
):
    """Restore from a backup file stored on the server."""
    try:
        backup_path = service.get_backup_path(filename)
        report = await service.restore_backup(
            backup_path,
            restore_database=body.restore_database,
            restore_covers=body.restore_covers,
        )
    except BackupError as e:
        logger.error(f"Error restoring backup {filename}: {e}")
        raise _to_http_error(e)

    return RestoreResponse(success=True, message=RESTORE_MESSAGE, **report.model_dump())


@router.post("/upload", response_model=RestoreResponse)
async def restore_from_upload(
    request: Request,
    backup: UploadFile = File(..., description="Backup ZIP file to restore"),
    restore_database: bool = Form(True),
    restore_covers: bool = Form(True),
    service: BackupService = Depends(get_backup_service),
):
    """Upload a backup ZIP and restore from it. The upload is removed afterwards."""
    if not backup.filename or not backup.filename.endswith(".zip"):
        raise HTTPException(status_code=400, detail="Only .zip files are allowed")

    settings = request.app.state.settings
    upload_dir = Path(settings.effective_upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    upload_path = upload_dir / f"{uuid.uuid4().hex}.zip"

    try:
        size = 0
        async with aiofiles.open(upload_path, "wb") as f:
            while chunk := await backup.read(UPLOAD_CHUNK_SIZE):
                size += len(chunk)
                if size > settings.max_upload_size:
                    raise HTTPException(status_code=413, detail="Backup file too large")
                await f.write(chunk)

        logger.info(f"Restoring from uploaded backup: {backup.filename}")
        report = await service.restore_backup(
            upload_path,
            restore_database=restore_database,
            restore_covers=restore_covers,
        )
    except BackupError as e:
        logger.error(f"Error restoring uploaded backup: {e}")
        raise _to_http_error(e)
    finally:
        upload_path.unlink(missing_ok=True)

    return RestoreResponse(success=True, message=RESTORE_MESSAGE, **report.model_dump())


@router.get("/{filename}")
def download_backup(
    filename: str,
    service: BackupService = Depends(get_backup_service),
):
    """Download a backup file from the backups directory."""
    try:
        backup_path = service.get_backup_path(filename)
    except BackupError as e:
        raise _to_http_error(e)

    return FileResponse(
        path=str(backup_path),
        media_type="application/zip",
        filename=backup_path.name,
    )


@router.delete("/{filename}", response_model=DeleteResponse)
def delete_backup(
    filename: str,
    service: BackupService = Depends(get_backup_service),
):
    try:
        return service.delete_backup(filename)
    except BackupError as e:
        raise _to_http_error(e)
