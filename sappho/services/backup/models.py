"""Result and status models shared by the backup services and the API."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, computed_field


class BundleInfo(BaseModel):
    filename: str
    size_bytes: int
    size_formatted: str
    created_at: datetime
    manifest_version: Optional[str] = None
    # None when the manifest could not be read (truncated or foreign zip)
    includes: Optional[List[str]] = None

    @computed_field
    @property
    def valid(self) -> bool:
        return self.includes is not None


class BackupResult(BaseModel):
    success: bool = True
    filename: str
    size: int
    includes_covers: bool
    created_at: datetime


class RestoreReport(BaseModel):
    database: bool = False
    covers: int = 0
    manifest: Optional[Dict[str, Any]] = None


class RetentionResult(BaseModel):
    deleted: int = 0


class BackupStatus(BaseModel):
    backup_dir: str
    scheduled_backups: bool
    in_progress: bool
    interval_hours: Optional[float] = None
    last_backup: Optional[datetime] = None
    last_result: Optional[Dict[str, Any]] = None
    backup_count: int
