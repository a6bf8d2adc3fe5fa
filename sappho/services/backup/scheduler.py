"""
Backup Scheduler - periodic build + retention cycles on the event loop.

Each tick spawns a cycle task instead of awaiting it, so a slow build cannot
delay the timer; a tick that fires while a cycle (or a manual backup/restore)
is still running is skipped. A cycle that loses the service lock to a manual
request after the tick is skipped the same way, without recording a result.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from sappho.services.backup.errors import BackupInProgressError
from sappho.services.backup.models import BackupStatus
from sappho.services.backup.service import BackupService

logger = logging.getLogger(__name__)


@dataclass
class ScheduleState:
    """Process-wide scheduler state, owned by one BackupScheduler."""
    in_progress: bool = False
    interval_hours: Optional[float] = None
    retention: Optional[int] = None
    last_run_at: Optional[datetime] = None
    last_result: Optional[Dict[str, Any]] = None


class BackupScheduler:
    """Run scheduled backups with start/stop lifecycle and status snapshot."""

    def __init__(self, service: BackupService):
        self.service = service
        self.settings = service.settings
        self.state = ScheduleState()
        self._timer: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(
        self,
        interval_hours: Optional[float] = None,
        retention: Optional[int] = None,
        initial_delay: Optional[float] = None,
    ) -> bool:
        """Arm the recurring timer. Returns False if it was already armed."""
        if self.running:
            logger.info("Scheduled backups already running")
            return False

        interval_hours = self.settings.auto_backup_interval if interval_hours is None else interval_hours
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        retention = self.settings.backup_retention if retention is None else retention
        initial_delay = self.settings.backup_initial_delay if initial_delay is None else initial_delay

        self.state.interval_hours = interval_hours
        self.state.retention = retention
        self._timer = asyncio.create_task(
            self._run_timer(interval_hours * 3600, initial_delay), name="backup_scheduler"
        )
        logger.info(f"Starting scheduled backups every {interval_hours} hours (keep {retention})")
        return True

    def stop(self) -> None:
        """Disarm the timer. An in-flight cycle is left to finish."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("Scheduled backups stopped")

    async def aclose(self) -> None:
        """Stop and wait for any running cycle (application shutdown)."""
        self.stop()
        if self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)

    async def _run_timer(self, interval_seconds: float, initial_delay: float) -> None:
        delay = initial_delay
        while True:
            await asyncio.sleep(delay)
            self.tick()
            delay = interval_seconds

    def tick(self) -> Optional[asyncio.Task]:
        """Start one cycle unless one is already running."""
        if self.state.in_progress or self.service.busy:
            logger.info("Previous backup still in progress, skipping scheduled run")
            return None
        self.state.in_progress = True
        task = asyncio.create_task(self._run_cycle(), name="backup_cycle")
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return task

    async def _run_cycle(self) -> None:
        try:
            try:
                result = await self.service.create_backup(include_covers=self.settings.backup_include_covers)
            except BackupInProgressError:
                # A manual backup/restore took the lock between tick() and now
                logger.info("Backup or restore already in progress, skipping scheduled run")
                return
            keep = self.state.retention if self.state.retention is not None else self.settings.backup_retention
            retention = await asyncio.to_thread(self.service.apply_retention, keep)
            self.state.last_result = {
                **result.model_dump(mode="json"),
                "deleted": retention.deleted,
            }
            self.state.last_run_at = datetime.now(timezone.utc)
        except Exception as e:
            logger.error(f"Scheduled backup failed: {e}")
            self.state.last_result = {"success": False, "error": str(e)}
            self.state.last_run_at = datetime.now(timezone.utc)
        finally:
            self.state.in_progress = False

    def get_status(self) -> BackupStatus:
        return BackupStatus(
            backup_dir=str(self.service.backup_dir),
            scheduled_backups=self.running,
            in_progress=self.state.in_progress or self.service.busy,
            interval_hours=self.state.interval_hours if self.running else None,
            last_backup=self.state.last_run_at,
            last_result=self.state.last_result,
            backup_count=len(self.service.list_backups()),
        )
