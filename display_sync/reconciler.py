import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .catalog import MediaCatalog
from .config import settings
from .scheduler import PlaybackScheduler
from .storage import MediaStore

logger = logging.getLogger(__name__)

class StateReconciler:
    """Detects drift between the cached catalog and the approved rows in storage."""

    def __init__(self, catalog: MediaCatalog, scheduler: PlaybackScheduler):
        self.catalog = catalog
        self.scheduler = scheduler
        self.running = True
        self.last_count: Optional[int] = None

    async def check_once(self) -> bool:
        """Runs one comparison. Returns True when drift was found."""
        count = self.catalog.count_approved()
        if count is None:
            return False

        if self.last_count is None:
            self.last_count = count
            return False

        if count == self.last_count:
            return False

        logger.info(f"Approved media count changed {self.last_count} -> {count}, refreshing catalog")
        self.catalog.invalidate()
        self.last_count = count
        if await self.scheduler.reset_if_playing("system"):
            logger.info("Timeline reset after catalog drift")
        return True

    async def run(self):
        logger.info("Reconciliation loop started")
        while self.running:
            try:
                await self.check_once()
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
            await asyncio.sleep(settings.RECONCILE_INTERVAL_SECONDS)

class ArchiveSweeper:
    """Archives approved media older than the retention window, once a day."""

    def __init__(self, store: MediaStore, catalog: MediaCatalog,
                 now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.store = store
        self.catalog = catalog
        self.running = True
        self._now = now

    def retention_days(self) -> int:
        value = self.store.get_setting("auto_archive_days")
        if value is None or value == "":
            return settings.ARCHIVE_RETENTION_DAYS
        try:
            return int(float(value))
        except ValueError:
            logger.warning(f"Invalid auto_archive_days setting {value!r}, using {settings.ARCHIVE_RETENTION_DAYS}")
            return settings.ARCHIVE_RETENTION_DAYS

    def sweep_once(self) -> int:
        days = self.retention_days()
        if days <= 0:
            logger.debug("Auto-archive disabled")
            return 0

        admin_id = self.store.pick_admin_id()
        if admin_id is None:
            logger.warning("Auto-archive skipped: no admin account to attribute it to")
            return 0

        cutoff = self._now() - timedelta(days=days)
        archived = self.store.archive_older_than(cutoff, admin_id)
        if archived:
            logger.info(f"Archived {archived} media items approved before {cutoff:%Y-%m-%d %H:%M}")
        self.catalog.invalidate()
        return archived

    async def run(self):
        logger.info("Auto-archive loop started")
        while self.running:
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"Error in auto-archive sweep: {e}", exc_info=True)
            await asyncio.sleep(settings.ARCHIVE_INTERVAL_SECONDS)
