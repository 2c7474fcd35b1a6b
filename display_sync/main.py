import asyncio
import logging
import signal
import sys
import uvicorn
from pathlib import Path

from .config import settings
from .storage import MediaStore
from .catalog import MediaCatalog
from .scheduler import PlaybackScheduler
from .reconciler import ArchiveSweeper, StateReconciler
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class DisplayService:
    def __init__(self):
        self.store = MediaStore(settings.DATABASE_PATH)
        self.catalog = MediaCatalog(self.store)
        self.scheduler = PlaybackScheduler(self.catalog)
        self.reconciler = StateReconciler(self.catalog, self.scheduler)
        self.archiver = ArchiveSweeper(self.store, self.catalog)

        # Link scheduler and storage to server module
        server.scheduler = self.scheduler
        server.store = self.store

    async def setup(self):
        self.store.initialize()
        Path(settings.UPLOAD_PATH).mkdir(parents=True, exist_ok=True)
        server.mount_uploads(settings.UPLOAD_PATH)
        # Sweep before the first catalog read so the timeline starts on the trimmed set
        try:
            self.archiver.sweep_once()
        except Exception as e:
            logger.error(f"Initial auto-archive sweep failed: {e}", exc_info=True)
        await self.scheduler.start()
        await self.reconciler.check_once()

    async def run_archive_loop(self):
        # The startup sweep already ran in setup()
        await asyncio.sleep(settings.ARCHIVE_INTERVAL_SECONDS)
        await self.archiver.run()

    async def start(self):
        await self.setup()

        tasks = [
            asyncio.create_task(self.reconciler.run()),
            asyncio.create_task(self.run_archive_loop())
        ]

        config = uvicorn.Config(server.app, host=settings.HTTP_SERVER_HOST, port=settings.HTTP_SERVER_PORT, log_level="warning")
        server_task = uvicorn.Server(config).serve()
        tasks.append(asyncio.create_task(server_task))
        logger.info(f"Serving display state on {settings.HTTP_SERVER_HOST}:{settings.HTTP_SERVER_PORT}")

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            self.reconciler.running = False
            self.archiver.running = False
            await self.scheduler.stop()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = DisplayService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
