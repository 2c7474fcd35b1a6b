import logging
from typing import List, Optional

from .cache import TTLCache
from .config import settings
from .models import MediaCatalogEntry
from .storage import MediaStore

logger = logging.getLogger(__name__)

APPROVED_MEDIA_KEY = "approved_media"

class MediaNotFoundError(LookupError):
    def __init__(self, media_id: int):
        super().__init__(f"Media {media_id} not found")
        self.media_id = media_id

class MediaCatalog:
    """Ordered approved-media snapshot, memoized in a TTLCache."""

    def __init__(self, store: MediaStore, cache: Optional[TTLCache] = None):
        self.store = store
        self.cache = cache if cache is not None else TTLCache()

    def list_approved_media(self) -> List[MediaCatalogEntry]:
        """
        Returns the approved media in display order.
        A storage failure yields an empty list, which is not cached.
        """
        cached = self.cache.get(APPROVED_MEDIA_KEY)
        if cached is not None:
            return list(cached)

        try:
            entries = self.store.list_approved_media()
        except Exception as e:
            logger.error(f"Failed to list approved media: {e}", exc_info=True)
            return []

        self.cache.set(APPROVED_MEDIA_KEY, entries, settings.CATALOG_CACHE_TTL_MINUTES)
        logger.debug(f"Catalog loaded with {len(entries)} approved items")
        return list(entries)

    def invalidate(self):
        self.cache.delete(APPROVED_MEDIA_KEY)
        logger.debug("Catalog cache invalidated")

    def count_approved(self) -> Optional[int]:
        try:
            return self.store.count_approved()
        except Exception as e:
            logger.error(f"Failed to count approved media: {e}")
            return None

    def update_duration(self, media_id: int, seconds: float):
        if not self.store.set_media_duration(media_id, seconds):
            raise MediaNotFoundError(media_id)

        # Patch the cached snapshot rather than dropping it
        cached = self.cache.get(APPROVED_MEDIA_KEY)
        if cached is not None:
            for entry in cached:
                if entry.id == media_id:
                    entry.duration_seconds = seconds
                    break
