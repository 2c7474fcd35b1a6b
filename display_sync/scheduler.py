import asyncio
import contextlib
import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from .catalog import MediaCatalog
from .config import settings
from .models import MediaCatalogEntry, TimelineState, VideoState

logger = logging.getLogger(__name__)

IDLE = "idle"
PLAYING = "playing"
TRANSITIONING = "transitioning"

def play_duration(entry: MediaCatalogEntry) -> float:
    """Seconds an item stays live: its stored duration, else a per-type default."""
    if entry.duration_seconds is not None and entry.duration_seconds > 0:
        return float(entry.duration_seconds)
    if entry.file_type == "video":
        return float(settings.VIDEO_DEFAULT_DURATION_SECONDS)
    return float(settings.IMAGE_DEFAULT_DURATION_SECONDS)

class PlaybackScheduler:
    """
    Server-side virtual player shared by every display.

    All mutations run under one asyncio lock. A single auto-advance task is
    armed for the live item; arming always cancels the previous one first, and
    each armed task carries a generation number so a timer that woke up while
    a manual skip held the lock becomes a no-op.
    """

    def __init__(self, catalog: MediaCatalog,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.catalog = catalog
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._transitioning = False
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._timer_delay: Optional[float] = None
        self._video_end: Optional[asyncio.Task] = None

        now = clock()
        self._state = TimelineState(
            start_timestamp=now,
            last_update_time=now,
            video_state=VideoState(last_updated=now),
        )

    # Read side

    def get_state(self) -> TimelineState:
        return self._state.model_copy(deep=True)

    def get_media_items(self) -> List[MediaCatalogEntry]:
        return self.catalog.list_approved_media()

    @property
    def phase(self) -> str:
        if self._transitioning:
            return TRANSITIONING
        return PLAYING if self.is_armed else IDLE

    @property
    def is_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def pending_delay(self) -> Optional[float]:
        """Delay the armed auto-advance timer was set for, if any."""
        return self._timer_delay if self.is_armed else None

    def now(self) -> float:
        return self._clock()

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._state.start_timestamp)

    # Lifecycle

    async def start(self):
        state = await self.reset_timeline("system")
        logger.info(f"Playback scheduler started at index {state.current_index} ({self.phase})")

    async def stop(self):
        async with self._lock:
            self._cancel_pending()
        logger.info("Playback scheduler stopped")

    # Mutations

    async def advance(self, changed_by: str = "system") -> TimelineState:
        async with self._mutation():
            self._advance_locked(changed_by)
            return self.get_state()

    async def reset_timeline(self, changed_by: str = "system") -> TimelineState:
        async with self._mutation():
            self._reset_locked(changed_by)
            return self.get_state()

    async def reset_if_playing(self, changed_by: str = "system") -> bool:
        async with self._mutation():
            if not self.is_armed:
                return False
            self._reset_locked(changed_by)
            return True

    async def skip_to_media(self, index: int, changed_by: str = "system") -> TimelineState:
        async with self._mutation():
            entries = self.catalog.list_approved_media()
            if not entries:
                logger.info(f"Cannot skip to index {index}: no approved media")
                self._go_idle(changed_by)
                return self.get_state()

            target = min(max(index, 0), len(entries) - 1)
            if target != index:
                logger.warning(f"Skip index {index} out of range, clamped to {target}")
            self._move_to(entries, target, changed_by)
            return self.get_state()

    async def update_media_duration(self, media_id: int, seconds: float,
                                    changed_by: str = "system") -> TimelineState:
        async with self._mutation():
            try:
                self.catalog.update_duration(media_id, seconds)
            except Exception as e:
                logger.error(f"update_media_duration failed for media {media_id}: {e}")
                raise
            logger.info(f"Duration of media {media_id} set to {seconds:.1f}s by {changed_by}")
            return self.get_state()

    async def report_video_state(self, is_playing: bool, current_time: float, duration: float,
                                 changed_by: str = "unknown") -> TimelineState:
        async with self._mutation():
            now = self._clock()
            self._state.video_state = VideoState(
                is_playing=is_playing,
                current_time=current_time,
                duration=duration,
                last_updated=now,
            )
            self._state.last_update_time = now
            self._state.changed_by = changed_by
            logger.debug(f"Video state from {changed_by}: playing={is_playing}, time={current_time:.1f}/{duration:.1f}")

            if self._video_ended(is_playing, current_time, duration):
                media_id = self._state.current_media_id
                logger.info(f"Video {media_id} reported ended at {current_time:.1f}s, advancing shortly")
                self._video_end = asyncio.create_task(self._advance_after_video_end(media_id))
            return self.get_state()

    def clear_media_cache(self):
        self.catalog.invalidate()

    async def sync_snapshot(self) -> Tuple[TimelineState, List[MediaCatalogEntry]]:
        """Returns state and catalog for a display, correcting a stale pointer first."""
        async with self._mutation():
            entries = self.catalog.list_approved_media()
            self._reconcile_locked(entries)
            return self.get_state(), entries

    # Internals, lock held

    @contextlib.asynccontextmanager
    async def _mutation(self):
        async with self._lock:
            self._transitioning = True
            try:
                yield
            finally:
                self._transitioning = False

    def _advance_locked(self, changed_by: str):
        entries = self.catalog.list_approved_media()
        if not entries:
            logger.info("Cannot advance: no approved media")
            self._go_idle(changed_by)
            return
        self._move_to(entries, (self._live_position(entries) + 1) % len(entries), changed_by)

    def _reset_locked(self, changed_by: str):
        entries = self.catalog.list_approved_media()
        if not entries:
            self._go_idle(changed_by)
            return
        self._move_to(entries, 0, changed_by)
        logger.info(f"Timeline reset by {changed_by}")

    def _move_to(self, entries: List[MediaCatalogEntry], index: int, changed_by: str):
        entry = entries[index]
        now = self._clock()
        self._state.current_index = index
        self._state.current_media_id = entry.id
        self._state.start_timestamp = now
        self._state.last_update_time = now
        self._state.changed_by = changed_by
        self._state.video_state = VideoState(last_updated=now)

        self._cancel_pending()
        delay = play_duration(entry)
        self._generation += 1
        self._timer = asyncio.create_task(self._auto_advance_after(delay, self._generation))
        self._timer_delay = delay
        logger.info(f"Display moved to index {index}, media {entry.id} ({entry.file_type}, {delay:.1f}s) by {changed_by}")

    def _go_idle(self, changed_by: str):
        self._cancel_pending()
        if self._state.current_index == 0 and self._state.current_media_id is None:
            return
        now = self._clock()
        self._state.current_index = 0
        self._state.current_media_id = None
        self._state.start_timestamp = now
        self._state.last_update_time = now
        self._state.changed_by = changed_by
        self._state.video_state = VideoState(last_updated=now)
        logger.info("No approved media, display idle")

    def _cancel_pending(self):
        current = asyncio.current_task()
        if self._timer is not None and self._timer is not current:
            self._timer.cancel()
        if self._video_end is not None and self._video_end is not current:
            self._video_end.cancel()
        self._timer = None
        self._timer_delay = None
        self._video_end = None

    def _reconcile_locked(self, entries: List[MediaCatalogEntry]):
        if not entries:
            if self._state.current_media_id is not None or self.is_armed:
                self._go_idle("system")
            return

        media_id = self._state.current_media_id
        if media_id is None or not self.is_armed:
            self._move_to(entries, 0, "system")
            return

        index = self._state.current_index
        if index < len(entries) and entries[index].id == media_id:
            return

        position = self._live_position(entries)
        if position >= 0:
            logger.info(f"Media {media_id} moved from index {index} to {position}")
            self._state.current_index = position
            return

        logger.warning(f"Media {media_id} at index {index} no longer approved, restarting from first item")
        self._move_to(entries, 0, "system")

    def _live_position(self, entries: List[MediaCatalogEntry]) -> int:
        """Index of the live item in entries, or -1 once it is gone. Idle keeps the stored index."""
        media_id = self._state.current_media_id
        if media_id is None:
            return self._state.current_index
        index = self._state.current_index
        if index < len(entries) and entries[index].id == media_id:
            return index
        for position, entry in enumerate(entries):
            if entry.id == media_id:
                return position
        return -1

    def _video_ended(self, is_playing: bool, current_time: float, duration: float) -> bool:
        if not is_playing or duration <= 0 or self._video_end is not None:
            return False
        if duration - current_time > settings.VIDEO_END_THRESHOLD_SECONDS:
            return False
        entries = self.catalog.list_approved_media()
        position = self._live_position(entries)
        if self._state.current_media_id is None or position < 0:
            return False
        return entries[position].file_type == "video"

    # Background tasks

    async def _auto_advance_after(self, delay: float, generation: int):
        await self._sleep(delay)
        async with self._mutation():
            if generation != self._generation:
                return
            self._advance_locked("system-auto")

    async def _advance_after_video_end(self, media_id: Optional[int]):
        await self._sleep(settings.VIDEO_END_DEBOUNCE_SECONDS)
        async with self._mutation():
            self._video_end = None
            if self._state.current_media_id != media_id:
                return
            self._advance_locked("system-auto")
