import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .catalog import MediaNotFoundError
from .config import settings
from .models import (
    DisplayStateResponse, DurationUpdate, MediaListResponse, MediaUpdate,
    OrderUpdate, SkipRequest, StateResponse, TimeInfo, VideoReport,
)
from .scheduler import PlaybackScheduler, play_duration
from .storage import MediaStore, StorageError

logger = logging.getLogger(__name__)

scheduler: Optional[PlaybackScheduler] = None
store: Optional[MediaStore] = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if scheduler:
        await scheduler.stop()

app = FastAPI(title="Display Sync", lifespan=lifespan)

def mount_uploads(directory: str):
    app.mount("/uploads", StaticFiles(directory=directory), name="uploads")

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.ADMIN_TOKEN and x_token != settings.ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

def get_actor(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    return x_user_id or "admin"

def get_scheduler() -> PlaybackScheduler:
    if not scheduler:
        raise HTTPException(status_code=503, detail="Scheduler not ready")
    return scheduler

def get_store() -> MediaStore:
    if not store:
        raise HTTPException(status_code=503, detail="Storage not ready")
    return store

def actor_user_id(actor: str) -> Optional[int]:
    return int(actor) if actor.isdigit() else None

# Display endpoints

@app.get("/healthz")
async def healthz():
    if not scheduler:
        return {"status": "starting"}
    return {"status": "ok", "phase": scheduler.phase}

@app.get("/api/media/sync-state", response_model=DisplayStateResponse)
async def sync_state(sched: PlaybackScheduler = Depends(get_scheduler)):
    state, media = await sched.sync_snapshot()
    server_time = sched.now()
    item_duration = None
    if state.current_media_id is not None and state.current_index < len(media):
        item_duration = play_duration(media[state.current_index])
    return DisplayStateResponse(
        state=state,
        media=media,
        time_info=TimeInfo(
            server_time=server_time,
            elapsed_time=max(0.0, server_time - state.start_timestamp),
            item_duration=item_duration,
        ),
    )

@app.get("/api/media/approved", response_model=MediaListResponse)
async def approved_media(sched: PlaybackScheduler = Depends(get_scheduler)):
    return MediaListResponse(media=sched.get_media_items())

# Playback control

@app.post("/api/media/sync-state/next", response_model=StateResponse, dependencies=[Depends(get_token)])
async def next_media(actor: str = Depends(get_actor), sched: PlaybackScheduler = Depends(get_scheduler)):
    return StateResponse(state=await sched.advance(actor))

@app.post("/api/media/sync-state/reset", response_model=StateResponse, dependencies=[Depends(get_token)])
async def reset_timeline(actor: str = Depends(get_actor), sched: PlaybackScheduler = Depends(get_scheduler)):
    return StateResponse(state=await sched.reset_timeline(actor))

@app.post("/api/media/sync-state/skip", response_model=StateResponse, dependencies=[Depends(get_token)])
async def skip_to_media(body: SkipRequest, actor: str = Depends(get_actor),
                        sched: PlaybackScheduler = Depends(get_scheduler)):
    return StateResponse(state=await sched.skip_to_media(body.index, actor))

@app.post("/api/media/sync-state/duration", response_model=StateResponse, dependencies=[Depends(get_token)])
async def update_duration(body: DurationUpdate, actor: str = Depends(get_actor),
                          sched: PlaybackScheduler = Depends(get_scheduler)):
    try:
        state = await sched.update_media_duration(body.media_id, body.duration, actor)
    except MediaNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError:
        raise HTTPException(status_code=503, detail="Could not save duration")
    return StateResponse(state=state)

@app.post("/api/media/sync-state/video", response_model=StateResponse, dependencies=[Depends(get_token)])
async def report_video(body: VideoReport, actor: str = Depends(get_actor),
                       sched: PlaybackScheduler = Depends(get_scheduler)):
    state = await sched.report_video_state(body.is_playing, body.current_time, body.duration, actor)
    return StateResponse(state=state)

# Moderation and content management. Every change to the approved set clears the catalog cache.

def _apply_media_change(action: str, media_id: Optional[int], change):
    try:
        changed = change()
    except StorageError as e:
        logger.error(f"{action} failed for media {media_id}: {e}")
        raise HTTPException(status_code=503, detail="Internal server error")
    if changed is False:
        raise HTTPException(status_code=404, detail="Media not found or already processed")
    get_scheduler().clear_media_cache()
    return {"success": True}

@app.post("/api/media/approve/{media_id}", dependencies=[Depends(get_token)])
async def approve_media(media_id: int, actor: str = Depends(get_actor), db: MediaStore = Depends(get_store)):
    return _apply_media_change("approve", media_id, lambda: db.approve_media(media_id, actor_user_id(actor)))

@app.post("/api/media/reject/{media_id}", dependencies=[Depends(get_token)])
async def reject_media(media_id: int, actor: str = Depends(get_actor), db: MediaStore = Depends(get_store)):
    return _apply_media_change("reject", media_id, lambda: db.reject_media(media_id, actor_user_id(actor)))

@app.delete("/api/media/{media_id}", dependencies=[Depends(get_token)])
async def delete_media(media_id: int, db: MediaStore = Depends(get_store)):
    return _apply_media_change("delete", media_id, lambda: db.delete_media(media_id))

@app.post("/api/media/order", dependencies=[Depends(get_token)])
async def update_order(body: OrderUpdate, db: MediaStore = Depends(get_store)):
    return _apply_media_change("reorder", None, lambda: db.update_media_order(body.items))

@app.put("/api/media/{media_id}", dependencies=[Depends(get_token)])
async def update_media(media_id: int, body: MediaUpdate, db: MediaStore = Depends(get_store)):
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    return _apply_media_change("update", media_id, lambda: db.update_media(media_id, fields))

# Operations

@app.get("/status", dependencies=[Depends(get_token)])
async def status():
    if not scheduler:
        return {"status": "not_ready"}

    state = scheduler.get_state()
    return {
        "phase": scheduler.phase,
        "current_index": state.current_index,
        "current_media_id": state.current_media_id,
        "changed_by": state.changed_by,
        "elapsed": scheduler.elapsed(),
        "pending_delay": scheduler.pending_delay,
        "config": {
            "image_default": settings.IMAGE_DEFAULT_DURATION_SECONDS,
            "video_default": settings.VIDEO_DEFAULT_DURATION_SECONDS,
            "reconcile_interval": settings.RECONCILE_INTERVAL_SECONDS
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    # Simple prometheus-style text format
    if not scheduler:
        return ""

    state = scheduler.get_state()
    lines = [
        f'display_sync_playing {1 if scheduler.is_armed else 0}',
        f'display_sync_current_index {state.current_index}',
        f'display_sync_last_update_timestamp {state.last_update_time}',
        f'display_sync_catalog_size {len(scheduler.get_media_items())}'
    ]
    return "\n".join(lines)
