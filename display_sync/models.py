from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class MediaCatalogEntry(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    file_type: Literal["image", "video"]
    duration_seconds: Optional[float] = None
    display_order: Optional[int] = None
    approved_at: Optional[str] = None
    created_at: Optional[str] = None
    file_url: Optional[str] = None
    uploaded_by: Optional[str] = None
    full_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class VideoState(CamelModel):
    is_playing: bool = True
    current_time: float = 0.0
    duration: float = 0.0
    last_updated: float = 0.0

class TimelineState(CamelModel):
    current_index: int = 0
    current_media_id: Optional[int] = None
    start_timestamp: float = 0.0
    last_update_time: float = 0.0
    video_state: VideoState = Field(default_factory=VideoState)
    changed_by: str = "system"

class TimeInfo(CamelModel):
    server_time: float
    elapsed_time: float
    item_duration: Optional[float] = None

# API payloads

class StateResponse(CamelModel):
    state: TimelineState

class DisplayStateResponse(CamelModel):
    state: TimelineState
    media: List[MediaCatalogEntry]
    time_info: TimeInfo

class MediaListResponse(CamelModel):
    media: List[MediaCatalogEntry]

class SkipRequest(CamelModel):
    index: int

class DurationUpdate(CamelModel):
    media_id: int
    duration: float = Field(gt=0)

class VideoReport(CamelModel):
    is_playing: bool
    current_time: float = Field(ge=0)
    duration: float = Field(ge=0)

class OrderItem(CamelModel):
    id: int
    display_order: Optional[int] = None

class OrderUpdate(CamelModel):
    items: List[OrderItem]

class MediaUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[float] = Field(default=None, gt=0)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("title")
    @classmethod
    def title_not_null(cls, v):
        if v is None:
            raise ValueError("title cannot be null")
        return v
