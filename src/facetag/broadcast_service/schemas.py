from __future__ import annotations

from pydantic import BaseModel, Field


class VideoStatusPayload(BaseModel):
    """Payload for video analysis status broadcast."""

    video_id: int = Field(..., description="Video ID")
    state: str = Field(..., description="Analysis state (queued, waiting_mp4, ..., complete)")
    status: str = Field(..., description="Display string, e.g. waiting_mp4_40%")
    progress: float | None = Field(default=None, description="Rendition progress while waiting")
    child_count: int | None = Field(default=None, description="Children found (on completion)")
    appearance_count: int | None = Field(
        default=None, description="Appearances found (on completion)"
    )
    timestamp: int = Field(..., description="Event timestamp (milliseconds)")


class ServiceStatus(BaseModel):
    """Liveness of the service, retained with a last-will fallback."""

    status: str = Field(..., description="online or offline")
    timestamp: int = Field(..., description="Event timestamp (milliseconds)")
