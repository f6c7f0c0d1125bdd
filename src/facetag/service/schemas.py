from __future__ import annotations

from pydantic import BaseModel, Field

from ..analysis.face_search import ChildAppearances
from ..db_service.schemas import VideoSchema


class AnalysisStatusResponse(BaseModel):
    """Polling view of a video's analysis."""

    video_id: int
    state: str | None = None
    status: str | None = Field(None, description="Display string, e.g. waiting_mp4_40%")
    progress: float | None = None
    child_count: int | None = None
    appearance_count: int | None = None
    run_id: int | None = None
    updated_at: int | None = None

    @classmethod
    def from_video(cls, video: VideoSchema) -> AnalysisStatusResponse:
        assert video.id is not None
        return cls(
            video_id=video.id,
            state=video.analysis_state.value if video.analysis_state else None,
            status=video.analysis_status,
            progress=video.analysis_progress,
            child_count=video.analysis_child_count,
            appearance_count=video.analysis_appearance_count,
            run_id=video.analysis_run_id,
            updated_at=video.analysis_updated_at,
        )


class SweepStartResponse(BaseModel):
    started: bool
    message: str


class VerifyRequest(BaseModel):
    action: str = Field(..., description="confirm or reject")


class VerifyResponse(BaseModel):
    success: bool
    message: str


class FaceUploadResponse(BaseModel):
    success: bool = True
    child_face_id: int
    face_id: str
    face_image_url: str | None = None
    cleanup_failures: list[str] = Field(default_factory=list)


class FaceDeleteResponse(BaseModel):
    success: bool = True
    tags_deleted: int = 0
    cleanup_failures: list[str] = Field(default_factory=list)


class FaceSearchResponse(BaseModel):
    success: bool = True
    detections_found: int
    created: int
    message: str


class FaceSearchSummaryResponse(BaseModel):
    video_id: int
    detections: list[ChildAppearances] = Field(default_factory=list)
