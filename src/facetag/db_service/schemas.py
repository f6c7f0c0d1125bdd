from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..analysis.status import AnalysisState, AnalysisStatus


class SchoolSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    name: str
    enable_ai_analysis: bool = True


class SchoolClassSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    school_id: int
    name: str


class VideoSchema(BaseModel):
    """Pydantic model for Video, with the derived status display."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    class_id: int
    title: str = ""
    video_url: str | None = None

    analysis_state: AnalysisState | None = None
    analysis_progress: float | None = None
    analysis_child_count: int | None = None
    analysis_appearance_count: int | None = None
    analysis_run_id: int | None = None
    analysis_updated_at: int | None = None
    created_at: int | None = None

    @property
    def status(self) -> AnalysisStatus | None:
        if self.analysis_state is None:
            return None
        return AnalysisStatus(
            state=self.analysis_state,
            progress=self.analysis_progress,
            child_count=self.analysis_child_count,
            appearance_count=self.analysis_appearance_count,
        )

    @computed_field
    @property
    def analysis_status(self) -> str | None:
        """Display string for polling clients, e.g. ``waiting_mp4_40%``."""
        status = self.status
        return status.display if status else None


class AnalysisRunSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    video_id: int
    trigger: str = "admin"
    state: AnalysisState
    started_at: int
    finished_at: int | None = None
    error_message: str | None = None


class ChildSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    school_id: int | None = None
    name: str
    face_id: str | None = None
    face_image_key: str | None = None
    face_registered_at: int | None = None


class ChildFaceSchema(BaseModel):
    """A reference face: one indexed image of a child."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    child_id: int
    face_id: str
    image_key: str
    created_at: int | None = None


class RegisteredChild(BaseModel):
    """A child with at least one reference face, as used for match resolution."""

    id: int
    name: str
    face_ids: list[str] = Field(default_factory=list)


class GuardianSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    name: str


class FaceTagSchema(BaseModel):
    """Pydantic model for VideoFaceTag."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    video_id: int
    child_id: int | None = None
    label: str
    start_time: float = Field(ge=0)
    end_time: float = Field(ge=0)
    confidence: float = Field(ge=0, le=100)
    is_tentative: bool = False
    thumbnail_key: str | None = None
    created_at: int | None = None

    @model_validator(mode="after")
    def check_tentative(self) -> Self:
        if self.is_tentative and (self.child_id is None or self.thumbnail_key is None):
            raise ValueError("A tentative tag needs a child and a thumbnail")
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self
