from __future__ import annotations

from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class VerificationAction(StrEnum):
    CONFIRM = "confirm"
    REJECT = "reject"


class BestEffortResult(BaseModel, Generic[T]):
    """Outcome of an operation whose primary effect succeeded.

    ``cleanup_failures`` lists secondary side effects (remote face deletion,
    object deletion) that failed and need manual reconciliation.
    """

    value: T
    cleanup_failures: list[str] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.cleanup_failures


class ResolveResult(BaseModel):
    success: bool = True
    message: str
    tag_id: int
    face_id: str | None = None


class CandidateView(BaseModel):
    """A tentative tag as shown to a guardian for review."""

    id: int
    child_id: int
    child_name: str
    thumbnail_url: str | None
    confidence: float
    video_id: int
    video_title: str
    start_time: float


class ReferenceFaceView(BaseModel):
    id: int
    image_url: str | None
    created_at: int | None


class RegistrationStatus(BaseModel):
    child_id: int
    child_name: str
    is_registered: bool
    face_image_url: str | None = None
    registered_at: int | None = None
    faces: list[ReferenceFaceView] = Field(default_factory=list)


class RegisteredFace(BaseModel):
    child_face_id: int
    face_id: str
    image_key: str
    face_image_url: str | None = None
