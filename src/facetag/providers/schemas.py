from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# ─────────────────────────────────────
# Delivery provider (Cloudflare Stream)
# ─────────────────────────────────────


class DownloadInfo(BaseModel):
    """One entry of the Stream downloads API (``result.default``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str
    url: str | None = None
    percent_complete: float = Field(default=0.0, alias="percentComplete")


class DownloadsResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    default: DownloadInfo | None = None


class DownloadsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    result: DownloadsResult | None = None


class RenditionStatus(BaseModel):
    """Readiness of the downloadable rendition of a video."""

    exists: bool
    ready: bool = False
    url: str | None = None
    percent: float = 0.0


# ─────────────────────────────────────
# Recognition provider (AWS Rekognition)
# ─────────────────────────────────────


class BoundingBox(BaseModel):
    """Ratios of the image width/height, as returned by Rekognition."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    width: float = Field(alias="Width")
    height: float = Field(alias="Height")
    left: float = Field(alias="Left")
    top: float = Field(alias="Top")


class DetectedFace(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bounding_box: BoundingBox = Field(alias="BoundingBox")
    confidence: float = Field(default=0.0, alias="Confidence")


class IndexedFace(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    face_id: str = Field(alias="FaceId")
    external_image_id: str | None = Field(default=None, alias="ExternalImageId")


class FaceMatch(BaseModel):
    """A search hit: a collection face and its similarity (0-100)."""

    face_id: str
    external_id: str | None = None
    similarity: float
