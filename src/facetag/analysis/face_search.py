"""Incremental face searches that add tags without replacing existing ones.

``OnDemandFaceSearch`` is triggered by a guardian for one video and only
looks for that guardian's children. ``CandidateSweep`` walks every video at a
low similarity threshold and records weak matches as tentative tags for
guardians to review.
"""

from __future__ import annotations

import asyncio
import io
from typing import TYPE_CHECKING

from loguru import logger
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from ..common.storage import StorageError
from ..common.utils import extract_stream_id
from ..db_service.schemas import FaceTagSchema, VideoSchema
from ..learning.exceptions import NoRegisteredFaces, NotFound, UnsupportedVideo
from ..providers.exceptions import ProviderError
from .aggregation import ChildResolver, SampleHits, aggregate

if TYPE_CHECKING:
    from ..common.storage import StorageService
    from ..db_service import DBService
    from ..providers.recognition import RecognitionClient
    from ..providers.schemas import BoundingBox
    from .sampler import FrameSampler


# ─────────────────────────────────────
# Results
# ─────────────────────────────────────


class Appearance(BaseModel):
    id: int
    start_time: float
    end_time: float
    confidence: float


class ChildAppearances(BaseModel):
    child_id: int
    child_name: str
    face_image_url: str | None = None
    appearances: list[Appearance] = Field(default_factory=list)


class SearchSummary(BaseModel):
    children: list[ChildAppearances] = Field(default_factory=list)

    @property
    def detections(self) -> list[ChildAppearances]:
        return [c for c in self.children if c.appearances]


class OnDemandResult(BaseModel):
    detections_found: int
    created: int


class SweepResult(BaseModel):
    video_id: int
    frames: int = 0
    confirmed: int = 0
    tentative: int = 0


class SweepSummary(BaseModel):
    processed: int = 0
    detections: int = 0
    candidates: int = 0


# ─────────────────────────────────────
# On-demand search
# ─────────────────────────────────────


class OnDemandFaceSearch:
    def __init__(
        self,
        db: DBService,
        recognition: RecognitionClient,
        sampler: FrameSampler,
        storage: StorageService,
        threshold: float = 70.0,
    ):
        self.db = db
        self.recognition = recognition
        self.sampler = sampler
        self.storage = storage
        self.threshold = threshold

    def _video(self, video_id: int) -> VideoSchema:
        video = self.db.video.get(video_id)
        if video is None:
            raise NotFound("Video not found")
        return video

    async def run(self, guardian_id: int, video_id: int) -> OnDemandResult:
        """Search the video for the guardian's registered children.

        Raises:
            NotFound: unknown video.
            NoRegisteredFaces: none of the guardian's children has a face.
            UnsupportedVideo: the video is not hosted by the delivery provider.
        """
        video = self._video(video_id)
        registered = self.db.child.get_registered(self.db.guardian.child_ids(guardian_id))
        if not registered:
            raise NoRegisteredFaces(
                "No registered faces. Please register your child's face in settings."
            )
        external_id = extract_stream_id(video.video_url)
        if external_id is None:
            raise UnsupportedVideo("Only delivery-provider videos are supported")

        await self.recognition.ensure_collection()
        resolver = ChildResolver(registered)

        hits: list[SampleHits] = []
        async for sample in self.sampler.samples(external_id):
            try:
                matches = await self.recognition.search(sample.image, self.threshold)
            except ProviderError as e:
                logger.warning(f"Video {video_id}: search failed at {sample.offset:g}s: {e}")
                continue
            if matches:
                hits.append(SampleHits(offset=sample.offset, matches=matches))

        # Resolver only knows this guardian's children
        tags = aggregate(video_id, hits, resolver, self.sampler.stride)
        created = 0
        for tag in tags:
            _, was_created = self.db.tag.upsert_if_absent(tag)
            created += int(was_created)

        logger.info(
            f"Video {video_id}: on-demand search for guardian {guardian_id} found "
            f"{len(tags)} appearance(s), {created} new"
        )
        return OnDemandResult(detections_found=len(tags), created=created)

    async def summary(self, guardian_id: int, video_id: int) -> SearchSummary:
        """Existing appearances of the guardian's registered children in the video."""
        self._video(video_id)
        registered = self.db.child.get_registered(self.db.guardian.child_ids(guardian_id))
        if not registered:
            return SearchSummary()

        tags = self.db.tag.list_for_video(video_id, [c.id for c in registered])
        children: list[ChildAppearances] = []
        for reg in registered:
            child = self.db.child.get(reg.id)
            face_key = child.face_image_key if child else None
            children.append(
                ChildAppearances(
                    child_id=reg.id,
                    child_name=reg.name,
                    face_image_url=(
                        await self.storage.presigned_url_async(face_key) if face_key else None
                    ),
                    appearances=[
                        Appearance(
                            id=t.id or 0,
                            start_time=t.start_time,
                            end_time=t.end_time,
                            confidence=t.confidence,
                        )
                        for t in tags
                        if t.child_id == reg.id
                    ],
                )
            )
        return SearchSummary(children=children)


# ─────────────────────────────────────
# Candidate sweep
# ─────────────────────────────────────


def crop_face(image: Image.Image, box: BoundingBox, min_px: int) -> bytes | None:
    """JPEG crop of a face given a ratio bounding box; None when it is too small."""
    width, height = image.size
    left = int(max(0.0, box.left * width))
    top = int(max(0.0, box.top * height))
    w = min(int(box.width * width), width - left)
    h = min(int(box.height * height), height - top)
    if w < min_px or h < min_px:
        return None
    buffer = io.BytesIO()
    image.crop((left, top, left + w, top + h)).save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


class CandidateSweep:
    """Low-threshold sweep producing confirmed and tentative tags.

    Every detected face is cropped and searched on its own. The best match is
    confirmed at ``confirm_threshold`` and above, tentative below. Existing
    tags are never replaced, so guardian feedback survives re-runs.
    """

    def __init__(
        self,
        db: DBService,
        recognition: RecognitionClient,
        sampler: FrameSampler,
        storage: StorageService,
        candidate_threshold: float = 10.0,
        confirm_threshold: float = 70.0,
        tag_duration: float = 3.0,
        min_face_px: int = 40,
        frame_delay: float = 0.1,
    ):
        self.db = db
        self.recognition = recognition
        self.sampler = sampler
        self.storage = storage
        self.candidate_threshold = candidate_threshold
        self.confirm_threshold = confirm_threshold
        self.tag_duration = tag_duration
        self.min_face_px = min_face_px
        self.frame_delay = frame_delay

    async def run_all(self) -> SweepSummary:
        summary = SweepSummary()
        registered = self.db.child.get_registered()
        if not registered:
            logger.info("Candidate sweep: no registered children")
            return summary

        resolver = ChildResolver(registered)
        await self.recognition.ensure_collection()
        for video in self.db.video.list_with_source():
            if extract_stream_id(video.video_url) is None:
                logger.debug(f"Candidate sweep: skipping video {video.id}, no delivery id")
                continue
            result = await self.run_for_video(video, resolver)
            summary.processed += 1
            summary.detections += result.confirmed
            summary.candidates += result.tentative

        logger.info(
            f"Candidate sweep complete: {summary.processed} video(s), "
            f"{summary.detections} match(es), {summary.candidates} candidate(s)"
        )
        return summary

    async def run_for_video(
        self, video: VideoSchema, resolver: ChildResolver | None = None
    ) -> SweepResult:
        assert video.id is not None
        result = SweepResult(video_id=video.id)
        external_id = extract_stream_id(video.video_url)
        if external_id is None:
            return result
        if resolver is None:
            resolver = ChildResolver(self.db.child.get_registered())
        if len(resolver) == 0:
            return result

        async for sample in self.sampler.samples(external_id):
            result.frames += 1
            try:
                await self._process_frame(video.id, sample.offset, sample.image, resolver, result)
            except (ProviderError, StorageError) as e:
                logger.warning(f"Video {video.id}: frame {sample.offset:g}s skipped: {e}")
            except (UnidentifiedImageError, OSError) as e:
                logger.warning(f"Video {video.id}: frame {sample.offset:g}s unreadable: {e}")
            if self.frame_delay:
                await asyncio.sleep(self.frame_delay)
        return result

    async def _process_frame(
        self,
        video_id: int,
        offset: float,
        data: bytes,
        resolver: ChildResolver,
        result: SweepResult,
    ) -> None:
        faces = await self.recognition.detect_faces(data)
        if not faces:
            return

        with Image.open(io.BytesIO(data)) as frame:
            image = frame.convert("RGB")

        for face in faces:
            crop = crop_face(image, face.bounding_box, self.min_face_px)
            if crop is None:
                continue
            matches = await self.recognition.search(crop, self.candidate_threshold)
            if not matches:
                continue
            top = matches[0]
            child = resolver.resolve(top)
            if child is None:
                continue
            if self.db.tag.exists(video_id, child.id, offset):
                continue

            confirmed = top.similarity >= self.confirm_threshold
            key = await self.storage.upload_async(crop)
            _, created = self.db.tag.upsert_if_absent(
                FaceTagSchema(
                    video_id=video_id,
                    child_id=child.id,
                    label=child.name if confirmed else f"{child.name}?",
                    start_time=offset,
                    end_time=offset + self.tag_duration,
                    confidence=min(top.similarity, 100.0),
                    is_tentative=not confirmed,
                    thumbnail_key=key,
                )
            )
            if not created:
                await self.storage.delete_async(key)
                continue

            if confirmed:
                result.confirmed += 1
                logger.info(f"  [+] MATCH: {child.name} at {offset:g}s ({top.similarity:.2f}%)")
            else:
                result.tentative += 1
                logger.info(f"  [?] CANDIDATE: {child.name}? at {offset:g}s ({top.similarity:.2f}%)")
