"""Guardian review of tentative detections.

Confirming a tentative tag indexes its thumbnail as a new reference face of
the child; this is how recognition improves over time. Rejecting deletes the
tag and nothing else.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..common.storage import StorageError, is_legacy_key
from ..providers.exceptions import NoFaceDetected, ProviderError
from .exceptions import Forbidden, IndexingFailed, InvalidAction, NoThumbnail, NotFound
from .schemas import CandidateView, ResolveResult, VerificationAction

if TYPE_CHECKING:
    from ..common.storage import StorageService
    from ..db_service import DBService
    from ..providers.recognition import RecognitionClient


class VerificationService:
    def __init__(self, db: DBService, recognition: RecognitionClient, storage: StorageService):
        self.db = db
        self.recognition = recognition
        self.storage = storage

    async def resolve(self, guardian_id: int, tag_id: int, action: str) -> ResolveResult:
        """Confirm or reject a detection on behalf of a guardian.

        Raises:
            NotFound: no such tag, or the tag has no child.
            Forbidden: the guardian has no custodial link to the tag's child.
            InvalidAction: ``action`` is neither confirm nor reject.
            NoThumbnail: the tag has no readable thumbnail to learn from.
            IndexingFailed: the thumbnail could not be indexed.
        """
        tag = self.db.tag.get(tag_id)
        if tag is None or tag.child_id is None:
            raise NotFound("Tag not found")
        if not self.db.guardian.is_guardian_of(guardian_id, tag.child_id):
            raise Forbidden("This is not your child")
        try:
            verb = VerificationAction(action)
        except ValueError:
            raise InvalidAction(f"Invalid action: {action!r}")

        if verb == VerificationAction.REJECT:
            self.db.tag.delete_one(tag_id)
            logger.info(f"Guardian {guardian_id} rejected tag {tag_id}")
            return ResolveResult(message="Rejected", tag_id=tag_id)

        if not tag.is_tentative:
            return ResolveResult(message="Already confirmed", tag_id=tag_id)

        if not tag.thumbnail_key:
            raise NoThumbnail("No thumbnail to learn from")
        try:
            image = await self.storage.download_async(tag.thumbnail_key)
        except StorageError as e:
            logger.error(f"Tag {tag_id}: thumbnail {tag.thumbnail_key} unreadable: {e}")
            raise NoThumbnail("Thumbnail could not be loaded")

        try:
            face_id = await self.recognition.index(str(tag.child_id), image)
        except NoFaceDetected:
            raise IndexingFailed("No face could be learned from this image, please try again later")
        except ProviderError as e:
            logger.error(f"Tag {tag_id}: indexing failed: {e}")
            raise IndexingFailed("Face indexing is temporarily unavailable")

        try:
            image_key = tag.thumbnail_key
            if is_legacy_key(image_key):
                # Reference images are kept in object storage
                image_key = await self.storage.upload_async(image)
            self.db.tag.confirm(tag_id, face_id, image_key)
        except Exception:
            if not await self.recognition.remove(face_id):
                logger.error(
                    f"Tag {tag_id}: face {face_id} indexed but not recorded; "
                    f"remove it from the collection manually"
                )
            raise

        logger.info(f"Guardian {guardian_id} confirmed tag {tag_id} (face {face_id})")
        return ResolveResult(message="Learned and Confirmed", tag_id=tag_id, face_id=face_id)

    async def list_candidates(self, guardian_id: int) -> list[CandidateView]:
        """Tentative tags of the guardian's children, newest first."""
        child_ids = self.db.guardian.child_ids(guardian_id)
        tags = self.db.tag.list_tentative_for_children(child_ids)

        names: dict[int, str] = {}
        titles: dict[int, str] = {}
        candidates: list[CandidateView] = []
        for tag in tags:
            assert tag.id is not None and tag.child_id is not None
            if tag.child_id not in names:
                child = self.db.child.get(tag.child_id)
                names[tag.child_id] = child.name if child else "Unknown"
            if tag.video_id not in titles:
                video = self.db.video.get(tag.video_id)
                titles[tag.video_id] = video.title if video else ""

            thumbnail_url = None
            if tag.thumbnail_key:
                thumbnail_url = await self.storage.presigned_url_async(tag.thumbnail_key)

            candidates.append(
                CandidateView(
                    id=tag.id,
                    child_id=tag.child_id,
                    child_name=names[tag.child_id],
                    thumbnail_url=thumbnail_url,
                    confidence=tag.confidence,
                    video_id=tag.video_id,
                    video_title=titles[tag.video_id],
                    start_time=tag.start_time,
                )
            )
        return candidates
