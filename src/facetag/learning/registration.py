"""Reference-face registration for children.

Remote face deletions are best effort: the local change always goes through
and failed cleanups are reported in ``BestEffortResult.cleanup_failures``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..db_service.exceptions import ResourceNotFoundError
from ..providers.exceptions import NoFaceDetected, ProviderError
from .exceptions import Forbidden, IndexingFailed, NoFaceInImage, NotFound
from .schemas import BestEffortResult, ReferenceFaceView, RegisteredFace, RegistrationStatus

if TYPE_CHECKING:
    from ..common.storage import StorageService
    from ..db_service import DBService
    from ..providers.recognition import RecognitionClient


class FaceRegistrationService:
    def __init__(self, db: DBService, recognition: RecognitionClient, storage: StorageService):
        self.db = db
        self.recognition = recognition
        self.storage = storage

    def authorize(self, guardian_id: int, child_id: int) -> None:
        """Raise Forbidden unless the guardian has custody of the child."""
        if not self.db.guardian.is_guardian_of(guardian_id, child_id):
            raise Forbidden("Child not found or not authorized")

    async def _remove_remote(self, face_ids: list[str]) -> list[str]:
        failures: list[str] = []
        for face_id in face_ids:
            if not await self.recognition.remove(face_id):
                failures.append(f"face {face_id} not removed from collection")
        return failures

    async def _remove_objects(self, keys: list[str]) -> list[str]:
        failures: list[str] = []
        for key in keys:
            if not await self.storage.delete_async(key):
                failures.append(f"image {key} not deleted")
        return failures

    async def register(
        self, child_id: int, image: bytes, replace: bool = False
    ) -> BestEffortResult[RegisteredFace]:
        """Index ``image`` as a new reference face of the child.

        With ``replace`` the child's earlier faces are removed once the new one
        is recorded.

        Raises:
            NotFound: unknown child.
            NoFaceInImage: no face detected in the photo.
            IndexingFailed: the provider is unavailable.
        """
        child = self.db.child.get(child_id)
        if child is None:
            raise NotFound("Child not found")
        known_face_ids = {f.face_id for f in self.db.child_face.list_for_child(child_id)}
        legacy_face_id = (
            child.face_id if child.face_id and child.face_id not in known_face_ids else None
        )

        try:
            face_id = await self.recognition.index(str(child_id), image)
        except NoFaceDetected:
            raise NoFaceInImage(
                "No face detected in the image. Please upload a clear, front-facing photo."
            )
        except ProviderError as e:
            logger.error(f"Child {child_id}: face indexing failed: {e}")
            raise IndexingFailed("Face registration is temporarily unavailable")

        try:
            image_key = await self.storage.upload_async(image)
            face = self.db.child_face.add(child_id, face_id, image_key)
        except Exception:
            if not await self.recognition.remove(face_id):
                logger.error(f"Child {child_id}: face {face_id} indexed but not recorded")
            raise
        assert face.id is not None

        failures: list[str] = []
        if replace:
            previous = self.db.child_face.delete_except(child_id, face.id)
            stale_ids = [f.face_id for f in previous]
            stale_keys = [f.image_key for f in previous]
            if legacy_face_id:
                stale_ids.append(legacy_face_id)
            failures += await self._remove_remote(stale_ids)
            failures += await self._remove_objects(stale_keys)
            logger.info(f"Child {child_id}: replaced {len(stale_ids)} earlier face(s)")

        for failure in failures:
            logger.warning(f"Child {child_id}: cleanup failed: {failure}")

        return BestEffortResult(
            value=RegisteredFace(
                child_face_id=face.id,
                face_id=face_id,
                image_key=image_key,
                face_image_url=await self.storage.presigned_url_async(image_key),
            ),
            cleanup_failures=failures,
        )

    async def remove_face(self, child_id: int, child_face_id: int) -> BestEffortResult[int]:
        """Remove one reference face and every tag of the child.

        Returns:
            Number of tags deleted.
        """
        faces = {f.id: f for f in self.db.child_face.list_for_child(child_id)}
        face = faces.get(child_face_id)
        if face is None:
            raise NotFound("Reference face not found")

        # Remote first: a stray indexed face would keep matching the child
        failures = await self._remove_remote([face.face_id])
        try:
            _, tags_deleted = self.db.child_face.remove(child_id, child_face_id)
        except ResourceNotFoundError:
            raise NotFound("Reference face not found")
        failures += await self._remove_objects([face.image_key])

        for failure in failures:
            logger.warning(f"Child {child_id}: cleanup failed: {failure}")
        return BestEffortResult(value=tags_deleted, cleanup_failures=failures)

    async def clear(self, child_id: int) -> BestEffortResult[int]:
        """Remove every reference face of the child and all its tags.

        Returns:
            Number of tags deleted.
        """
        child = self.db.child.get(child_id)
        if child is None:
            raise NotFound("Child not found")
        faces = self.db.child_face.list_for_child(child_id)
        face_ids = [f.face_id for f in faces]
        if child.face_id and child.face_id not in face_ids:
            face_ids.append(child.face_id)

        failures = await self._remove_remote(face_ids)
        try:
            cleared = self.db.child_face.clear(child_id)
        except ResourceNotFoundError:
            raise NotFound("Child not found")
        failures += await self._remove_objects(cleared.image_keys)

        for failure in failures:
            logger.warning(f"Child {child_id}: cleanup failed: {failure}")
        return BestEffortResult(value=cleared.tags_deleted, cleanup_failures=failures)

    async def status(self, child_id: int) -> RegistrationStatus:
        child = self.db.child.get(child_id)
        if child is None:
            raise NotFound("Child not found")
        faces = sorted(
            self.db.child_face.list_for_child(child_id),
            key=lambda f: (f.created_at or 0, f.id or 0),
            reverse=True,
        )
        assert child.id is not None
        return RegistrationStatus(
            child_id=child.id,
            child_name=child.name,
            is_registered=bool(child.face_id or faces),
            face_image_url=(
                await self.storage.presigned_url_async(child.face_image_key)
                if child.face_image_key
                else None
            ),
            registered_at=child.face_registered_at,
            faces=[
                ReferenceFaceView(
                    id=f.id or 0,
                    image_url=await self.storage.presigned_url_async(f.image_key),
                    created_at=f.created_at,
                )
                for f in faces
            ],
        )
