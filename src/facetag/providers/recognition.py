"""Recognition provider client (AWS Rekognition face collection).

Faces are indexed with the owning child's id as ``ExternalImageId`` so that
search hits resolve to a child without a lookup table. boto3 is blocking, so
every public coroutine runs its call in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from pydantic import ValidationError

from .exceptions import NoFaceDetected, ProviderError
from .schemas import DetectedFace, FaceMatch, IndexedFace

SEARCH_MAX_FACES = 10


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class RecognitionClient:
    def __init__(self, client: Any, collection_id: str):
        self.client = client
        self.collection_id = collection_id
        self._collection_ready = False

    # ─────────────────────────────────────
    # Blocking calls
    # ─────────────────────────────────────

    def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        try:
            self.client.create_collection(CollectionId=self.collection_id)
            logger.info(f"Created face collection {self.collection_id}")
        except ClientError as e:
            if _error_code(e) != "ResourceAlreadyExistsException":
                raise ProviderError(f"CreateCollection failed: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(f"CreateCollection failed: {e}") from e
        self._collection_ready = True

    def _index(self, owner_key: str, image: bytes) -> str:
        try:
            response = self.client.index_faces(
                CollectionId=self.collection_id,
                Image={"Bytes": image},
                ExternalImageId=owner_key,
                MaxFaces=1,
                QualityFilter="AUTO",
                DetectionAttributes=["DEFAULT"],
            )
        except ClientError as e:
            if _error_code(e) == "InvalidParameterException":
                raise NoFaceDetected(f"No indexable face for {owner_key}") from e
            raise ProviderError(f"IndexFaces failed: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(f"IndexFaces failed: {e}") from e

        records = response.get("FaceRecords") or []
        if not records:
            raise NoFaceDetected(f"No indexable face for {owner_key}")
        try:
            face = IndexedFace.model_validate(records[0]["Face"])
        except (KeyError, ValidationError) as e:
            raise ProviderError(f"Unexpected IndexFaces response: {e}") from e
        logger.info(f"Indexed face {face.face_id} for {owner_key}")
        return face.face_id

    def _search(self, image: bytes, min_similarity: float) -> list[FaceMatch]:
        try:
            response = self.client.search_faces_by_image(
                CollectionId=self.collection_id,
                Image={"Bytes": image},
                MaxFaces=SEARCH_MAX_FACES,
                FaceMatchThreshold=min_similarity,
            )
        except ClientError as e:
            if _error_code(e) == "InvalidParameterException":
                # No face in the search image
                return []
            raise ProviderError(f"SearchFacesByImage failed: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(f"SearchFacesByImage failed: {e}") from e

        matches: list[FaceMatch] = []
        for hit in response.get("FaceMatches") or []:
            face = hit.get("Face") or {}
            if not face.get("FaceId"):
                continue
            matches.append(
                FaceMatch(
                    face_id=face["FaceId"],
                    external_id=face.get("ExternalImageId"),
                    similarity=float(hit.get("Similarity") or 0.0),
                )
            )
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def _remove(self, face_id: str) -> bool:
        try:
            self.client.delete_faces(CollectionId=self.collection_id, FaceIds=[face_id])
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to delete face {face_id} from {self.collection_id}: {e}")
            return False
        logger.info(f"Deleted face {face_id} from {self.collection_id}")
        return True

    def _detect_faces(self, image: bytes) -> list[DetectedFace]:
        try:
            response = self.client.detect_faces(Image={"Bytes": image}, Attributes=["DEFAULT"])
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"DetectFaces failed: {e}") from e
        try:
            return [DetectedFace.model_validate(d) for d in response.get("FaceDetails") or []]
        except ValidationError as e:
            raise ProviderError(f"Unexpected DetectFaces response: {e}") from e

    # ─────────────────────────────────────
    # Async API
    # ─────────────────────────────────────

    async def ensure_collection(self) -> None:
        """Create the collection if needed. Idempotent."""
        await asyncio.to_thread(self._ensure_collection)

    async def index(self, owner_key: str, image: bytes) -> str:
        """Index the most prominent face of ``image`` under ``owner_key``.

        Raises:
            NoFaceDetected: nothing indexable in the image.
            ProviderError: any other provider failure.
        """
        await self.ensure_collection()
        return await asyncio.to_thread(self._index, owner_key, image)

    async def search(self, image: bytes, min_similarity: float) -> list[FaceMatch]:
        """Collection faces similar to the largest face in ``image``, best first."""
        await self.ensure_collection()
        return await asyncio.to_thread(self._search, image, min_similarity)

    async def remove(self, face_id: str) -> bool:
        """Best effort: failures are logged and reported as False."""
        return await asyncio.to_thread(self._remove, face_id)

    async def detect_faces(self, image: bytes) -> list[DetectedFace]:
        return await asyncio.to_thread(self._detect_faces, image)
