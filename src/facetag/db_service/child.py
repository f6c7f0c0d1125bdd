from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..common.utils import now_timestamp
from . import database
from .base import BaseDBService, timed
from .database import with_retry
from .exceptions import ResourceNotFoundError
from .models import Child, ChildFace, Guardian, GuardianChild, VideoFaceTag
from .schemas import ChildFaceSchema, ChildSchema, GuardianSchema, RegisteredChild


class ClearedFaces(BaseModel):
    """What was removed locally when a child's faces were cleared."""

    face_ids: list[str] = Field(default_factory=list)
    image_keys: list[str] = Field(default_factory=list)
    tags_deleted: int = 0


def repoint_primary(db: Session, child: Child) -> None:
    """Point the child's primary face at its most recent reference face, or clear it."""
    latest = db.execute(
        select(ChildFace)
        .where(ChildFace.child_id == child.id)
        .order_by(ChildFace.created_at.desc(), ChildFace.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if latest is None:
        child.face_id = None
        child.face_image_key = None
        child.face_registered_at = None
    else:
        child.face_id = latest.face_id
        child.face_image_key = latest.image_key
        child.face_registered_at = latest.created_at


class ChildDBService(BaseDBService[ChildSchema]):
    model_class = Child
    schema_class = ChildSchema

    @timed
    @with_retry(max_retries=10)
    def get_registered(self, child_ids: list[int] | None = None) -> list[RegisteredChild]:
        """Children with at least one reference face, with every face id they own.

        The legacy primary pointer counts as a face even without a ChildFace row.
        """
        db = database.SessionLocal()
        try:
            stmt = select(Child).order_by(Child.id)
            if child_ids is not None:
                if not child_ids:
                    return []
                stmt = stmt.where(Child.id.in_(child_ids))
            children = db.execute(stmt).scalars().all()

            face_rows = db.execute(
                select(ChildFace.child_id, ChildFace.face_id).order_by(ChildFace.id)
            ).all()
            faces_by_child: dict[int, list[str]] = {}
            for child_id, face_id in face_rows:
                faces_by_child.setdefault(child_id, []).append(face_id)

            registered: list[RegisteredChild] = []
            for child in children:
                face_ids = list(faces_by_child.get(child.id, []))
                if child.face_id and child.face_id not in face_ids:
                    face_ids.append(child.face_id)
                if face_ids:
                    registered.append(
                        RegisteredChild(id=child.id, name=child.name, face_ids=face_ids)
                    )
            return registered
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def has_registered(self) -> bool:
        """Whether any child anywhere has a reference face."""
        db = database.SessionLocal()
        try:
            if db.execute(select(ChildFace.id).limit(1)).first() is not None:
                return True
            return (
                db.execute(select(Child.id).where(Child.face_id.is_not(None)).limit(1)).first()
                is not None
            )
        finally:
            db.close()


class ChildFaceDBService(BaseDBService[ChildFaceSchema]):
    """Reference faces. Every write keeps the child's primary pointer current."""

    model_class = ChildFace
    schema_class = ChildFaceSchema

    @timed
    @with_retry(max_retries=10)
    def list_for_child(self, child_id: int) -> list[ChildFaceSchema]:
        db = database.SessionLocal()
        try:
            faces = (
                db.execute(
                    select(ChildFace)
                    .where(ChildFace.child_id == child_id)
                    .order_by(ChildFace.created_at, ChildFace.id)
                )
                .scalars()
                .all()
            )
            return [self._to_schema(f) for f in faces]
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def add(self, child_id: int, face_id: str, image_key: str) -> ChildFaceSchema:
        """Create a reference face and make it the child's primary face."""
        db = database.SessionLocal()
        try:
            child = db.get(Child, child_id)
            if child is None:
                raise ResourceNotFoundError(f"Child {child_id} not found")
            face = ChildFace(
                child_id=child_id,
                face_id=face_id,
                image_key=image_key,
                created_at=now_timestamp(),
            )
            db.add(face)
            db.flush()
            child.face_id = face.face_id
            child.face_image_key = face.image_key
            child.face_registered_at = face.created_at
            db.commit()
            db.refresh(face)
            logger.info(f"Child {child_id}: reference face {face_id} added")
            return self._to_schema(face)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def remove(self, child_id: int, child_face_id: int) -> tuple[ChildFaceSchema, int]:
        """Delete one reference face and every tag of the child.

        Returns:
            The deleted face and the number of tags removed.
        """
        db = database.SessionLocal()
        try:
            face = db.get(ChildFace, child_face_id)
            if face is None or face.child_id != child_id:
                raise ResourceNotFoundError(
                    f"Reference face {child_face_id} not found for child {child_id}"
                )
            child = db.get(Child, child_id)
            assert child is not None
            removed = self._to_schema(face)

            db.delete(face)
            result = db.execute(delete(VideoFaceTag).where(VideoFaceTag.child_id == child_id))
            db.flush()
            repoint_primary(db, child)
            db.commit()
            tags_deleted = result.rowcount or 0
            logger.info(
                f"Child {child_id}: reference face {removed.face_id} removed, "
                f"{tags_deleted} tag(s) deleted"
            )
            return removed, tags_deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def delete_except(self, child_id: int, keep_id: int) -> list[ChildFaceSchema]:
        """Delete every reference face of a child but one. Tags are kept."""
        db = database.SessionLocal()
        try:
            faces = (
                db.execute(
                    select(ChildFace).where(ChildFace.child_id == child_id, ChildFace.id != keep_id)
                )
                .scalars()
                .all()
            )
            removed = [self._to_schema(f) for f in faces]
            for face in faces:
                db.delete(face)
            db.flush()
            child = db.get(Child, child_id)
            if child is not None:
                repoint_primary(db, child)
            db.commit()
            return removed
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def clear(self, child_id: int) -> ClearedFaces:
        """Delete every reference face of a child (legacy pointer included) and all its tags."""
        db = database.SessionLocal()
        try:
            child = db.get(Child, child_id)
            if child is None:
                raise ResourceNotFoundError(f"Child {child_id} not found")

            faces = db.execute(select(ChildFace).where(ChildFace.child_id == child_id)).scalars().all()
            cleared = ClearedFaces(
                face_ids=[f.face_id for f in faces],
                image_keys=[f.image_key for f in faces],
            )
            if child.face_id and child.face_id not in cleared.face_ids:
                cleared.face_ids.append(child.face_id)
                if child.face_image_key:
                    cleared.image_keys.append(child.face_image_key)

            db.execute(delete(ChildFace).where(ChildFace.child_id == child_id))
            result = db.execute(delete(VideoFaceTag).where(VideoFaceTag.child_id == child_id))
            child.face_id = None
            child.face_image_key = None
            child.face_registered_at = None
            db.commit()
            cleared.tags_deleted = result.rowcount or 0
            logger.info(
                f"Child {child_id}: cleared {len(cleared.face_ids)} face(s), "
                f"{cleared.tags_deleted} tag(s)"
            )
            return cleared
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class GuardianDBService(BaseDBService[GuardianSchema]):
    model_class = Guardian
    schema_class = GuardianSchema

    @timed
    @with_retry(max_retries=10)
    def is_guardian_of(self, guardian_id: int, child_id: int) -> bool:
        db = database.SessionLocal()
        try:
            return db.get(GuardianChild, (guardian_id, child_id)) is not None
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def child_ids(self, guardian_id: int) -> list[int]:
        db = database.SessionLocal()
        try:
            return list(
                db.execute(
                    select(GuardianChild.child_id)
                    .where(GuardianChild.guardian_id == guardian_id)
                    .order_by(GuardianChild.child_id)
                )
                .scalars()
                .all()
            )
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def link(self, guardian_id: int, child_id: int) -> None:
        """Record a custodial relationship (idempotent)."""
        db = database.SessionLocal()
        try:
            if db.get(GuardianChild, (guardian_id, child_id)) is None:
                db.add(GuardianChild(guardian_id=guardian_id, child_id=child_id))
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
