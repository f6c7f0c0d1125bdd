from __future__ import annotations

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..common.utils import now_timestamp
from . import database
from .base import BaseDBService, timed
from .child import repoint_primary
from .database import with_retry
from .exceptions import ResourceNotFoundError, RunSupersededError
from .models import Child, ChildFace, Video, VideoFaceTag
from .schemas import ChildFaceSchema, FaceTagSchema

CONFIRMED_CONFIDENCE = 100.0


def _new_row(tag: FaceTagSchema, now: int) -> VideoFaceTag:
    values = tag.model_dump(exclude={"id", "created_at"})
    return VideoFaceTag(**values, created_at=tag.created_at or now)


def _find(db: Session, video_id: int, child_id: int | None, start_time: float) -> VideoFaceTag | None:
    child_clause = (
        VideoFaceTag.child_id.is_(None) if child_id is None else VideoFaceTag.child_id == child_id
    )
    return db.execute(
        select(VideoFaceTag).where(
            VideoFaceTag.video_id == video_id,
            child_clause,
            VideoFaceTag.start_time == start_time,
        )
    ).scalar_one_or_none()


class FaceTagDBService(BaseDBService[FaceTagSchema]):
    """Tag store: time-ranged appearances of children in videos."""

    model_class = VideoFaceTag
    schema_class = FaceTagSchema

    @timed
    @with_retry(max_retries=10)
    def replace_for_video(
        self,
        video_id: int,
        tags: list[FaceTagSchema],
        run_id: int | None = None,
    ) -> list[FaceTagSchema]:
        """Delete every tag of the video and insert ``tags``, in one transaction.

        With ``run_id`` the write only happens while that run is still the
        video's current run; otherwise ``RunSupersededError`` is raised and
        nothing changes.
        """
        db = database.SessionLocal()
        try:
            if run_id is not None:
                current = db.execute(
                    select(Video.analysis_run_id).where(Video.id == video_id)
                ).scalar_one_or_none()
                if current != run_id:
                    raise RunSupersededError(video_id, run_id, current)

            result = db.execute(delete(VideoFaceTag).where(VideoFaceTag.video_id == video_id))
            now = now_timestamp()
            rows = [_new_row(tag.model_copy(update={"video_id": video_id}), now) for tag in tags]
            db.add_all(rows)
            db.commit()
            logger.info(
                f"Video {video_id}: replaced {result.rowcount or 0} tag(s) with {len(rows)}"
            )
            return [self._to_schema(r) for r in rows]
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def upsert_if_absent(self, tag: FaceTagSchema) -> tuple[FaceTagSchema, bool]:
        """Insert unless a tag with the same (video, child, start time) exists.

        Returns:
            The stored tag and whether it was created by this call.
        """
        db = database.SessionLocal()
        try:
            existing = _find(db, tag.video_id, tag.child_id, tag.start_time)
            if existing is not None:
                return self._to_schema(existing), False
            row = _new_row(tag, now_timestamp())
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._to_schema(row), True
        except IntegrityError:
            # Lost a race against a concurrent insert of the same triple
            db.rollback()
            existing = _find(db, tag.video_id, tag.child_id, tag.start_time)
            if existing is None:
                raise
            return self._to_schema(existing), False
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def exists(self, video_id: int, child_id: int | None, start_time: float) -> bool:
        db = database.SessionLocal()
        try:
            return _find(db, video_id, child_id, start_time) is not None
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def delete_for_child(self, child_id: int) -> int:
        """Delete all tags of a child across every video."""
        db = database.SessionLocal()
        try:
            result = db.execute(delete(VideoFaceTag).where(VideoFaceTag.child_id == child_id))
            db.commit()
            deleted = result.rowcount or 0
            logger.info(f"Child {child_id}: deleted {deleted} tag(s)")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def delete_one(self, tag_id: int) -> bool:
        db = database.SessionLocal()
        try:
            row = db.get(VideoFaceTag, tag_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def list_for_video(
        self, video_id: int, child_ids: list[int] | None = None
    ) -> list[FaceTagSchema]:
        db = database.SessionLocal()
        try:
            stmt = select(VideoFaceTag).where(VideoFaceTag.video_id == video_id)
            if child_ids is not None:
                stmt = stmt.where(VideoFaceTag.child_id.in_(child_ids))
            stmt = stmt.order_by(VideoFaceTag.start_time, VideoFaceTag.child_id)
            return [self._to_schema(r) for r in db.execute(stmt).scalars().all()]
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def list_tentative_for_children(self, child_ids: list[int]) -> list[FaceTagSchema]:
        """Tentative tags awaiting guardian review, newest first."""
        if not child_ids:
            return []
        db = database.SessionLocal()
        try:
            rows = (
                db.execute(
                    select(VideoFaceTag)
                    .where(
                        VideoFaceTag.child_id.in_(child_ids),
                        VideoFaceTag.is_tentative.is_(True),
                    )
                    .order_by(VideoFaceTag.created_at.desc(), VideoFaceTag.id.desc())
                )
                .scalars()
                .all()
            )
            return [self._to_schema(r) for r in rows]
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def confirm(
        self, tag_id: int, face_id: str, image_key: str
    ) -> tuple[FaceTagSchema, ChildFaceSchema]:
        """Record a guardian confirmation in one transaction.

        Creates the reference face, moves the child's primary face to it and
        promotes the tag to a confirmed appearance.
        """
        db = database.SessionLocal()
        try:
            tag = db.get(VideoFaceTag, tag_id)
            if tag is None or tag.child_id is None:
                raise ResourceNotFoundError(f"Tag {tag_id} not found")
            child = db.get(Child, tag.child_id)
            if child is None:
                raise ResourceNotFoundError(f"Child {tag.child_id} not found")

            face = ChildFace(
                child_id=child.id,
                face_id=face_id,
                image_key=image_key,
                created_at=now_timestamp(),
            )
            db.add(face)
            tag.is_tentative = False
            tag.confidence = CONFIRMED_CONFIDENCE
            db.flush()
            repoint_primary(db, child)
            db.commit()
            db.refresh(tag)
            db.refresh(face)
            logger.info(f"Tag {tag_id} confirmed for child {child.id} (face {face_id})")
            return self._to_schema(tag), ChildFaceSchema.model_validate(face)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
