from __future__ import annotations

from loguru import logger
from sqlalchemy import select

from ..analysis.status import AnalysisState, can_transition
from ..common.utils import now_timestamp
from . import database
from .base import BaseDBService, timed
from .database import with_retry
from .exceptions import InvalidTransitionError, ResourceNotFoundError, RunSupersededError
from .models import AnalysisRun, School, SchoolClass, Video
from .schemas import AnalysisRunSchema, SchoolSchema, VideoSchema


class VideoDBService(BaseDBService[VideoSchema]):
    """Videos and their analysis status.

    Status writes go through ``begin_run`` and ``transition`` only. A run may
    write as long as ``Video.analysis_run_id`` still names it; the newest
    trigger therefore always wins.
    """

    model_class = Video
    schema_class = VideoSchema

    @timed
    @with_retry(max_retries=10)
    def get_school(self, video_id: int) -> SchoolSchema | None:
        """School owning the video's class."""
        db = database.SessionLocal()
        try:
            school = db.execute(
                select(School)
                .join(SchoolClass, SchoolClass.school_id == School.id)
                .join(Video, Video.class_id == SchoolClass.id)
                .where(Video.id == video_id)
            ).scalar_one_or_none()
            return SchoolSchema.model_validate(school) if school else None
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def list_with_source(self) -> list[VideoSchema]:
        """All videos that have a delivery URL, oldest first."""
        db = database.SessionLocal()
        try:
            videos = (
                db.execute(select(Video).where(Video.video_url.is_not(None)).order_by(Video.id))
                .scalars()
                .all()
            )
            return [self._to_schema(v) for v in videos]
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def begin_run(
        self,
        video_id: int,
        trigger: str = "admin",
        initial_state: AnalysisState = AnalysisState.QUEUED,
    ) -> AnalysisRunSchema:
        """Start a new run and make it the video's current run.

        Any run still in flight is superseded: its next guarded write fails.
        """
        db = database.SessionLocal()
        try:
            video = db.get(Video, video_id)
            if video is None:
                raise ResourceNotFoundError(f"Video {video_id} not found")

            now = now_timestamp()
            if video.analysis_run_id is not None:
                previous = db.get(AnalysisRun, video.analysis_run_id)
                if previous is not None and previous.finished_at is None:
                    previous.finished_at = now
                    previous.error_message = "superseded by a newer run"
                    logger.info(f"Video {video_id}: run {previous.id} superseded")

            run = AnalysisRun(
                video_id=video_id,
                trigger=trigger,
                state=initial_state.value,
                started_at=now,
                finished_at=now if initial_state.is_terminal else None,
            )
            db.add(run)
            db.flush()

            video.analysis_run_id = run.id
            video.analysis_state = initial_state.value
            video.analysis_progress = None
            video.analysis_child_count = None
            video.analysis_appearance_count = None
            video.analysis_updated_at = now

            db.commit()
            db.refresh(run)
            logger.info(f"Video {video_id}: run {run.id} started ({trigger}) -> {initial_state}")
            return AnalysisRunSchema.model_validate(run)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def transition(
        self,
        video_id: int,
        run_id: int,
        state: AnalysisState,
        *,
        progress: float | None = None,
        child_count: int | None = None,
        appearance_count: int | None = None,
        error_message: str | None = None,
    ) -> VideoSchema:
        """Move the video to ``state`` on behalf of ``run_id``.

        Raises:
            RunSupersededError: ``run_id`` is no longer the video's current run.
            InvalidTransitionError: the state machine forbids the move.
        """
        db = database.SessionLocal()
        try:
            video = db.get(Video, video_id)
            if video is None:
                raise ResourceNotFoundError(f"Video {video_id} not found")
            if video.analysis_run_id != run_id:
                raise RunSupersededError(video_id, run_id, video.analysis_run_id)

            current = AnalysisState(video.analysis_state) if video.analysis_state else None
            if not can_transition(current, state):
                raise InvalidTransitionError(str(current), state.value)

            now = now_timestamp()
            video.analysis_state = state.value
            video.analysis_progress = progress if state == AnalysisState.WAITING_MP4 else None
            if state == AnalysisState.COMPLETE:
                video.analysis_child_count = child_count or 0
                video.analysis_appearance_count = appearance_count or 0
            else:
                video.analysis_child_count = None
                video.analysis_appearance_count = None
            video.analysis_updated_at = now

            run = db.get(AnalysisRun, run_id)
            if run is not None:
                run.state = state.value
                if state.is_terminal:
                    run.finished_at = now
                if error_message is not None:
                    run.error_message = error_message

            db.commit()
            db.refresh(video)
            return self._to_schema(video)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def get_run(self, run_id: int) -> AnalysisRunSchema | None:
        db = database.SessionLocal()
        try:
            run = db.get(AnalysisRun, run_id)
            return AnalysisRunSchema.model_validate(run) if run else None
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def list_runs(self, video_id: int) -> list[AnalysisRunSchema]:
        """Run history of a video, newest first."""
        db = database.SessionLocal()
        try:
            runs = (
                db.execute(
                    select(AnalysisRun)
                    .where(AnalysisRun.video_id == video_id)
                    .order_by(AnalysisRun.id.desc())
                )
                .scalars()
                .all()
            )
            return [AnalysisRunSchema.model_validate(r) for r in runs]
        finally:
            db.close()
