from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel

from ..common.utils import extract_stream_id
from ..db_service.exceptions import ResourceNotFoundError
from ..learning.exceptions import UnsupportedVideo
from .status import AnalysisState

if TYPE_CHECKING:
    from ..broadcast_service.broadcaster import AnalysisBroadcaster
    from ..db_service import DBService
    from .face_search import CandidateSweep
    from .orchestrator import AnalysisOrchestrator


class StartResult(BaseModel):
    queued: bool = False
    skipped: bool = False
    reason: str | None = None
    status: str
    run_id: int | None = None


class AnalysisRunner:
    """Submits pipeline runs as supervised background tasks.

    Tasks are referenced until they finish, their exceptions are logged
    rather than lost, and ``shutdown`` cancels whatever is still running.
    """

    def __init__(
        self,
        db: DBService,
        orchestrator: AnalysisOrchestrator,
        sweep: CandidateSweep | None = None,
        broadcaster: AnalysisBroadcaster | None = None,
    ):
        self.db = db
        self.orchestrator = orchestrator
        self.sweep = sweep
        self.broadcaster = broadcaster
        self._tasks: set[asyncio.Task[Any]] = set()
        self._sweep_task: asyncio.Task[Any] | None = None

    def start_analysis(self, video_id: int, trigger: str = "admin") -> StartResult:
        """Queue an analysis run and return immediately.

        Raises:
            ResourceNotFoundError: unknown video.
            UnsupportedVideo: the video has no delivery-provider id.
        """
        video = self.db.video.get(video_id)
        if video is None:
            raise ResourceNotFoundError(f"Video {video_id} not found")
        if extract_stream_id(video.video_url) is None:
            raise UnsupportedVideo("Only delivery-provider videos are supported")

        school = self.db.video.get_school(video_id)
        if school is not None and not school.enable_ai_analysis:
            run = self.db.video.begin_run(
                video_id, trigger, initial_state=AnalysisState.SKIPPED_ADMIN_DISABLED
            )
            self._publish(video_id)
            logger.info(f"Video {video_id}: analysis disabled for school {school.id}")
            return StartResult(
                skipped=True,
                reason="AI analysis is disabled in school settings",
                status=AnalysisState.SKIPPED_ADMIN_DISABLED.value,
                run_id=run.id,
            )

        run = self.db.video.begin_run(video_id, trigger)
        assert run.id is not None
        self._publish(video_id)
        self.submit(self.orchestrator.run(video_id, run.id), name=f"analysis-{video_id}-{run.id}")
        return StartResult(queued=True, status=AnalysisState.QUEUED.value, run_id=run.id)

    def start_sweep(self) -> bool:
        """Start the candidate sweep unless one is already running."""
        if self.sweep is None:
            raise RuntimeError("Candidate sweep is not configured")
        if self._sweep_task is not None and not self._sweep_task.done():
            return False
        self._sweep_task = self.submit(self.sweep.run_all(), name="candidate-sweep")
        return True

    def submit(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Submitted task {name}")
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Task {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Task {task.get_name()} failed: {error}")

    def _publish(self, video_id: int) -> None:
        if self.broadcaster is None:
            return
        video = self.db.video.get(video_id)
        if video is not None and video.status is not None:
            self.broadcaster.publish_status(video_id, video.status)

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks; their last committed status stays as is."""
        if not self.active:
            return
        logger.info(f"Cancelling {self.active} background task(s)")
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
