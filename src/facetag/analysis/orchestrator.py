from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from ..common.utils import extract_stream_id
from ..db_service.exceptions import (
    InvalidTransitionError,
    ResourceNotFoundError,
    RunSupersededError,
)
from ..providers.exceptions import ProviderError
from .aggregation import ChildResolver, SampleHits, aggregate
from .rendition import RenditionTimeout
from .status import AnalysisState, AnalysisStatus

if TYPE_CHECKING:
    from ..broadcast_service.broadcaster import AnalysisBroadcaster
    from ..db_service import DBService
    from ..providers.recognition import RecognitionClient
    from .rendition import RenditionPoller
    from .sampler import FrameSampler


class AnalysisOrchestrator:
    """Runs the analysis pipeline for one video.

    Pipeline: registered-children check -> wait for rendition -> extract
    frames -> search each frame -> aggregate -> save tags -> complete.
    Every step commits its state before the next one starts; a run stops
    silently as soon as a newer run owns the video.
    """

    def __init__(
        self,
        db: DBService,
        recognition: RecognitionClient,
        poller: RenditionPoller,
        sampler: FrameSampler,
        broadcaster: AnalysisBroadcaster | None = None,
        match_threshold: float = 80.0,
    ):
        self.db = db
        self.recognition = recognition
        self.poller = poller
        self.sampler = sampler
        self.broadcaster = broadcaster
        self.match_threshold = match_threshold

    async def run(self, video_id: int, run_id: int) -> AnalysisStatus | None:
        """Run the pipeline. Never raises except on cancellation.

        Returns:
            Final status, or None if the run was superseded.
        """
        try:
            return await self._run(video_id, run_id)
        except RunSupersededError as e:
            logger.info(f"Video {video_id}: stopping run {run_id} ({e})")
            return None
        except asyncio.CancelledError:
            logger.warning(f"Video {video_id}: run {run_id} cancelled")
            raise
        except Exception as e:
            logger.exception(f"Video {video_id}: analysis run {run_id} failed: {e}")
            return self._fail(video_id, run_id, e)

    async def _run(self, video_id: int, run_id: int) -> AnalysisStatus:
        video = self.db.video.get(video_id)
        if video is None:
            raise ResourceNotFoundError(f"Video {video_id} not found")
        external_id = extract_stream_id(video.video_url)
        if external_id is None:
            raise ValueError(f"Video {video_id} has no delivery id in {video.video_url!r}")

        # Step 1: nothing to look for -> no external calls at all
        if not self.db.child.has_registered():
            return self._transition(video_id, run_id, AnalysisState.COMPLETE_NO_REGISTERED_FACES)

        await self.recognition.ensure_collection()

        # Step 2: wait for the rendition
        self._transition(video_id, run_id, AnalysisState.WAITING_MP4, progress=0.0)
        reported = 0.0

        async def on_progress(percent: float) -> None:
            nonlocal reported
            # A failed status check reports 0; keep the last known percentage
            if percent <= reported:
                return
            reported = percent
            self._transition(video_id, run_id, AnalysisState.WAITING_MP4, progress=percent)

        try:
            rendition_url = await self.poller.await_rendition(external_id, on_progress)
        except RenditionTimeout as e:
            logger.warning(f"Video {video_id}: {e}")
            return self._transition(video_id, run_id, AnalysisState.FAILED_MP4_TIMEOUT)
        logger.debug(f"Video {video_id}: rendition at {rendition_url}")

        # Step 3: frames
        self._transition(video_id, run_id, AnalysisState.EXTRACTING_FRAMES)
        samples = aiter(self.sampler.samples(external_id))
        first = await anext(samples, None)
        if first is None:
            return self._transition(video_id, run_id, AnalysisState.FAILED_NO_FRAMES)

        # Step 4: search; faces may have been cleared during the wait
        self._transition(video_id, run_id, AnalysisState.ANALYZING)
        resolver = ChildResolver(self.db.child.get_registered())
        if len(resolver) == 0:
            return self._transition(video_id, run_id, AnalysisState.COMPLETE_NO_REGISTERED_FACES)

        hits: list[SampleHits] = []
        searched = failed = 0
        sample = first
        while sample is not None:
            searched += 1
            try:
                matches = await self.recognition.search(sample.image, self.match_threshold)
            except ProviderError as e:
                failed += 1
                logger.warning(f"Video {video_id}: search failed at {sample.offset:g}s: {e}")
            else:
                if matches:
                    hits.append(SampleHits(offset=sample.offset, matches=matches))
            sample = await anext(samples, None)

        # Nothing was actually analyzed; existing tags stay
        if failed == searched:
            return self._transition(
                video_id,
                run_id,
                AnalysisState.FAILED,
                error_message=f"all {searched} searches failed",
            )

        tags = aggregate(video_id, hits, resolver, self.sampler.stride)
        logger.info(
            f"Video {video_id}: {searched} frame(s) searched, {len(tags)} appearance(s) found"
        )

        # Step 5: persist
        self._transition(video_id, run_id, AnalysisState.SAVING)
        self.db.tag.replace_for_video(video_id, tags, run_id=run_id)

        child_count = len({tag.child_id for tag in tags})
        return self._transition(
            video_id,
            run_id,
            AnalysisState.COMPLETE,
            child_count=child_count,
            appearance_count=len(tags),
        )

    def _transition(
        self,
        video_id: int,
        run_id: int,
        state: AnalysisState,
        **kwargs,
    ) -> AnalysisStatus:
        video = self.db.video.transition(video_id, run_id, state, **kwargs)
        status = video.status
        assert status is not None
        logger.info(f"Video {video_id}: {status.display}")
        if self.broadcaster is not None:
            self.broadcaster.publish_status(video_id, status)
        return status

    def _fail(self, video_id: int, run_id: int, error: Exception) -> AnalysisStatus | None:
        try:
            return self._transition(
                video_id, run_id, AnalysisState.FAILED, error_message=str(error) or type(error).__name__
            )
        except (RunSupersededError, InvalidTransitionError, ResourceNotFoundError) as e:
            logger.warning(f"Video {video_id}: could not record failure of run {run_id}: {e}")
            return None
