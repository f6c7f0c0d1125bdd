from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

from loguru import logger

from ..providers.exceptions import ProviderError
from ..providers.schemas import RenditionStatus


class RenditionTimeout(Exception):
    """The downloadable rendition did not become ready within the allowed attempts."""

    def __init__(self, external_id: str, attempts: int):
        self.external_id = external_id
        self.attempts = attempts
        super().__init__(f"Rendition of {external_id} not ready after {attempts} attempts")


class RenditionSource(Protocol):
    async def get_rendition_status(self, external_id: str) -> RenditionStatus: ...

    async def request_rendition_creation(self, external_id: str) -> None: ...


ProgressCallback = Callable[[float], Awaitable[None]]


class RenditionPoller:
    """Waits for the delivery provider's downloadable MP4 rendition."""

    def __init__(
        self,
        source: RenditionSource,
        max_attempts: int = 20,
        interval: float = 30.0,
        backoff: float = 1.0,
        max_interval: float = 120.0,
    ):
        self.source = source
        self.max_attempts = max_attempts
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval

    async def check(self, external_id: str) -> RenditionStatus:
        """One attempt. Requests the rendition when none exists yet."""
        try:
            status = await self.source.get_rendition_status(external_id)
        except ProviderError as e:
            logger.warning(f"Rendition status of {external_id} unavailable: {e}")
            return RenditionStatus(exists=False, percent=0.0)

        if not status.exists:
            try:
                await self.source.request_rendition_creation(external_id)
            except ProviderError as e:
                logger.warning(f"Rendition creation for {external_id} failed: {e}")
            return RenditionStatus(exists=False, percent=0.0)

        return status

    async def await_rendition(
        self, external_id: str, on_progress: ProgressCallback | None = None
    ) -> str:
        """Poll until ready and return the rendition URL.

        ``on_progress`` receives the percentage after every attempt that was not ready.

        Raises:
            RenditionTimeout: still not ready after ``max_attempts``.
        """
        delay = self.interval
        for attempt in range(1, self.max_attempts + 1):
            status = await self.check(external_id)
            if status.ready and status.url:
                logger.info(f"Rendition of {external_id} ready after {attempt} attempt(s)")
                return status.url

            logger.debug(
                f"Rendition of {external_id} at {status.percent:g}% "
                f"(attempt {attempt}/{self.max_attempts})"
            )
            if on_progress is not None:
                await on_progress(status.percent)

            if attempt < self.max_attempts:
                await asyncio.sleep(delay)
                delay = min(delay * self.backoff, self.max_interval)

        raise RenditionTimeout(external_id, self.max_attempts)
