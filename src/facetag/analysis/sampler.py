from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from loguru import logger
from pydantic import BaseModel

from ..providers.exceptions import ProviderError


class ThumbnailSource(Protocol):
    async def get_thumbnail_at(
        self, external_id: str, offset: float, width: int = 640
    ) -> bytes: ...


class Sample(BaseModel):
    """One still frame of a video."""

    offset: float
    image: bytes


def sample_offsets(window: float, stride: float) -> list[float]:
    """Offsets ``0, stride, 2*stride, ...`` up to and including ``window``."""
    if stride <= 0:
        raise ValueError("stride must be positive")
    if window < 0:
        raise ValueError("window must not be negative")
    count = int(window / stride + 1e-9) + 1
    return [round(i * stride, 6) for i in range(count)]


class SampleSet:
    """Lazy, finite, restartable sequence of samples.

    Every ``async for`` starts over and fetches frames again; nothing is cached.
    """

    def __init__(self, source: ThumbnailSource, external_id: str, offsets: list[float], width: int):
        self.source = source
        self.external_id = external_id
        self.offsets = offsets
        self.width = width

    def __aiter__(self) -> AsyncIterator[Sample]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Sample]:
        for offset in self.offsets:
            try:
                image = await self.source.get_thumbnail_at(self.external_id, offset, self.width)
            except ProviderError as e:
                logger.warning(f"Skipping frame {offset:g}s of {self.external_id}: {e}")
                continue
            yield Sample(offset=offset, image=image)


class FrameSampler:
    """Produces still frames of a video at a fixed stride from the delivery provider."""

    def __init__(self, source: ThumbnailSource, window: float = 30.0, stride: float = 2.0, width: int = 640):
        self.source = source
        self.window = window
        self.stride = stride
        self.width = width

    def samples(self, external_id: str) -> SampleSet:
        return SampleSet(
            self.source, external_id, sample_offsets(self.window, self.stride), self.width
        )
