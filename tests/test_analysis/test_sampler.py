import pytest
from fakes import STREAM_ID, FakeDelivery, frame

from facetag.analysis.sampler import FrameSampler, sample_offsets


def test_default_offsets_cover_first_thirty_seconds():
    offsets = sample_offsets(30, 2)
    assert offsets[0] == 0
    assert offsets[-1] == 30
    assert len(offsets) == 16


def test_fractional_stride_has_no_float_drift():
    offsets = sample_offsets(3, 0.1)
    assert len(offsets) == 31
    assert offsets[3] == 0.3
    assert offsets[-1] == 3.0


@pytest.mark.parametrize("window, stride", [(30, 0), (30, -1), (-1, 2)])
def test_invalid_sampling_parameters(window, stride):
    with pytest.raises(ValueError):
        sample_offsets(window, stride)


async def _collect(samples):
    return [s async for s in samples]


@pytest.mark.asyncio
async def test_missing_frames_are_skipped():
    delivery = FakeDelivery()
    delivery.missing_offsets = {2.0, 4.0}
    sampler = FrameSampler(delivery, window=6, stride=2)

    samples = await _collect(sampler.samples(STREAM_ID))

    assert [s.offset for s in samples] == [0.0, 6.0]
    assert samples[1].image == frame(6)


@pytest.mark.asyncio
async def test_samples_are_restartable():
    delivery = FakeDelivery()
    sample_set = FrameSampler(delivery, window=4, stride=2).samples(STREAM_ID)

    first = await _collect(sample_set)
    second = await _collect(sample_set)

    assert [s.offset for s in first] == [s.offset for s in second] == [0.0, 2.0, 4.0]
    assert len(delivery.thumbnail_calls) == 6


@pytest.mark.asyncio
async def test_frames_are_fetched_lazily():
    delivery = FakeDelivery()
    samples = aiter(FrameSampler(delivery, window=30, stride=2).samples(STREAM_ID))

    first = await anext(samples)

    assert first.offset == 0
    assert delivery.thumbnail_calls == [0.0]
