import pytest
from fakes import READY, STREAM_ID, FakeDelivery

from facetag.analysis.rendition import RenditionPoller, RenditionTimeout
from facetag.providers.exceptions import ProviderError
from facetag.providers.schemas import RenditionStatus


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("facetag.analysis.rendition.asyncio.sleep", fake_sleep)
    return delays


@pytest.mark.asyncio
async def test_ready_on_first_attempt(no_sleep):
    delivery = FakeDelivery()
    poller = RenditionPoller(delivery, max_attempts=3, interval=30)

    url = await poller.await_rendition(STREAM_ID)

    assert url == READY.url
    assert delivery.status_calls == 1
    assert no_sleep == []


@pytest.mark.asyncio
async def test_missing_rendition_is_requested_and_progress_reported(no_sleep):
    delivery = FakeDelivery()
    delivery.statuses = [
        RenditionStatus(exists=False),
        RenditionStatus(exists=True, percent=40),
        READY,
    ]
    progress: list[float] = []

    async def on_progress(percent):
        progress.append(percent)

    url = await RenditionPoller(delivery, max_attempts=5, interval=30).await_rendition(
        STREAM_ID, on_progress
    )

    assert url == READY.url
    assert delivery.creation_requests == [STREAM_ID]
    assert progress == [0.0, 40.0]
    assert no_sleep == [30, 30]


@pytest.mark.asyncio
async def test_timeout_after_max_attempts(no_sleep):
    delivery = FakeDelivery()
    delivery.statuses = [RenditionStatus(exists=True, percent=10)]

    with pytest.raises(RenditionTimeout) as exc_info:
        await RenditionPoller(delivery, max_attempts=20, interval=30).await_rendition(STREAM_ID)

    assert exc_info.value.attempts == 20
    assert delivery.status_calls == 20
    # No sleep after the last attempt
    assert len(no_sleep) == 19


@pytest.mark.asyncio
async def test_provider_errors_count_as_not_ready(no_sleep):
    delivery = FakeDelivery()
    delivery.statuses = [ProviderError("502"), READY]

    url = await RenditionPoller(delivery, max_attempts=3, interval=1).await_rendition(STREAM_ID)

    assert url == READY.url
    assert delivery.creation_requests == []


@pytest.mark.asyncio
async def test_backoff_is_capped(no_sleep):
    delivery = FakeDelivery()
    delivery.statuses = [RenditionStatus(exists=True, percent=0)]
    poller = RenditionPoller(delivery, max_attempts=5, interval=30, backoff=2, max_interval=100)

    with pytest.raises(RenditionTimeout):
        await poller.await_rendition(STREAM_ID)

    assert no_sleep == [30, 60, 100, 100]
