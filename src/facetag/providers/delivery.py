"""Delivery provider client (Cloudflare Stream).

Only the three calls the analysis pipeline needs: the status of the
downloadable MP4 rendition, a request to create it, and a still frame at a
given offset.
"""

from __future__ import annotations

import httpx
from loguru import logger
from pydantic import ValidationError

from .exceptions import ProviderError, ThumbnailNotFound
from .schemas import DownloadsResponse, RenditionStatus

API_BASE = "https://api.cloudflare.com/client/v4"


class StreamDeliveryClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        account_id: str | None,
        api_token: str | None,
        customer_domain: str,
    ):
        self.client = client
        self.account_id = account_id
        self.api_token = api_token
        self.customer_domain = customer_domain

    def _downloads_url(self, external_id: str) -> str:
        if not self.account_id or not self.api_token:
            raise ProviderError("Stream account id or API token is not configured")
        return f"{API_BASE}/accounts/{self.account_id}/stream/{external_id}/downloads"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def get_rendition_status(self, external_id: str) -> RenditionStatus:
        """Current state of the downloadable rendition.

        Raises:
            ProviderError: transport failure, error response or unexpected body.
        """
        url = self._downloads_url(external_id)
        try:
            response = await self.client.get(url, headers=self._headers())
            response.raise_for_status()
            body = DownloadsResponse.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.debug(f"Downloads status for {external_id} failed: {e.response.text}")
            raise ProviderError(f"Downloads status returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Downloads status request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise ProviderError(f"Unexpected downloads response: {e}") from e

        info = body.result.default if body.result else None
        if info is None:
            return RenditionStatus(exists=False)
        if info.status == "ready" and info.url:
            return RenditionStatus(exists=True, ready=True, url=info.url, percent=100.0)
        if info.status == "error":
            raise ProviderError(f"Rendition of {external_id} is in error state")
        return RenditionStatus(exists=True, percent=info.percent_complete)

    async def request_rendition_creation(self, external_id: str) -> None:
        url = self._downloads_url(external_id)
        try:
            response = await self.client.post(url, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.debug(f"Rendition creation for {external_id} failed: {e.response.text}")
            raise ProviderError(f"Rendition creation returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Rendition creation request failed: {e}") from e
        logger.info(f"Requested MP4 rendition for {external_id}")

    def thumbnail_url(self, external_id: str, offset: float, width: int) -> str:
        return (
            f"https://{self.customer_domain}/{external_id}/thumbnails/thumbnail.jpg"
            f"?time={offset:g}s&width={width}"
        )

    async def get_thumbnail_at(self, external_id: str, offset: float, width: int = 640) -> bytes:
        """JPEG bytes of the frame at ``offset`` seconds.

        Raises:
            ThumbnailNotFound: the provider has no frame there (past the end, not processed).
            ProviderError: any other failure.
        """
        url = self.thumbnail_url(external_id, offset, width)
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise ProviderError(f"Thumbnail request failed: {e}") from e

        if response.status_code == 404:
            raise ThumbnailNotFound(f"No frame at {offset:g}s for {external_id}")
        if response.is_error:
            raise ProviderError(f"Thumbnail returned {response.status_code}")
        if not response.content:
            raise ThumbnailNotFound(f"Empty frame at {offset:g}s for {external_id}")
        return response.content
