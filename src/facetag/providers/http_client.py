"""Shared HTTP client for provider calls."""

from __future__ import annotations

import httpx
from loguru import logger

_shared_client: httpx.AsyncClient | None = None


def get_shared_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Get or create the process-wide async HTTP client (connection pooling, keep-alive)."""
    global _shared_client

    if _shared_client is None:
        _shared_client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=100,
                keepalive_expiry=30.0,
            ),
        )
        logger.info("Created shared HTTP client")

    return _shared_client


async def close_shared_http_client() -> None:
    """Close the shared client; call on application shutdown."""
    global _shared_client

    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None
        logger.info("Closed shared HTTP client")
