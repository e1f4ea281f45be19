"""
Shared httpx client handling for upstream calls.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from iptv_ingest.config import Settings


@asynccontextmanager
async def http_client(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one built from settings."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=settings.http_timeout,
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    ) as new_client:
        yield new_client
