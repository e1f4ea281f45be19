"""
Connectivity prober.
Validates an M3U URL or Xtream account before a source is accepted, retrying a
fixed number of times with a fixed delay.
"""
import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from pydantic import BaseModel

from iptv_ingest.config import Settings, get_settings
from iptv_ingest.models.source import (
    ForceAddPrompt,
    Playlist,
    PlaylistType,
    ProbeResult,
    XtreamCredentials,
)
from iptv_ingest.services.errors import IngestCancelled, IngestError, ProbeError
from iptv_ingest.services.http import http_client
from iptv_ingest.services.m3u_parser import HEADER, m3u_has_header
from iptv_ingest.services.xtream_client import XtreamClient

logger = logging.getLogger(__name__)

# Enough of the body to find the header behind a BOM or blank lines
HEADER_SNIFF_LIMIT = 4096


class RetryOutcome(BaseModel):
    success: bool
    attempts: int
    value: Any = None
    reason: Optional[str] = None


async def retry(
    operation: Callable[[], Awaitable[Any]],
    attempts: int = 3,
    delay: float = 0.7,
    on_attempt: Optional[Callable[[int], None]] = None,
) -> RetryOutcome:
    """
    Run an async operation until it returns a truthy value.

    Attempts run strictly one after another with `delay` seconds between them.
    A falsy result, an httpx.HTTPError or an IngestError counts as a failed
    attempt; anything else propagates.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Maximum number of attempts
        delay: Seconds to wait between attempts
        on_attempt: Called with the attempt number before each attempt

    Returns:
        RetryOutcome with the attempt count and the last value or failure reason
    """
    reason = None
    for attempt in range(1, attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            value = await operation()
        except IngestCancelled:
            raise
        except (httpx.HTTPError, IngestError) as e:
            reason = str(e) or e.__class__.__name__
        else:
            if value:
                return RetryOutcome(success=True, attempts=attempt, value=value)
            reason = "rejected by server"

        logger.warning(f"Attempt {attempt}/{attempts} failed: {reason}")
        if attempt < attempts:
            await asyncio.sleep(delay)

    return RetryOutcome(success=False, attempts=attempts, reason=reason)


class M3UTarget(BaseModel):
    url: str
    name: str = ""


class XtreamTarget(BaseModel):
    credentials: XtreamCredentials
    name: str = ""


ProbeTarget = Union[M3UTarget, XtreamTarget]


def target_for(playlist: Playlist) -> ProbeTarget:
    """Build the probe target for a playlist source."""
    if playlist.type == PlaylistType.XTREAM:
        return XtreamTarget(credentials=playlist.credentials, name=playlist.name)
    return M3UTarget(url=playlist.url, name=playlist.name)


class Prober:
    """Checks that a source answers before it is registered."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._client = client

    async def check_m3u(self, url: str) -> bool:
        """One attempt: HTTP 200 and a body starting with #EXTM3U."""
        if not url.startswith(("http://", "https://")):
            return self._check_local_m3u(url)
        async with http_client(self.settings, self._client) as client:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise ProbeError(f"HTTP {response.status_code} from {url}")
                head = ""
                async for text in response.aiter_text():
                    head += text
                    if len(head.lstrip("\ufeff").lstrip()) >= len(HEADER) or len(head) > HEADER_SNIFF_LIMIT:
                        break
        if not m3u_has_header(head):
            raise ProbeError(f"No {HEADER} header at {url}")
        return True

    @staticmethod
    def _check_local_m3u(path: str) -> bool:
        filepath = Path(path)
        if not filepath.is_file():
            raise ProbeError(f"M3U file not found: {path}")
        with open(filepath, 'r', encoding='utf-8', errors='ignore') as f:
            head = f.read(HEADER_SNIFF_LIMIT)
        if not m3u_has_header(head):
            raise ProbeError(f"No {HEADER} header in {path}")
        return True

    async def check_xtream(self, credentials: XtreamCredentials) -> bool:
        """One attempt: player_api.php reports user_info.auth == 1."""
        async with http_client(self.settings, self._client) as client:
            return await XtreamClient(credentials, client=client, settings=self.settings).authenticate()

    async def probe(
        self,
        target: ProbeTarget,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> ProbeResult:
        """
        Probe a source with bounded retries.

        On exhaustion the result carries a force-add prompt; sources are never
        rejected outright, the caller decides.
        """
        if isinstance(target, XtreamTarget):
            label = target.name or target.credentials.server_url
            operation = partial(self.check_xtream, target.credentials)
        else:
            label = target.name or target.url
            operation = partial(self.check_m3u, target.url)

        logger.info(f"Probing {label}")
        outcome = await retry(
            operation,
            attempts=self.settings.probe_attempts,
            delay=self.settings.probe_delay,
            on_attempt=on_attempt,
        )

        if outcome.success:
            logger.info(f"Probe of {label} succeeded after {outcome.attempts} attempt(s)")
            return ProbeResult(success=True, attempts=outcome.attempts)

        logger.error(f"Probe of {label} failed after {outcome.attempts} attempts: {outcome.reason}")
        return ProbeResult(
            success=False,
            attempts=outcome.attempts,
            reason=outcome.reason,
            force_add=ForceAddPrompt(
                source_name=label,
                attempts=outcome.attempts,
                reason=outcome.reason,
                message=f"Could not verify {label} after {outcome.attempts} attempts. Add it anyway?",
            ),
        )
