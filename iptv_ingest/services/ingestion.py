"""
Ingestion service.
Registers playlist sources, refreshes their content into the catalog store and
loads their EPG guides.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

import httpx

from iptv_ingest.config import Settings, get_settings
from iptv_ingest.models.content import ContentKind
from iptv_ingest.models.source import (
    Playlist,
    PlaylistType,
    RefreshResult,
    RegistrationResult,
    SourceStatus,
)
from iptv_ingest.models.xtream import XtreamSeriesInfo
from iptv_ingest.services.catalog import CatalogStore
from iptv_ingest.services.epg_parser import EPGParser
from iptv_ingest.services.errors import CancelFlag, IngestCancelled, IngestError
from iptv_ingest.services.http import http_client
from iptv_ingest.services.m3u_parser import M3UParser
from iptv_ingest.services.prober import Prober, target_for
from iptv_ingest.services.xtream_client import XtreamClient

logger = logging.getLogger(__name__)


def _is_remote(url: str) -> bool:
    return url.startswith(("http://", "https://"))


class IngestionService:
    """Service that keeps the catalog in sync with registered sources."""

    def __init__(
        self,
        catalog: CatalogStore,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.catalog = catalog
        self.settings = settings or get_settings()
        self._client = client
        self.prober = Prober(self.settings, client)
        self.m3u_parser = M3UParser(self.settings.default_category)
        self.epg_parser = EPGParser(self.settings.epg_chunk_size)
        self._sources: dict[UUID, Playlist] = {}
        self._in_flight: set[UUID] = set()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # Source registry

    @property
    def sources(self) -> list[Playlist]:
        return list(self._sources.values())

    def get_source(self, playlist_id: UUID) -> Optional[Playlist]:
        return self._sources.get(playlist_id)

    async def register_source(
        self,
        playlist: Playlist,
        force: bool = False,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> RegistrationResult:
        """
        Probe a source and register it.

        Args:
            playlist: Source to add
            force: Register even if every probe attempt failed (status "failed")
            on_attempt: Progress callback receiving the attempt number

        Returns:
            Whether it was registered, the stored playlist and the probe result
        """
        probe = await self.prober.probe(target_for(playlist), on_attempt=on_attempt)

        if probe.success:
            playlist = playlist.model_copy(update={"status": SourceStatus.OK})
        elif force:
            logger.warning(f"Force-adding {playlist.name} after failed probe: {probe.reason}")
            playlist = playlist.model_copy(update={"status": SourceStatus.FAILED})
        else:
            return RegistrationResult(registered=False, playlist=playlist, probe=probe)

        self._sources[playlist.id] = playlist
        logger.info(f"Registered source {playlist.name} ({playlist.type.value}) as {playlist.id}")
        return RegistrationResult(registered=True, playlist=playlist, probe=probe)

    def remove_source(self, playlist_id: UUID) -> bool:
        """Unregister a source and drop everything it owns from the catalog."""
        playlist = self._sources.pop(playlist_id, None)
        if playlist is None:
            return False
        self.catalog.remove_source(playlist_id)
        logger.info(f"Removed source {playlist.name}")
        return True

    # Content refresh

    async def refresh(self, playlist_id: UUID, cancel: Optional[CancelFlag] = None) -> RefreshResult:
        """
        Fetch a source and replace its content in the catalog.

        Failures keep the previous content. A refresh already running for the
        same playlist makes this call a no-op.
        """
        playlist = self._sources.get(playlist_id)
        if playlist is None:
            return RefreshResult(playlist_id=playlist_id, success=False, errors=["Unknown playlist"])

        if playlist_id in self._in_flight:
            logger.warning(f"Refresh of {playlist.name} already running, skipping")
            return RefreshResult(playlist_id=playlist_id, success=False, skipped=True)

        self._in_flight.add(playlist_id)
        result = RefreshResult(playlist_id=playlist_id, success=False)
        try:
            if playlist.type == PlaylistType.XTREAM:
                await self._refresh_xtream(playlist, result, cancel)
            else:
                await self._refresh_m3u(playlist, result, cancel)
        except IngestCancelled:
            logger.info(f"Refresh of {playlist.name} cancelled, results discarded")
            result.cancelled = True
            return result
        finally:
            self._in_flight.discard(playlist_id)

        result.success = not result.errors
        updates = {"status": SourceStatus.OK if result.success else SourceStatus.FAILED}
        if result.channels or result.movies or result.shows or result.success:
            updates["last_updated"] = datetime.now(timezone.utc)
        # The source may have been removed while we were fetching
        if playlist_id in self._sources:
            self._sources[playlist_id] = self._sources[playlist_id].model_copy(update=updates)
        return result

    async def _refresh_m3u(self, playlist: Playlist, result: RefreshResult, cancel: Optional[CancelFlag]):
        try:
            if _is_remote(playlist.url):
                text = await self._fetch_text(playlist.url)
                channels, movies = self.m3u_parser.parse(text, playlist.id, cancel)
            else:
                channels, movies = self.m3u_parser.parse_file(playlist.url, playlist.id, cancel)
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to fetch M3U for {playlist.name}: {e}")
            result.errors.append(f"fetch: {e}")
            return

        self._ensure_wanted(playlist, cancel)
        self.catalog.replace_for_source(playlist.id, channels=channels, movies=movies)
        result.channels = len(channels)
        result.movies = len(movies)

    async def _fetch_text(self, url: str) -> str:
        async with http_client(self.settings, self._client) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text

    async def _refresh_xtream(self, playlist: Playlist, result: RefreshResult, cancel: Optional[CancelFlag]):
        async with http_client(self.settings, self._client) as client:
            xtream = XtreamClient(playlist.credentials, client=client, settings=self.settings)

            names = await self._fetch_category_names(xtream)
            live, vod, series = await asyncio.gather(
                xtream.fetch_live_streams(),
                xtream.fetch_vod_streams(),
                xtream.fetch_series(),
                return_exceptions=True,
            )

            infos = {}
            if self.settings.xtream_series_info and not isinstance(series, BaseException):
                infos = await self._fetch_series_infos(xtream, series, cancel)

        # Each content type stands alone: a failed one keeps its old records
        channels = movies = shows = None
        for label, payload in (("live", live), ("vod", vod), ("series", series)):
            if isinstance(payload, IngestCancelled):
                raise payload
            if isinstance(payload, IngestError):
                logger.error(f"Xtream {label} fetch failed for {playlist.name}: {payload}")
                result.errors.append(f"{label}: {payload}")
            elif isinstance(payload, BaseException):
                raise payload

        if not isinstance(live, BaseException):
            channels = xtream.to_channels(live, playlist.id, names[ContentKind.CHANNEL], cancel)
        if not isinstance(vod, BaseException):
            movies = xtream.to_movies(vod, playlist.id, names[ContentKind.MOVIE], cancel)
        if not isinstance(series, BaseException):
            shows = xtream.to_shows(series, playlist.id, names[ContentKind.SHOW], infos, cancel)

        self._ensure_wanted(playlist, cancel)
        self.catalog.replace_for_source(playlist.id, channels=channels, movies=movies, shows=shows)
        result.channels = len(channels) if channels is not None else 0
        result.movies = len(movies) if movies is not None else 0
        result.shows = len(shows) if shows is not None else 0

    async def _fetch_category_names(self, xtream: XtreamClient) -> dict[ContentKind, dict[str, str]]:
        """Category id -> name per kind; a failure only costs readable names."""
        names = {}
        for kind in ContentKind:
            try:
                names[kind] = await xtream.fetch_categories(kind)
            except IngestError as e:
                logger.warning(f"Could not load {kind.value} categories: {e}")
                names[kind] = {}
        return names

    async def _fetch_series_infos(self, xtream: XtreamClient, series: list, cancel: Optional[CancelFlag]) -> dict[int, XtreamSeriesInfo]:
        semaphore = asyncio.Semaphore(self.settings.xtream_concurrency)

        async def fetch_one(series_id: int):
            async with semaphore:
                self._check_cancel(cancel)
                try:
                    return series_id, await xtream.fetch_series_info(series_id)
                except IngestError as e:
                    logger.warning(f"No episode list for series {series_id}: {e}")
                    return series_id, None

        # Let every task settle before the client closes, then surface cancellation
        results = await asyncio.gather(*[fetch_one(s.series_id) for s in series], return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        return {series_id: info for series_id, info in results if info is not None}

    def _ensure_wanted(self, playlist: Playlist, cancel: Optional[CancelFlag]):
        """Results are only applied if nobody cancelled or removed the source meanwhile."""
        self._check_cancel(cancel)
        if playlist.id not in self._sources:
            raise IngestCancelled(f"Source {playlist.name} was removed during refresh")

    @staticmethod
    def _check_cancel(cancel: Optional[CancelFlag]):
        if cancel is not None:
            cancel.raise_if_cancelled()

    # EPG

    def epg_url_for(self, playlist: Playlist) -> Optional[str]:
        if playlist.epg_url:
            return playlist.epg_url
        if playlist.type == PlaylistType.XTREAM:
            try:
                return XtreamClient(playlist.credentials, settings=self.settings).epg_url
            except IngestError:
                return None
        return None

    async def refresh_epg(self, playlist_id: UUID, cancel: Optional[CancelFlag] = None) -> Optional[int]:
        """
        Load the guide for a playlist into the catalog.

        Returns:
            Number of programs stored, or None if the guide could not be loaded
        """
        playlist = self._sources.get(playlist_id)
        if playlist is None:
            return None
        url = self.epg_url_for(playlist)
        if not url:
            logger.info(f"No EPG source for {playlist.name}")
            return None

        try:
            if _is_remote(url):
                async with http_client(self.settings, self._client) as client:
                    async with client.stream("GET", url) as response:
                        response.raise_for_status()
                        parsed = await self.epg_parser.parse_stream(
                            response.aiter_bytes(self.settings.epg_chunk_size), source=url, cancel=cancel
                        )
            else:
                parsed = self.epg_parser.parse_file(url, cancel=cancel)
            self._ensure_wanted(playlist, cancel)
        except IngestCancelled:
            logger.info(f"EPG load for {playlist.name} cancelled")
            return None
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to load EPG for {playlist.name}: {e}")
            return None

        if parsed.error is not None and parsed.is_empty:
            # Not a guide at all (e.g. an HTML error page); keep the loaded one
            logger.error(f"EPG for {playlist.name} is not XMLTV: {parsed.error}")
            return None

        self.catalog.replace_epg(playlist_id, parsed.channels, parsed.programs)
        return len(parsed.programs)

    # Scheduling

    async def refresh_due(self, now: Optional[datetime] = None) -> list[RefreshResult]:
        """Refresh every active source whose interval has elapsed, concurrently."""
        now = now or datetime.now(timezone.utc)
        due = [p for p in self._sources.values() if p.is_due(now)]
        if not due:
            return []

        logger.info(f"Refreshing {len(due)} due source(s)")

        async def refresh_one(playlist: Playlist) -> RefreshResult:
            result = await self.refresh(playlist.id)
            if result.success:
                await self.refresh_epg(playlist.id)
            return result

        return list(await asyncio.gather(*[refresh_one(p) for p in due]))

    async def start(self):
        """Start the background refresh loop (if configured)."""
        if self._running or self.settings.auto_refresh_minutes <= 0:
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info("Auto refresh started")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Auto refresh stopped")

    async def _refresh_loop(self):
        interval = self.settings.auto_refresh_minutes * 60
        while self._running:
            started = time.monotonic()
            try:
                await self.refresh_due()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Auto refresh error: {e}")
            await asyncio.sleep(max(0.0, interval - (time.monotonic() - started)))
