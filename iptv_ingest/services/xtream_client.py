"""
Xtream Codes API client.
Fetches live, VOD and series catalogs from a player_api.php endpoint and maps
them onto catalog records for one playlist.
"""
import re
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse
from uuid import UUID

import httpx
from pydantic import BaseModel, ValidationError

from iptv_ingest.config import Settings, get_settings
from iptv_ingest.models.content import Channel, ContentKind, Episode, Movie, Season, TVShow
from iptv_ingest.models.source import XtreamCredentials
from iptv_ingest.models.xtream import (
    XtreamCategory,
    XtreamChannel,
    XtreamEpisode,
    XtreamMovie,
    XtreamSeries,
    XtreamSeriesInfo,
)
from iptv_ingest.services.errors import CancelFlag, XtreamError
from iptv_ingest.services.http import http_client

logger = logging.getLogger(__name__)

YEAR_PATTERN = re.compile(r'(\d{4})')

CATEGORY_ACTIONS = {
    ContentKind.CHANNEL: "get_live_categories",
    ContentKind.MOVIE: "get_vod_categories",
    ContentKind.SHOW: "get_series_categories",
}


def normalize_server_url(url: str) -> str:
    """Strip one trailing slash and reject URLs without an http(s) scheme and host."""
    url = url.strip()
    if url.endswith("/"):
        url = url[:-1]
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise XtreamError(f"Malformed server URL: {url!r}")
    return url


class XtreamClient:
    """Client for one Xtream Codes account."""

    def __init__(
        self,
        credentials: XtreamCredentials,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.credentials = credentials
        self.settings = settings or get_settings()
        self._client = client

    @property
    def base_url(self) -> str:
        return normalize_server_url(self.credentials.server_url)

    @property
    def epg_url(self) -> str:
        """The panel's own XMLTV export."""
        params = {"username": self.credentials.username, "password": self.credentials.password}
        return str(httpx.URL(f"{self.base_url}/xmltv.php", params=params))

    async def _get_json(self, action: Optional[str] = None, **params) -> Any:
        """Call player_api.php and decode the JSON body."""
        url = f"{self.base_url}/player_api.php"
        query = {
            "username": self.credentials.username,
            "password": self.credentials.password,
        }
        if action:
            query["action"] = action
        query.update(params)

        logger.debug(f"Xtream request {action or 'auth'} to {self.base_url}")
        try:
            async with http_client(self.settings, self._client) as client:
                response = await client.get(url, params=query)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise XtreamError(f"Xtream {action or 'auth'} request failed: {e}") from e
        except ValueError as e:
            raise XtreamError(f"Xtream {action or 'auth'} returned invalid JSON: {e}") from e

    @staticmethod
    def _decode_list(data: Any, model: type[BaseModel], action: str) -> list:
        """Decode a JSON array; one bad item fails the whole list."""
        if not isinstance(data, list):
            raise XtreamError(f"Xtream {action} did not return a list")
        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as e:
            raise XtreamError(f"Xtream {action} returned undecodable items: {e}") from e

    async def authenticate(self) -> bool:
        """Check the account: user_info.auth == 1 is the only success criterion."""
        data = await self._get_json()
        if not isinstance(data, dict):
            return False
        user_info = data.get("user_info") or {}
        try:
            return int(user_info.get("auth", 0)) == 1
        except (TypeError, ValueError):
            return False

    async def fetch_live_streams(self) -> list[XtreamChannel]:
        data = await self._get_json("get_live_streams")
        return self._decode_list(data, XtreamChannel, "get_live_streams")

    async def fetch_vod_streams(self) -> list[XtreamMovie]:
        data = await self._get_json("get_vod_streams")
        return self._decode_list(data, XtreamMovie, "get_vod_streams")

    async def fetch_series(self) -> list[XtreamSeries]:
        data = await self._get_json("get_series")
        return self._decode_list(data, XtreamSeries, "get_series")

    async def fetch_categories(self, kind: ContentKind) -> dict[str, str]:
        """Map category ids to names for one content kind."""
        action = CATEGORY_ACTIONS[kind]
        data = await self._get_json(action)
        categories = self._decode_list(data, XtreamCategory, action)
        return {c.category_id: c.category_name for c in categories}

    async def fetch_series_info(self, series_id: int) -> XtreamSeriesInfo:
        data = await self._get_json("get_series_info", series_id=series_id)
        if not isinstance(data, dict):
            raise XtreamError(f"Xtream get_series_info({series_id}) did not return an object")
        try:
            return XtreamSeriesInfo.model_validate(data)
        except ValidationError as e:
            raise XtreamError(f"Xtream get_series_info({series_id}) undecodable: {e}") from e

    # Stream URLs

    def stream_url(self, path: str, stream_id: Any, extension: str) -> str:
        creds = self.credentials
        return f"{self.base_url}/{path}/{creds.username}/{creds.password}/{stream_id}.{extension}"

    def live_url(self, item: XtreamChannel) -> str:
        return item.stream_url or self.stream_url("live", item.stream_id, "ts")

    def movie_url(self, item: XtreamMovie) -> str:
        return item.direct_source or self.stream_url("movie", item.stream_id, "mp4")

    def episode_url(self, item: XtreamEpisode) -> str:
        return item.direct_source or self.stream_url(
            "series", item.id, item.container_extension or "mp4"
        )

    # Mapping onto catalog records

    def to_channels(
        self,
        items: list[XtreamChannel],
        playlist_id: UUID,
        category_names: Optional[dict[str, str]] = None,
        cancel: Optional[CancelFlag] = None,
    ) -> list[Channel]:
        channels = []
        for position, item in enumerate(items):
            if cancel is not None:
                cancel.raise_if_cancelled()
            archive = item.tv_archive == 1
            channels.append(Channel(
                id=str(item.stream_id),
                name=item.name,
                category=_category(item.category_id, category_names, self.settings.default_category),
                stream_url=self.live_url(item),
                logo_url=item.stream_icon,
                tvg_id=item.epg_channel_id,
                playlist_id=playlist_id,
                order=item.num if item.num is not None else position,
                catchup_available=archive,
                catchup_days=item.tv_archive_duration if archive else None,
            ))
        return channels

    def to_movies(
        self,
        items: list[XtreamMovie],
        playlist_id: UUID,
        category_names: Optional[dict[str, str]] = None,
        cancel: Optional[CancelFlag] = None,
    ) -> list[Movie]:
        movies = []
        for item in items:
            if cancel is not None:
                cancel.raise_if_cancelled()
            movies.append(Movie(
                id=str(item.stream_id),
                title=item.name,
                poster_url=item.stream_icon,
                category=_category(item.category_id, category_names, self.settings.default_category),
                playlist_id=playlist_id,
                stream_url=self.movie_url(item),
                rating=item.rating,
                added_date=_epoch_to_datetime(item.added),
            ))
        return movies

    def to_shows(
        self,
        items: list[XtreamSeries],
        playlist_id: UUID,
        category_names: Optional[dict[str, str]] = None,
        infos: Optional[dict[int, XtreamSeriesInfo]] = None,
        cancel: Optional[CancelFlag] = None,
    ) -> list[TVShow]:
        shows = []
        infos = infos or {}
        for item in items:
            if cancel is not None:
                cancel.raise_if_cancelled()
            info = infos.get(item.series_id)
            shows.append(TVShow(
                id=str(item.series_id),
                title=item.name,
                description=item.plot,
                poster_url=item.cover,
                category=_category(item.category_id, category_names, self.settings.default_category),
                playlist_id=playlist_id,
                rating=item.rating,
                year=_year(item.releaseDate),
                seasons=self.to_seasons(info) if info else [],
            ))
        return shows

    def to_seasons(self, info: XtreamSeriesInfo) -> list[Season]:
        seasons = []
        for key, items in info.episodes.items():
            if key.isdigit():
                number = int(key)
            else:
                number = next((ep.season for ep in items if ep.season is not None), 0)
            episodes = [self._to_episode(ep, number) for ep in items]
            episodes.sort(key=lambda ep: ep.episode_number)
            seasons.append(Season(number=number, episodes=episodes))
        seasons.sort(key=lambda s: s.number)
        return seasons

    def _to_episode(self, item: XtreamEpisode, season_number: int) -> Episode:
        details = item.info if isinstance(item.info, dict) else {}
        try:
            duration = float(details.get("duration_secs") or 0)
        except (TypeError, ValueError):
            duration = 0.0
        return Episode(
            id=item.id,
            title=item.title or f"Episode {item.episode_num}",
            description=details.get("plot") or None,
            season_number=item.season if item.season is not None else season_number,
            episode_number=item.episode_num,
            stream_url=self.episode_url(item),
            thumbnail_url=details.get("movie_image") or None,
            duration=duration,
            air_date=_parse_date(details.get("releasedate") or details.get("air_date")),
        )


def _category(category_id: Optional[str], names: Optional[dict[str, str]], default: str) -> str:
    if not category_id:
        return default
    if names and category_id in names:
        return names[category_id]
    return category_id


def _epoch_to_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _parse_date(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = YEAR_PATTERN.search(value)
    return int(match.group(1)) if match else None
