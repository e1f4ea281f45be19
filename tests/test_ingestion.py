"""
Tests for the ingestion service: registration, refresh and EPG loading.
"""
import asyncio
import httpx
import pytest
from datetime import datetime, timedelta, timezone

from iptv_ingest.config import Settings
from iptv_ingest.models.content import Movie
from iptv_ingest.models.source import Playlist, PlaylistType, SourceStatus
from iptv_ingest.services.catalog import CatalogStore
from iptv_ingest.services.errors import CancelFlag
from iptv_ingest.services.ingestion import IngestionService

from conftest import json_response

M3U_URL = "http://example.com/playlist.m3u"
EPG_URL = "http://example.com/guide.xml"


def m3u_playlist(**kwargs):
    return Playlist(name="Test", type=PlaylistType.M3U, url=M3U_URL, **kwargs)


def xtream_playlist(**kwargs):
    return Playlist(name="Panel", type=PlaylistType.XTREAM, url="http://host", username="u", password="p", **kwargs)


@pytest.fixture
def catalog():
    return CatalogStore()


@pytest.fixture
def service(catalog, settings, upstream):
    return IngestionService(catalog, settings, upstream.client())


async def registered(service, playlist):
    result = await service.register_source(playlist, force=True)
    return result.playlist


class TestRegistration:

    @pytest.mark.asyncio
    async def test_register_after_successful_probe(self, service, upstream, sample_m3u_content):
        upstream.route("/playlist.m3u", httpx.Response(200, text=sample_m3u_content))
        attempts = []
        result = await service.register_source(m3u_playlist(), on_attempt=attempts.append)

        assert result.registered is True
        assert result.playlist.status == SourceStatus.OK
        assert service.get_source(result.playlist.id) is not None
        assert attempts == [1]

    @pytest.mark.asyncio
    async def test_failed_probe_is_not_registered(self, service):
        result = await service.register_source(m3u_playlist())

        assert result.registered is False
        assert result.probe.attempts == 3
        assert result.probe.force_add is not None
        assert service.sources == []

    @pytest.mark.asyncio
    async def test_force_add_marks_failed(self, service):
        result = await service.register_source(m3u_playlist(), force=True)

        assert result.registered is True
        assert result.playlist.status == SourceStatus.FAILED
        assert service.sources == [result.playlist]

    @pytest.mark.asyncio
    async def test_remove_source_drops_content(self, service, catalog, upstream, sample_m3u_content):
        upstream.route("/playlist.m3u", httpx.Response(200, text=sample_m3u_content))
        playlist = await registered(service, m3u_playlist())
        await service.refresh(playlist.id)

        assert service.remove_source(playlist.id) is True
        assert catalog.channels == ()
        assert service.remove_source(playlist.id) is False


class TestM3URefresh:

    @pytest.mark.asyncio
    async def test_refresh_loads_catalog(self, service, catalog, upstream, sample_m3u_content):
        upstream.route("/playlist.m3u", httpx.Response(200, text=sample_m3u_content))
        playlist = await registered(service, m3u_playlist())

        result = await service.refresh(playlist.id)

        assert result.success is True
        assert (result.channels, result.movies) == (2, 1)
        assert len(catalog.channels) == 2
        assert len(catalog.movies) == 1
        source = service.get_source(playlist.id)
        assert source.status == SourceStatus.OK
        assert source.last_updated is not None

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_content(self, service, catalog, upstream, sample_m3u_content):
        upstream.route(
            "/playlist.m3u",
            httpx.Response(200, text=sample_m3u_content),
            httpx.Response(200, text=sample_m3u_content),
            httpx.Response(500),
        )
        playlist = await registered(service, m3u_playlist())
        await service.refresh(playlist.id)
        before = catalog.channels

        result = await service.refresh(playlist.id)

        assert result.success is False
        assert result.errors
        assert catalog.channels == before
        assert service.get_source(playlist.id).status == SourceStatus.FAILED

    @pytest.mark.asyncio
    async def test_refresh_local_file(self, catalog, settings, sample_m3u_file):
        service = IngestionService(catalog, settings)
        playlist = Playlist(name="Local", type=PlaylistType.M3U, url=str(sample_m3u_file))
        playlist = await registered(service, playlist)

        result = await service.refresh(playlist.id)

        assert result.success is True
        assert len(catalog.channels) == 2

    @pytest.mark.asyncio
    async def test_refresh_unknown_playlist(self, service, playlist_id):
        result = await service.refresh(playlist_id)

        assert result.success is False
        assert result.errors == ["Unknown playlist"]

    @pytest.mark.asyncio
    async def test_cancelled_refresh_applies_nothing(self, service, catalog, upstream, sample_m3u_content):
        upstream.route("/playlist.m3u", httpx.Response(200, text=sample_m3u_content))
        playlist = await registered(service, m3u_playlist())
        cancel = CancelFlag()
        cancel.cancel()

        result = await service.refresh(playlist.id, cancel)

        assert result.cancelled is True
        assert catalog.channels == ()

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_skipped(self, catalog, settings, sample_m3u_content):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def handler(request):
            if request.method == "GET" and entered.is_set():
                await release.wait()
            entered.set()
            return httpx.Response(200, text=sample_m3u_content)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = IngestionService(catalog, settings, client)
        playlist = await registered(service, m3u_playlist())

        first = asyncio.create_task(service.refresh(playlist.id))
        await asyncio.sleep(0)
        second = await service.refresh(playlist.id)
        release.set()
        first_result = await first

        assert second.skipped is True
        assert first_result.success is True
        assert len(catalog.channels) == 2

    @pytest.mark.asyncio
    async def test_source_removed_during_refresh(self, catalog, settings, sample_m3u_content):
        service = None
        playlist = None

        def handler(request):
            if playlist is not None:
                service.remove_source(playlist.id)
            return httpx.Response(200, text=sample_m3u_content)

        service = IngestionService(catalog, settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        playlist = await registered(service, m3u_playlist())

        result = await service.refresh(playlist.id)

        assert result.cancelled is True
        assert catalog.channels == ()


XTREAM_LIVE = [
    {"num": 1, "name": "News HD", "stream_id": 101, "category_id": "1", "epg_channel_id": "news.uk"},
    {"num": 2, "name": "Sport HD", "stream_id": 102, "category_id": "2"},
]
XTREAM_CATEGORIES = [{"category_id": "1", "category_name": "News"}, {"category_id": "2", "category_name": "Sports"}]


class TestXtreamRefresh:

    @pytest.fixture
    def panel(self, upstream):
        upstream.route("player_api.php:", json_response({"user_info": {"auth": 1}}))
        upstream.route("player_api.php:get_live_categories", json_response(XTREAM_CATEGORIES))
        upstream.route("player_api.php:get_vod_categories", json_response([]))
        upstream.route("player_api.php:get_series_categories", json_response([]))
        upstream.route("player_api.php:get_live_streams", json_response(XTREAM_LIVE))
        upstream.route("player_api.php:get_vod_streams", json_response([{"name": "Film", "stream_id": 5}]))
        upstream.route("player_api.php:get_series", json_response([{"name": "Series", "series_id": 9}]))
        return upstream

    @pytest.mark.asyncio
    async def test_full_refresh(self, service, catalog, panel):
        playlist = await registered(service, xtream_playlist())
        assert playlist.status == SourceStatus.OK

        result = await service.refresh(playlist.id)

        assert result.success is True
        assert (result.channels, result.movies, result.shows) == (2, 1, 1)
        news = catalog.get_channel(playlist.id, "101")
        assert news.category == "News"
        assert news.tvg_id == "news.uk"
        assert news.stream_url == "http://host/live/u/p/101.ts"
        assert catalog.get_movie(playlist.id, "5").stream_url == "http://host/movie/u/p/5.mp4"

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_failed_type(self, service, catalog, panel):
        playlist = await registered(service, xtream_playlist())
        old_movie = Movie(id="old", title="Old", playlist_id=playlist.id, stream_url="http://x/old")
        catalog.replace_for_source(playlist.id, movies=[old_movie])
        panel.route("player_api.php:get_vod_streams", httpx.Response(500))

        result = await service.refresh(playlist.id)

        assert result.success is False
        assert any(error.startswith("vod:") for error in result.errors)
        assert len(catalog.channels) == 2
        assert catalog.movies == (old_movie,)
        assert len(catalog.shows) == 1

    @pytest.mark.asyncio
    async def test_category_failure_falls_back_to_ids(self, service, catalog, panel):
        panel.route("player_api.php:get_live_categories", httpx.Response(500))
        playlist = await registered(service, xtream_playlist())

        result = await service.refresh(playlist.id)

        assert result.success is True
        assert catalog.get_channel(playlist.id, "101").category == "1"

    @pytest.mark.asyncio
    async def test_series_info(self, catalog, panel):
        panel.route("player_api.php:get_series_info", json_response({
            "episodes": {"1": [{"id": "91", "episode_num": 1, "title": "Pilot"}]},
        }))
        settings = Settings(probe_delay=0, xtream_series_info=True)
        service = IngestionService(catalog, settings, panel.client())
        playlist = await registered(service, xtream_playlist())

        await service.refresh(playlist.id)

        show = catalog.get_show(playlist.id, "9")
        assert show.episode_count == 1
        assert show.seasons[0].episodes[0].title == "Pilot"

    @pytest.mark.asyncio
    async def test_cancel_during_series_info(self, catalog, panel):
        cancel = CancelFlag()

        def series_info(request):
            cancel.cancel()
            return json_response({"episodes": {}})

        panel.route("player_api.php:get_series", json_response([
            {"name": "First", "series_id": 9},
            {"name": "Second", "series_id": 10},
        ]))
        panel.routes["player_api.php:get_series_info"] = series_info
        settings = Settings(probe_delay=0, xtream_series_info=True, xtream_concurrency=1)
        service = IngestionService(catalog, settings, panel.client())
        playlist = await registered(service, xtream_playlist())

        result = await service.refresh(playlist.id, cancel)

        assert result.cancelled is True
        assert catalog.shows == ()
        assert catalog.channels == ()

    def test_epg_url_defaults_to_panel_export(self, service):
        assert service.epg_url_for(xtream_playlist()) == "http://host/xmltv.php?username=u&password=p"
        assert service.epg_url_for(xtream_playlist(epg_url=EPG_URL)) == EPG_URL
        assert service.epg_url_for(m3u_playlist()) is None


class TestEPGRefresh:

    @pytest.mark.asyncio
    async def test_remote_guide(self, service, catalog, upstream, sample_m3u_content, sample_epg_xml):
        upstream.route("/playlist.m3u", httpx.Response(200, text=sample_m3u_content))
        upstream.route("/guide.xml", httpx.Response(200, content=sample_epg_xml.encode("utf-8")))
        playlist = await registered(service, m3u_playlist(epg_url=EPG_URL))
        await service.refresh(playlist.id)

        programs = await service.refresh_epg(playlist.id)

        assert programs == 2
        bbc = catalog.channels[0]
        at = datetime(2025, 12, 12, 10, 40, tzinfo=timezone.utc)
        assert catalog.now_next(bbc, at).current.title == "Weather Update"

    @pytest.mark.asyncio
    async def test_local_guide(self, service, catalog, sample_epg_file):
        playlist = await registered(service, m3u_playlist(epg_url=str(sample_epg_file)))

        assert await service.refresh_epg(playlist.id) == 2
        assert len(catalog.epg_channels) == 2

    @pytest.mark.asyncio
    async def test_guide_fetch_failure(self, service, catalog):
        playlist = await registered(service, m3u_playlist(epg_url=EPG_URL))

        assert await service.refresh_epg(playlist.id) is None
        assert catalog.programs == []

    @pytest.mark.asyncio
    async def test_error_page_keeps_loaded_guide(self, service, catalog, upstream, sample_epg_xml):
        upstream.route(
            "/guide.xml",
            httpx.Response(200, content=sample_epg_xml.encode("utf-8")),
            httpx.Response(200, content=b"<html><body>502 Bad Gateway</html>"),
        )
        playlist = await registered(service, m3u_playlist(epg_url=EPG_URL))
        assert await service.refresh_epg(playlist.id) == 2

        assert await service.refresh_epg(playlist.id) is None
        assert len(catalog.programs) == 2

    @pytest.mark.asyncio
    async def test_source_removed_during_guide_download(self, catalog, settings, sample_epg_xml):
        service = None
        playlist = None

        def handler(request):
            if playlist is not None and request.url.path == "/guide.xml":
                service.remove_source(playlist.id)
            return httpx.Response(200, content=sample_epg_xml.encode("utf-8"))

        service = IngestionService(catalog, settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        playlist = await registered(service, m3u_playlist(epg_url=EPG_URL))

        assert await service.refresh_epg(playlist.id) is None
        assert catalog.programs == []
        assert catalog.epg_channels == []

    @pytest.mark.asyncio
    async def test_no_guide(self, service):
        playlist = await registered(service, m3u_playlist())
        assert await service.refresh_epg(playlist.id) is None


class TestScheduling:

    @pytest.mark.asyncio
    async def test_refresh_due(self, service, upstream, sample_m3u_content):
        upstream.route("/playlist.m3u", httpx.Response(200, text=sample_m3u_content))
        now = datetime.now(timezone.utc)
        due = await registered(service, m3u_playlist())
        fresh = await registered(service, m3u_playlist(last_updated=now - timedelta(hours=1)))
        await registered(service, m3u_playlist(is_active=False))

        results = await service.refresh_due(now)

        assert [r.playlist_id for r in results] == [due.id]
        assert fresh.id not in [r.playlist_id for r in results]

    @pytest.mark.asyncio
    async def test_start_disabled_by_default(self, service):
        await service.start()
        assert service._task is None
        await service.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, catalog):
        service = IngestionService(catalog, Settings(auto_refresh_minutes=60))
        await service.start()
        assert service._task is not None

        await service.stop()
        assert service._task.done()
