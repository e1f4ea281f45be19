"""
Pytest configuration and fixtures for ingestion tests.
"""
import json
import pytest
from uuid import uuid4

import httpx

from iptv_ingest.config import Settings


@pytest.fixture
def settings():
    """Settings with no probe delay so retry tests run instantly."""
    return Settings(probe_delay=0, http_timeout=5, auto_refresh_minutes=0)


@pytest.fixture
def playlist_id():
    return uuid4()


@pytest.fixture
def sample_m3u_content():
    """Sample M3U content for testing."""
    return """#EXTM3U
#EXTINF:-1 tvg-id="bbc1.uk" tvg-logo="http://example.com/bbc.png" group-title="News",BBC One
http://example.com/bbc-one.m3u8
#EXTINF:-1 tvg-id="cnn.us",CNN
http://example.com/cnn.m3u8
#EXTINF:-1 type=movie tvg-logo="http://example.com/poster.jpg" group-title="Films",The Big Movie
http://example.com/movie.mp4
"""


@pytest.fixture
def sample_m3u_file(sample_m3u_content, tmp_path):
    """Create a temporary M3U file for testing."""
    m3u_file = tmp_path / "playlist.m3u"
    m3u_file.write_text(sample_m3u_content)
    return m3u_file


@pytest.fixture
def sample_epg_xml():
    """Sample XMLTV EPG content for testing."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<tv>
    <channel id="bbc1.uk">
        <display-name>BBC One</display-name>
        <display-name>BBC1</display-name>
        <icon>http://example.com/bbc-icon.png</icon>
    </channel>
    <channel id="cnn.us">
        <display-name>CNN</display-name>
        <icon src="http://example.com/cnn.png"/>
    </channel>
    <programme start="20251212100000 +0000" stop="20251212103000 +0000" channel="bbc1.uk">
        <title>Morning News</title>
        <desc>Daily news broadcast</desc>
        <category>News</category>
    </programme>
    <programme start="20251212103000 +0000" stop="20251212110000 +0000" channel="bbc1.uk">
        <title>Weather Update</title>
    </programme>
</tv>
"""


@pytest.fixture
def sample_epg_file(sample_epg_xml, tmp_path):
    """Create a temporary EPG XML file for testing."""
    epg_file = tmp_path / "test_guide.xml"
    epg_file.write_text(sample_epg_xml)
    return epg_file


class FakeUpstream:
    """
    Scriptable upstream server for httpx.MockTransport.

    Routes are keyed by path, or by "player_api.php:<action>" for Xtream
    calls. A route value is a callable taking the request, or a list of
    responses served in turn (the last one repeats).
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def route(self, key, *responses):
        self.routes[key] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        key = path
        if path.endswith("player_api.php"):
            key = f"player_api.php:{request.url.params.get('action', '')}"
        self.calls.append(key)

        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        response = route.pop(0) if len(route) > 1 else route[0]
        return response() if callable(response) else response

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def json_response(payload, status_code=200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode(),
                          headers={"content-type": "application/json"})


@pytest.fixture
def upstream():
    return FakeUpstream()
