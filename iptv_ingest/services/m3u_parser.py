"""
M3U Parser Service.
Turns M3U playlist text into channel and movie records for one playlist.
"""
import re
from pathlib import Path
from typing import Optional
from uuid import UUID
import logging
import hashlib

from iptv_ingest.models.content import Channel, Movie
from iptv_ingest.services.errors import CancelFlag

logger = logging.getLogger(__name__)

EXTINF_PREFIX = '#EXTINF:'
HEADER = '#EXTM3U'

# Quoted attribute values inside the EXTINF metadata blob
ATTRIBUTE_PATTERNS = {
    'group-title': re.compile(r'group-title="([^"]*)"'),
    'tvg-logo': re.compile(r'tvg-logo="([^"]*)"'),
    'tvg-id': re.compile(r'tvg-id="([^"]*)"'),
    'catchup-days': re.compile(r'catchup-days="(\d+)"'),
    'catchup-source': re.compile(r'catchup-source="([^"]*)"'),
}


def m3u_has_header(text: str) -> bool:
    """Check that the first non-blank line is the #EXTM3U header."""
    for line in text.lstrip('\ufeff').splitlines():
        line = line.strip()
        if line:
            return line.startswith(HEADER)
    return False


class M3UParser:
    """Parse M3U playlists into Channel and Movie records."""

    def __init__(self, default_category: str = 'Other'):
        self.default_category = default_category

    def parse(
        self,
        text: str,
        playlist_id: UUID,
        cancel: Optional[CancelFlag] = None,
    ) -> tuple[list[Channel], list[Movie]]:
        """
        Parse M3U text, preserving file order.

        Args:
            text: Raw playlist content
            playlist_id: Playlist that owns every produced record
            cancel: Optional flag checked once per line

        Returns:
            (channels, movies)
        """
        channels: list[Channel] = []
        movies: list[Movie] = []
        current_info = None

        for line in text.splitlines():
            if cancel is not None:
                cancel.raise_if_cancelled()

            if line.startswith(EXTINF_PREFIX):
                # A new EXTINF always replaces an entry still waiting for its URL
                current_info = self._parse_extinf(line[len(EXTINF_PREFIX):])
                if current_info is None:
                    logger.debug(f"Skipping malformed EXTINF line: {line[:80]}")
                continue

            line = line.strip()
            if not line or line.startswith('#'):
                continue

            if current_info is None:
                continue

            # This is the URL line
            if current_info['type'] == 'movie':
                movies.append(self._make_movie(current_info, line, playlist_id, len(movies)))
            else:
                channels.append(self._make_channel(current_info, line, playlist_id, len(channels)))

            current_info = None

        if current_info is not None:
            logger.debug(f"Dropping trailing entry without URL: {current_info['title']}")

        logger.info(f"Parsed {len(channels)} channels and {len(movies)} movies for playlist {playlist_id}")
        return channels, movies

    def parse_file(
        self,
        filepath: str | Path,
        playlist_id: UUID,
        cancel: Optional[CancelFlag] = None,
    ) -> tuple[list[Channel], list[Movie]]:
        """Parse a local M3U file."""
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"M3U file not found: {filepath}")

        logger.info(f"Parsing M3U file: {filepath}")
        text = filepath.read_text(encoding='utf-8', errors='ignore')
        return self.parse(text, playlist_id, cancel)

    def _parse_extinf(self, info: str) -> Optional[dict]:
        """Split the EXTINF payload into metadata blob and title."""
        if ',' not in info:
            return None

        parts = info.split(',')
        meta = parts[0]
        title = parts[-1].strip()
        if not title:
            return None

        attrs = {}
        for name, pattern in ATTRIBUTE_PATTERNS.items():
            match = pattern.search(meta)
            if match:
                attrs[name] = match.group(1)

        if 'type=movie' in meta or ('catchup=' in meta and 'movie' in meta):
            entry_type = 'movie'
        else:
            entry_type = 'channel'

        return {
            'title': title,
            'type': entry_type,
            'category': attrs.get('group-title') or self.default_category,
            'logo': attrs.get('tvg-logo') or None,
            'tvg_id': attrs.get('tvg-id') or None,
            'catchup': 'catchup=' in meta or 'catchup-days=' in meta,
            'catchup_days': int(attrs['catchup-days']) if 'catchup-days' in attrs else None,
            'catchup_source': attrs.get('catchup-source') or None,
        }

    @staticmethod
    def _make_id(playlist_id: UUID, order: int, url: str) -> str:
        unique_str = f"{playlist_id}{order}{url}"
        return hashlib.md5(unique_str.encode()).hexdigest()[:12]

    def _make_channel(self, info: dict, url: str, playlist_id: UUID, order: int) -> Channel:
        return Channel(
            id=self._make_id(playlist_id, order, url),
            name=info['title'],
            category=info['category'],
            stream_url=url,
            logo_url=info['logo'],
            tvg_id=info['tvg_id'],
            playlist_id=playlist_id,
            order=order,
            catchup_available=info['catchup'],
            catchup_days=info['catchup_days'],
            catchup_url_template=info['catchup_source'],
        )

    def _make_movie(self, info: dict, url: str, playlist_id: UUID, order: int) -> Movie:
        return Movie(
            id=self._make_id(playlist_id, order, url),
            title=info['title'],
            poster_url=info['logo'],
            category=info['category'],
            playlist_id=playlist_id,
            stream_url=url,
        )


def parse_m3u(
    text: str,
    playlist_id: UUID,
    cancel: Optional[CancelFlag] = None,
    default_category: str = 'Other',
) -> tuple[list[Channel], list[Movie]]:
    """Parse M3U text with a one-off parser."""
    return M3UParser(default_category).parse(text, playlist_id, cancel)
