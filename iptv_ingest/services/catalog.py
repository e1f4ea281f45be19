"""
Catalog store.

Owns the merged channel, movie and show catalogs of every playlist plus the
loaded EPG guides. Content is replaced per playlist as a whole batch; EPG
programs are joined onto channels by tvg-id at read time.
"""
import logging
from bisect import bisect_left, bisect_right
from collections import Counter
from datetime import datetime
from typing import Collection, Iterable, Optional, Sequence, Union
from uuid import UUID

from iptv_ingest.models.content import Channel, ContentKind, Movie, TVShow
from iptv_ingest.models.epg import EPGChannel, EPGProgram, NowNext

logger = logging.getLogger(__name__)

FAVORITES = "Favorites"

Content = Union[Channel, Movie, TVShow]


class _ProgramIndex:
    """Programs of one EPG channel sorted by start time."""

    def __init__(self, programs: Iterable[EPGProgram]):
        self.programs = sorted(programs, key=lambda p: p.start)
        self.starts = [p.start for p in self.programs]
        # Latest stop among programs[:i + 1]; guides may overlap
        self.max_stops = []
        for prog in self.programs:
            latest = self.max_stops[-1] if self.max_stops else prog.stop
            self.max_stops.append(max(latest, prog.stop))

    def current(self, at: datetime) -> Optional[EPGProgram]:
        """Latest-starting program with start <= at < stop."""
        idx = bisect_right(self.starts, at) - 1
        while idx >= 0 and self.max_stops[idx] > at:
            prog = self.programs[idx]
            if at < prog.stop:
                return prog
            idx -= 1
        return None

    def next(self, at: datetime) -> Optional[EPGProgram]:
        idx = bisect_left(self.starts, at)
        return self.programs[idx] if idx < len(self.programs) else None

    def window(self, start: datetime, end: datetime) -> list[EPGProgram]:
        return [p for p in self.programs if p.stop > start and p.start < end]


class CatalogStore:
    """In-memory catalog shared by the ingestion service and the read API."""

    def __init__(self):
        self._channels: list[Channel] = []
        self._movies: list[Movie] = []
        self._shows: list[TVShow] = []
        self._epg_channels: dict[UUID, list[EPGChannel]] = {}
        self._epg_programs: dict[UUID, dict[str, EPGProgram]] = {}
        self._program_index: dict[str, _ProgramIndex] = {}

    # Content replacement

    def replace_for_source(
        self,
        playlist_id: UUID,
        channels: Optional[Sequence[Channel]] = None,
        movies: Optional[Sequence[Movie]] = None,
        shows: Optional[Sequence[TVShow]] = None,
    ):
        """
        Replace everything a playlist owns in the given catalogs.

        A catalog passed as None is left as it is, so a failed fetch for one
        content type keeps its previous records. Records of other playlists
        are never touched.
        """
        if channels is not None:
            self._channels = self._swap(self._channels, playlist_id, channels)
        if movies is not None:
            self._movies = self._swap(self._movies, playlist_id, movies)
        if shows is not None:
            self._shows = self._swap(self._shows, playlist_id, shows)

        logger.info(
            f"Catalog updated for playlist {playlist_id}: "
            f"channels={'kept' if channels is None else len(channels)} "
            f"movies={'kept' if movies is None else len(movies)} "
            f"shows={'kept' if shows is None else len(shows)}"
        )

    update_content = replace_for_source

    @staticmethod
    def _swap(current: list, playlist_id: UUID, new: Sequence) -> list:
        foreign = [item for item in new if item.playlist_id != playlist_id]
        if foreign:
            logger.warning(f"Ignoring {len(foreign)} records not owned by playlist {playlist_id}")
        kept = [item for item in current if item.playlist_id != playlist_id]
        return kept + [item for item in new if item.playlist_id == playlist_id]

    def remove_source(self, playlist_id: UUID):
        """Drop all content and EPG owned by a playlist."""
        self.replace_for_source(playlist_id, channels=[], movies=[], shows=[])
        if self._epg_programs.pop(playlist_id, None) is not None:
            self._epg_channels.pop(playlist_id, None)
            self._rebuild_program_index()

    # Snapshots

    @property
    def channels(self) -> tuple[Channel, ...]:
        return tuple(self._channels)

    @property
    def movies(self) -> tuple[Movie, ...]:
        return tuple(self._movies)

    @property
    def shows(self) -> tuple[TVShow, ...]:
        return tuple(self._shows)

    def items(self, kind: ContentKind) -> tuple[Content, ...]:
        if kind == ContentKind.CHANNEL:
            return self.channels
        if kind == ContentKind.MOVIE:
            return self.movies
        return self.shows

    def _find(self, kind: ContentKind, playlist_id: UUID, item_id: str) -> Optional[Content]:
        for item in self.items(kind):
            if item.playlist_id == playlist_id and item.id == item_id:
                return item
        return None

    def get_channel(self, playlist_id: UUID, channel_id: str) -> Optional[Channel]:
        return self._find(ContentKind.CHANNEL, playlist_id, channel_id)

    def get_movie(self, playlist_id: UUID, movie_id: str) -> Optional[Movie]:
        return self._find(ContentKind.MOVIE, playlist_id, movie_id)

    def get_show(self, playlist_id: UUID, show_id: str) -> Optional[TVShow]:
        return self._find(ContentKind.SHOW, playlist_id, show_id)

    # Categories

    def categories(self, kind: ContentKind) -> list[str]:
        """Synthetic "All <Type>" and "Favorites" first, then distinct categories."""
        distinct = sorted({item.category for item in self.items(kind)})
        return [kind.all_label, FAVORITES] + [c for c in distinct if c not in (kind.all_label, FAVORITES)]

    def query_by_category(
        self,
        kind: ContentKind,
        category: str,
        favorites: Optional[Collection[str]] = None,
    ) -> list[Content]:
        """
        Filter one catalog by category.

        Args:
            kind: Catalog to read
            category: A real category, "All <Type>" or "Favorites"
            favorites: Favorite item ids from the favorites collaborator
        """
        items = self.items(kind)
        if category == kind.all_label:
            return list(items)
        if category == FAVORITES:
            favorite_ids = set(favorites or ())
            return [item for item in items if item.id in favorite_ids]
        return [item for item in items if item.category == category]

    def search(self, kind: ContentKind, text: str) -> list[Content]:
        needle = text.casefold()
        return [item for item in self.items(kind) if needle in item.title.casefold()]

    # EPG

    def replace_epg(
        self,
        playlist_id: UUID,
        epg_channels: Sequence[EPGChannel],
        programs: Sequence[EPGProgram],
    ):
        """
        Store the guide loaded for one playlist.

        Programs sharing an id (same channel and start) collapse to the last
        one seen.
        """
        by_id: dict[str, EPGProgram] = {}
        for prog in programs:
            by_id[prog.id] = prog
        collisions = len(programs) - len(by_id)
        if collisions:
            logger.warning(
                f"EPG for playlist {playlist_id}: {collisions} programs share a "
                f"channel and start time with a later entry; kept the last"
            )

        self._epg_channels[playlist_id] = list(epg_channels)
        self._epg_programs[playlist_id] = by_id
        self._rebuild_program_index()
        logger.info(f"EPG loaded for playlist {playlist_id}: {len(epg_channels)} channels, {len(by_id)} programs")

    def _rebuild_program_index(self):
        merged: dict[str, EPGProgram] = {}
        for programs in self._epg_programs.values():
            merged.update(programs)

        grouped: dict[str, list[EPGProgram]] = {}
        for prog in merged.values():
            grouped.setdefault(prog.channel_id, []).append(prog)
        self._program_index = {cid: _ProgramIndex(progs) for cid, progs in grouped.items()}

    @property
    def epg_channels(self) -> list[EPGChannel]:
        return [ch for channels in self._epg_channels.values() for ch in channels]

    @property
    def programs(self) -> list[EPGProgram]:
        return [p for index in self._program_index.values() for p in index.programs]

    def current_program(self, channel: Channel, at: datetime) -> Optional[EPGProgram]:
        """Program with start <= at < stop on the channel's tvg-id, if any."""
        if not channel.tvg_id:
            return None
        index = self._program_index.get(channel.tvg_id)
        return index.current(at) if index else None

    def next_program(self, channel: Channel, at: datetime) -> Optional[EPGProgram]:
        """Earliest program starting at or after `at`."""
        if not channel.tvg_id:
            return None
        index = self._program_index.get(channel.tvg_id)
        return index.next(at) if index else None

    def now_next(self, channel: Channel, at: datetime) -> NowNext:
        current = self.current_program(channel, at)
        # "Next" follows the current program, not the instant itself
        upcoming = self.next_program(channel, current.stop if current else at)
        return NowNext(channel_id=channel.id, current=current, next=upcoming)

    def programs_for(self, tvg_id: str, start: datetime, end: datetime) -> list[EPGProgram]:
        index = self._program_index.get(tvg_id)
        return index.window(start, end) if index else []

    def stats(self) -> dict:
        per_playlist = Counter(str(item.playlist_id) for kind in ContentKind for item in self.items(kind))
        return {
            "channels": len(self._channels),
            "movies": len(self._movies),
            "shows": len(self._shows),
            "epg_channels": len(self.epg_channels),
            "programs": sum(len(index.programs) for index in self._program_index.values()),
            "per_playlist": dict(per_playlist),
        }
