"""
Catalog content models: live channels and VOD (movies, shows, episodes).
Every record is scoped to the playlist it was ingested from.
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ContentKind(str, Enum):
    """Which catalog a record belongs to."""
    CHANNEL = "channel"
    MOVIE = "movie"
    SHOW = "show"

    @property
    def all_label(self) -> str:
        """Label of the synthetic "everything" category, e.g. "All Channels"."""
        return f"All {self.value.capitalize()}s"


class Channel(BaseModel):
    """Live TV channel. EPG data is derived at read time, never stored here."""
    kind: Literal["channel"] = "channel"
    id: str  # Unique within playlist_id only
    name: str
    category: str = "Other"
    stream_url: str
    logo_url: Optional[str] = None
    tvg_id: Optional[str] = None  # EPG join key
    playlist_id: UUID
    order: int = 0
    catchup_available: bool = False
    catchup_days: Optional[int] = None
    catchup_url_template: Optional[str] = None

    @property
    def title(self) -> str:
        return self.name


class VODContent(BaseModel):
    """Metadata shared by every VOD record."""
    id: str
    title: str
    description: Optional[str] = None
    poster_url: Optional[str] = None
    category: str = "Other"
    playlist_id: UUID
    rating: Optional[str] = None
    year: Optional[int] = None


class Movie(VODContent):
    kind: Literal["movie"] = "movie"
    stream_url: str
    duration: float = 5400  # seconds
    added_date: Optional[datetime] = None
    tmdb_id: Optional[int] = None


class Episode(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    season_number: int
    episode_number: int
    stream_url: str
    thumbnail_url: Optional[str] = None
    duration: float = 0
    air_date: Optional[datetime] = None


class Season(BaseModel):
    number: int
    episodes: list[Episode] = Field(default_factory=list)


class TVShow(VODContent):
    kind: Literal["show"] = "show"
    seasons: list[Season] = Field(default_factory=list)
    tmdb_id: Optional[int] = None

    @property
    def episode_count(self) -> int:
        return sum(len(season.episodes) for season in self.seasons)


class WatchProgress(BaseModel):
    """Playback position per (content, profile)."""
    content_id: str
    profile_id: UUID
    position: float
    duration: float
    last_watched: datetime
    completed: bool = False

    @property
    def progress(self) -> float:
        return self.position / self.duration if self.duration > 0 else 0.0
