"""
Playlist source models and the result types returned by probes and refreshes.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class PlaylistType(str, Enum):
    M3U = "m3u"
    XTREAM = "xtream"


class SourceStatus(str, Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    FAILED = "failed"  # Force-added after a failed probe, or last refresh failed


class XtreamCredentials(BaseModel):
    server_url: str
    username: str
    password: str


class Playlist(BaseModel):
    """A named remote source: an M3U URL or an Xtream server with credentials."""
    id: UUID = Field(default_factory=uuid4)
    name: str
    type: PlaylistType
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    epg_url: Optional[str] = None
    refresh_interval: float = 24  # hours
    last_updated: Optional[datetime] = None
    is_active: bool = True
    status: SourceStatus = SourceStatus.UNKNOWN

    @property
    def credentials(self) -> Optional[XtreamCredentials]:
        if self.type != PlaylistType.XTREAM:
            return None
        return XtreamCredentials(
            server_url=self.url,
            username=self.username or "",
            password=self.password or "",
        )

    def is_due(self, now: datetime) -> bool:
        """Whether the refresh interval has elapsed since the last update."""
        if not self.is_active:
            return False
        if self.last_updated is None:
            return True
        return now - self.last_updated >= timedelta(hours=self.refresh_interval)


class ForceAddPrompt(BaseModel):
    """Payload for the "add it anyway?" confirmation after a failed probe."""
    source_name: str
    attempts: int
    reason: Optional[str] = None
    message: str


class ProbeResult(BaseModel):
    success: bool
    attempts: int
    reason: Optional[str] = None
    force_add: Optional[ForceAddPrompt] = None


class RegistrationResult(BaseModel):
    registered: bool
    playlist: Playlist
    probe: ProbeResult


class RefreshResult(BaseModel):
    playlist_id: UUID
    success: bool
    skipped: bool = False
    cancelled: bool = False
    channels: int = 0
    movies: int = 0
    shows: int = 0
    errors: list[str] = Field(default_factory=list)
