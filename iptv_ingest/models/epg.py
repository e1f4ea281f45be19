"""
EPG (Electronic Program Guide) data models.
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class EPGChannel(BaseModel):
    """Channel info from an XMLTV <channel> element."""
    id: str
    display_name: str = ""
    icon_url: Optional[str] = None


class EPGProgram(BaseModel):
    """TV program from an XMLTV <programme> element."""
    id: str  # "{channel_id}-{start epoch seconds}"
    channel_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    start: datetime
    stop: datetime

    @property
    def duration_minutes(self) -> int:
        """Calculate program duration in minutes."""
        return int((self.stop - self.start).total_seconds() / 60)

    def is_airing(self, at: datetime) -> bool:
        """Check if program is airing at the given instant (stop is exclusive)."""
        return self.start <= at < self.stop

    def progress_percent(self, at: datetime) -> float:
        """Get playback progress as percentage (0-100)."""
        if not self.is_airing(at):
            return 0.0 if at < self.start else 100.0
        total = (self.stop - self.start).total_seconds()
        elapsed = (at - self.start).total_seconds()
        return min(100.0, (elapsed / total) * 100)


class EPGParseResult(BaseModel):
    """Everything accumulated from one XMLTV document."""
    channels: list[EPGChannel] = Field(default_factory=list)
    programs: list[EPGProgram] = Field(default_factory=list)
    error: Optional[str] = None  # Set when the document stopped on a syntax error

    @property
    def is_empty(self) -> bool:
        return not self.channels and not self.programs


class NowNext(BaseModel):
    """Currently airing and upcoming program for a channel."""
    channel_id: str
    current: Optional[EPGProgram] = None
    next: Optional[EPGProgram] = None
