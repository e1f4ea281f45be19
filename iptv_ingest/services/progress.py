"""
Watch progress per (content, profile), independent of the catalog.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from iptv_ingest.models.content import WatchProgress

# Watched this fraction of the runtime counts as completed
COMPLETION_THRESHOLD = 0.9


class WatchProgressStore:

    def __init__(self):
        self._entries: dict[tuple[str, UUID], WatchProgress] = {}

    def update(self, content_id: str, profile_id: UUID, position: float, duration: float) -> WatchProgress:
        progress = WatchProgress(
            content_id=content_id,
            profile_id=profile_id,
            position=position,
            duration=duration,
            last_watched=datetime.now(timezone.utc),
            completed=duration > 0 and position >= duration * COMPLETION_THRESHOLD,
        )
        self._entries[(content_id, profile_id)] = progress
        return progress

    def get(self, content_id: str, profile_id: UUID) -> Optional[WatchProgress]:
        return self._entries.get((content_id, profile_id))

    def for_profile(self, profile_id: UUID) -> list[WatchProgress]:
        entries = [p for (_, pid), p in self._entries.items() if pid == profile_id]
        return sorted(entries, key=lambda p: p.last_watched, reverse=True)
