"""
Playlist source endpoints: probe, register, refresh, remove.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from iptv_ingest.dependencies import get_ingestion
from iptv_ingest.models.source import Playlist, PlaylistType, XtreamCredentials
from iptv_ingest.services.ingestion import IngestionService
from iptv_ingest.services.prober import M3UTarget, XtreamTarget

router = APIRouter(prefix="/api", tags=["sources"])


class SourceRequest(BaseModel):
    name: str
    type: PlaylistType
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    epg_url: Optional[str] = None
    refresh_interval: Optional[float] = None  # hours; defaults to IPTV_REFRESH_INTERVAL_HOURS
    is_active: bool = True


def _require(ingestion: IngestionService, playlist_id: UUID) -> Playlist:
    playlist = ingestion.get_source(playlist_id)
    if not playlist:
        raise HTTPException(status_code=404, detail="Source not found")
    return playlist


@router.get("/sources")
async def list_sources(ingestion: IngestionService = Depends(get_ingestion)):
    """List registered sources with their status."""
    sources = ingestion.sources
    return {"sources": sources, "count": len(sources)}


@router.post("/probe")
async def probe_source(request: SourceRequest, ingestion: IngestionService = Depends(get_ingestion)):
    """
    Check that a source answers, without registering it.
    Retries a fixed number of times; the response carries the attempt count.
    """
    if request.type == PlaylistType.XTREAM:
        target = XtreamTarget(
            credentials=XtreamCredentials(
                server_url=request.url,
                username=request.username or "",
                password=request.password or "",
            ),
            name=request.name,
        )
    else:
        target = M3UTarget(url=request.url, name=request.name)
    return await ingestion.prober.probe(target)


@router.post("/sources")
async def add_source(
    request: SourceRequest,
    force: bool = Query(False, description="Register even if the probe fails"),
    refresh: bool = Query(True, description="Load content right after registering"),
    ingestion: IngestionService = Depends(get_ingestion),
):
    """
    Probe and register a source.

    If the probe fails and `force` is not set, nothing is stored and the
    response includes a `force_add` prompt for the client to confirm.
    """
    playlist = Playlist(
        **request.model_dump(exclude={"refresh_interval"}),
        refresh_interval=request.refresh_interval or ingestion.settings.refresh_interval_hours,
    )
    registration = await ingestion.register_source(playlist, force=force)

    response = {
        "registered": registration.registered,
        "playlist": registration.playlist,
        "probe": registration.probe,
    }
    if registration.registered and refresh:
        response["refresh"] = await ingestion.refresh(registration.playlist.id)
        response["epg_programs"] = await ingestion.refresh_epg(registration.playlist.id)
    return response


@router.post("/sources/{playlist_id}/refresh")
async def refresh_source(playlist_id: UUID, ingestion: IngestionService = Depends(get_ingestion)):
    """Reload a source's content. On failure the previous content stays."""
    _require(ingestion, playlist_id)
    return await ingestion.refresh(playlist_id)


@router.post("/sources/{playlist_id}/epg")
async def refresh_source_epg(playlist_id: UUID, ingestion: IngestionService = Depends(get_ingestion)):
    """Reload a source's EPG guide."""
    _require(ingestion, playlist_id)
    programs = await ingestion.refresh_epg(playlist_id)
    return {"success": programs is not None, "programs": programs or 0}


@router.delete("/sources/{playlist_id}")
async def remove_source(playlist_id: UUID, ingestion: IngestionService = Depends(get_ingestion)):
    """Remove a source and everything it owns."""
    _require(ingestion, playlist_id)
    ingestion.remove_source(playlist_id)
    return {"success": True}
