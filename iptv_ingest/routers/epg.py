"""
EPG (Electronic Program Guide) API endpoints.
"""
from datetime import timedelta
from fastapi import APIRouter, Depends, Query
from typing import Optional

from iptv_ingest.dependencies import get_catalog, parse_instant
from iptv_ingest.services.catalog import CatalogStore

router = APIRouter(prefix="/api/epg", tags=["epg"])


@router.get("/stats")
async def get_epg_stats(catalog: CatalogStore = Depends(get_catalog)):
    """
    Get EPG statistics.
    """
    stats = catalog.stats()
    return {"epg_channels": stats["epg_channels"], "programs": stats["programs"]}


@router.get("/channels")
async def list_epg_channels(catalog: CatalogStore = Depends(get_catalog)):
    """List channels declared by the loaded guides."""
    channels = catalog.epg_channels
    return {"channels": channels, "count": len(channels)}


@router.get("/{tvg_id}")
async def get_channel_epg(
    tvg_id: str,
    start: Optional[str] = Query(None, description="Start time (ISO format, default now)"),
    hours: int = Query(24, ge=1, le=168, description="Hours of EPG data to return"),
    catalog: CatalogStore = Depends(get_catalog),
):
    """
    Get guide data for an EPG channel id (a channel's tvg-id).

    Not all channels have EPG data.
    """
    start_time = parse_instant(start)
    end_time = start_time + timedelta(hours=hours)
    programs = catalog.programs_for(tvg_id, start_time, end_time)

    return {
        "channel_id": tvg_id,
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "programs": programs,
        "count": len(programs)
    }
