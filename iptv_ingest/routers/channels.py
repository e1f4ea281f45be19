"""
Live channel API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from uuid import UUID

from iptv_ingest.dependencies import get_catalog, parse_instant, split_ids
from iptv_ingest.models.content import ContentKind
from iptv_ingest.services.catalog import CatalogStore

router = APIRouter(prefix="/api", tags=["channels"])


@router.get("/channels")
async def list_channels(
    category: Optional[str] = Query(None, description="Category, 'All Channels' or 'Favorites'"),
    search: Optional[str] = Query(None, description="Search in channel names"),
    favorites: Optional[str] = Query(None, description="Comma-separated favorite channel IDs"),
    include_epg: bool = Query(False, description="Include now/next info from EPG"),
    at: Optional[str] = Query(None, description="Instant for EPG lookup (ISO format, default now)"),
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=500, description="Results per page"),
    catalog: CatalogStore = Depends(get_catalog),
):
    """
    List channels with filtering and pagination.

    - **category**: A category from /api/categories/channel
    - **favorites**: Favorite ids, used by the "Favorites" category
    - **include_epg**: Attach current and next program for each channel
    """
    kind = ContentKind.CHANNEL
    channels = catalog.query_by_category(kind, category or kind.all_label, split_ids(favorites))
    if search:
        needle = search.casefold()
        channels = [ch for ch in channels if needle in ch.name.casefold()]

    total = len(channels)
    page_items = channels[(page - 1) * per_page:page * per_page]

    results = []
    epg_count = 0
    instant = parse_instant(at) if include_epg else None
    for ch in page_items:
        data = ch.model_dump(mode="json")
        if instant is not None:
            now_next = catalog.now_next(ch, instant)
            if now_next.current is not None:
                epg_count += 1
            data["now_next"] = now_next.model_dump(mode="json")
        results.append(data)

    return {
        "channels": results,
        "total": total,
        "page": page,
        "per_page": per_page,
        "has_more": (page * per_page) < total,
        "epg_count": epg_count
    }


@router.get("/channels/{playlist_id}/{channel_id}")
async def get_channel(playlist_id: UUID, channel_id: str, catalog: CatalogStore = Depends(get_catalog)):
    """Get a single channel of a playlist."""
    channel = catalog.get_channel(playlist_id, channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


@router.get("/channels/{playlist_id}/{channel_id}/now-next")
async def get_now_next(
    playlist_id: UUID,
    channel_id: str,
    at: Optional[str] = Query(None, description="Instant (ISO format, default now)"),
    catalog: CatalogStore = Depends(get_catalog),
):
    """
    Get the program airing at an instant and the one after it.
    Both are null when the channel has no tvg-id or no guide data.
    """
    channel = catalog.get_channel(playlist_id, channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return catalog.now_next(channel, parse_instant(at))


@router.get("/categories/{kind}")
async def list_categories(kind: ContentKind, catalog: CatalogStore = Depends(get_catalog)):
    """
    List categories of a catalog, led by the "All" and "Favorites" pseudo-categories.
    """
    return {"kind": kind.value, "categories": catalog.categories(kind)}
