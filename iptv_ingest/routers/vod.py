"""
Movie and show API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from uuid import UUID

from iptv_ingest.dependencies import get_catalog, split_ids
from iptv_ingest.models.content import ContentKind
from iptv_ingest.services.catalog import CatalogStore

router = APIRouter(prefix="/api", tags=["vod"])


def _list(catalog: CatalogStore, kind: ContentKind, category: Optional[str], search: Optional[str],
          favorites: Optional[str], page: int, per_page: int) -> dict:
    items = catalog.query_by_category(kind, category or kind.all_label, split_ids(favorites))
    if search:
        needle = search.casefold()
        items = [item for item in items if needle in item.title.casefold()]
    total = len(items)
    return {
        "items": items[(page - 1) * per_page:page * per_page],
        "total": total,
        "page": page,
        "per_page": per_page,
        "has_more": (page * per_page) < total,
    }


@router.get("/movies")
async def list_movies(
    category: Optional[str] = Query(None, description="Category, 'All Movies' or 'Favorites'"),
    search: Optional[str] = Query(None, description="Search in titles"),
    favorites: Optional[str] = Query(None, description="Comma-separated favorite movie IDs"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    catalog: CatalogStore = Depends(get_catalog),
):
    """List movies with filtering and pagination."""
    return _list(catalog, ContentKind.MOVIE, category, search, favorites, page, per_page)


@router.get("/shows")
async def list_shows(
    category: Optional[str] = Query(None, description="Category, 'All Shows' or 'Favorites'"),
    search: Optional[str] = Query(None, description="Search in titles"),
    favorites: Optional[str] = Query(None, description="Comma-separated favorite show IDs"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    catalog: CatalogStore = Depends(get_catalog),
):
    """List shows with filtering and pagination."""
    return _list(catalog, ContentKind.SHOW, category, search, favorites, page, per_page)


@router.get("/movies/{playlist_id}/{movie_id}")
async def get_movie(playlist_id: UUID, movie_id: str, catalog: CatalogStore = Depends(get_catalog)):
    movie = catalog.get_movie(playlist_id, movie_id)
    if not movie:
        raise HTTPException(status_code=404, detail="Movie not found")
    return movie


@router.get("/shows/{playlist_id}/{show_id}")
async def get_show(playlist_id: UUID, show_id: str, catalog: CatalogStore = Depends(get_catalog)):
    """Get a show with its seasons and episodes."""
    show = catalog.get_show(playlist_id, show_id)
    if not show:
        raise HTTPException(status_code=404, detail="Show not found")
    return show
