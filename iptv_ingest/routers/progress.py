"""
Watch progress endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from uuid import UUID

from iptv_ingest.dependencies import get_progress_store
from iptv_ingest.services.progress import WatchProgressStore

router = APIRouter(prefix="/api/progress", tags=["progress"])


class ProgressRequest(BaseModel):
    content_id: str
    position: float = Field(ge=0)
    duration: float = Field(ge=0)


@router.get("/{profile_id}")
async def list_progress(profile_id: UUID, store: WatchProgressStore = Depends(get_progress_store)):
    """Progress entries of a profile, most recently watched first."""
    entries = store.for_profile(profile_id)
    return {"progress": entries, "count": len(entries)}


@router.get("/{profile_id}/{content_id}")
async def get_progress(profile_id: UUID, content_id: str, store: WatchProgressStore = Depends(get_progress_store)):
    progress = store.get(content_id, profile_id)
    if not progress:
        raise HTTPException(status_code=404, detail="No progress recorded")
    return progress


@router.post("/{profile_id}")
async def update_progress(
    profile_id: UUID,
    request: ProgressRequest,
    store: WatchProgressStore = Depends(get_progress_store),
):
    """Record a playback position."""
    return store.update(request.content_id, profile_id, request.position, request.duration)
