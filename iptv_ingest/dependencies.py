"""
FastAPI dependencies: hand routers the services owned by the running app.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, Request

from iptv_ingest.services.catalog import CatalogStore
from iptv_ingest.services.ingestion import IngestionService
from iptv_ingest.services.progress import WatchProgressStore


def get_catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


def get_ingestion(request: Request) -> IngestionService:
    return request.app.state.ingestion


def get_progress_store(request: Request) -> WatchProgressStore:
    return request.app.state.progress


def parse_instant(value: Optional[str]) -> datetime:
    """ISO timestamp from a query parameter (naive means UTC), or now."""
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid time format")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_ids(value: Optional[str]) -> set[str]:
    """Comma-separated ids from a query parameter."""
    if not value:
        return set()
    return {part.strip() for part in value.split(",") if part.strip()}
