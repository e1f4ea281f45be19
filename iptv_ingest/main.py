"""
IPTV Ingest - FastAPI Backend

Serves the merged channel/VOD catalog and EPG built from registered
M3U and Xtream Codes sources.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from iptv_ingest.config import Settings, get_settings
from iptv_ingest.dependencies import get_catalog
from iptv_ingest.routers import channels, epg, progress, sources, vod
from iptv_ingest.services.catalog import CatalogStore
from iptv_ingest.services.ingestion import IngestionService
from iptv_ingest.services.progress import WatchProgressStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    ingestion: Optional[IngestionService] = None,
) -> FastAPI:
    """Build the API around one catalog and ingestion service."""
    settings = settings or get_settings()
    if ingestion is None:
        ingestion = IngestionService(CatalogStore(), settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown events."""
        logger.info("Starting IPTV Ingest backend...")
        await ingestion.start()

        yield

        await ingestion.stop()
        logger.info("Shutting down IPTV Ingest backend...")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Playlist, Xtream Codes and XMLTV ingestion with a unified catalog",
        lifespan=lifespan
    )
    app.state.catalog = ingestion.catalog
    app.state.ingestion = ingestion
    app.state.progress = WatchProgressStore()

    # Rate limiter
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    )
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(channels.router)
    app.include_router(vod.router)
    app.include_router(epg.router)
    app.include_router(sources.router)
    app.include_router(progress.router)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    @app.get("/api/stats")
    async def get_stats(request: Request):
        """Get catalog statistics."""
        stats = get_catalog(request).stats()
        stats["sources"] = len(ingestion.sources)
        return stats

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "iptv_ingest.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
