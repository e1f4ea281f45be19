"""
Configuration management for the IPTV ingestion service.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "IPTV Ingest"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    # Default allows all origins for development; set IPTV_CORS_ORIGINS for production
    cors_origins: list[str] = ["*"]

    # Rate Limiting
    rate_limit_per_minute: int = 100

    # Upstream HTTP
    http_timeout: float = 60.0
    user_agent: str = "iptv-ingest/0.1"

    # Connectivity probe
    probe_attempts: int = 3
    probe_delay: float = 0.7  # seconds between attempts

    # Catalog
    default_category: str = "Other"
    refresh_interval_hours: float = 24
    auto_refresh_minutes: int = 0  # Background refresh check interval (0 = disabled)

    # Xtream series: fetch seasons/episodes (one extra call per show)
    xtream_series_info: bool = False
    xtream_concurrency: int = 10

    # XMLTV streaming
    epg_chunk_size: int = 65536

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="IPTV_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
