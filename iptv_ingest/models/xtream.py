"""
Minimal decoding models for Xtream Codes player_api.php responses.
Only the fields the catalog consumes are declared; anything else is ignored.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator


class XtreamItem(BaseModel):
    """Base for API list items. Panels mix numbers and strings freely."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any, info: ValidationInfo) -> Any:
        # Panels send "" for missing numeric fields
        if info.field_name in ("name", "category_name"):
            return value
        if isinstance(value, str) and not value.strip():
            return None
        return value


class XtreamChannel(XtreamItem):
    name: str
    stream_id: int
    num: Optional[int] = None
    stream_type: Optional[str] = None
    category_id: Optional[str] = None
    stream_icon: Optional[str] = None
    tv_archive: Optional[int] = None
    tv_archive_duration: Optional[int] = None
    epg_channel_id: Optional[str] = None
    stream_url: Optional[str] = None  # Not always present


class XtreamMovie(XtreamItem):
    name: str
    stream_id: int
    num: Optional[int] = None
    category_id: Optional[str] = None
    stream_icon: Optional[str] = None
    rating: Optional[str] = None
    added: Optional[str] = None
    container_extension: Optional[str] = None
    direct_source: Optional[str] = None


class XtreamSeries(XtreamItem):
    name: str
    series_id: int
    num: Optional[int] = None
    category_id: Optional[str] = None
    cover: Optional[str] = None
    plot: Optional[str] = None
    cast: Optional[str] = None
    director: Optional[str] = None
    genre: Optional[str] = None
    rating: Optional[str] = None
    releaseDate: Optional[str] = None


class XtreamCategory(XtreamItem):
    category_id: str
    category_name: str


class XtreamEpisode(XtreamItem):
    id: str
    episode_num: int
    title: Optional[str] = None
    season: Optional[int] = None
    container_extension: Optional[str] = None
    direct_source: Optional[str] = None
    info: Optional[Any] = None  # dict, or [] on some panels


class XtreamSeriesInfo(XtreamItem):
    episodes: dict[str, list[XtreamEpisode]] = {}

    @field_validator("episodes", mode="before")
    @classmethod
    def _empty_list_to_dict(cls, value: Any) -> Any:
        if isinstance(value, list) and not value:
            return {}
        return value
