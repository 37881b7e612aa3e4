"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineTaste", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    letterboxd_url: HttpUrl = Field(
        default="https://letterboxd.com", alias="LETTERBOXD_URL"
    )
    scraper_user_agent: str = Field(
        default=DEFAULT_USER_AGENT, alias="SCRAPER_USER_AGENT"
    )
    scrape_batch_size: int = Field(
        default=5, alias="SCRAPE_BATCH_SIZE", ge=1, le=20
    )
    watched_page_size: int = Field(default=72, alias="WATCHED_PAGE_SIZE", ge=1)
    watchlist_page_size: int = Field(default=28, alias="WATCHLIST_PAGE_SIZE", ge=1)
    scrape_cache_seconds: int = Field(
        default=86_400, alias="SCRAPE_CACHE_TTL", ge=0
    )

    catalog_metadata_path: str = Field(
        default="data/model_metadata.json", alias="CATALOG_METADATA_PATH"
    )
    catalog_vectors_path: str = Field(
        default="data/model_vectors.bin", alias="CATALOG_VECTORS_PATH"
    )

    default_alpha: float = Field(default=3.0, alias="RECO_ALPHA")
    default_pop_factor: float = Field(default=0.4, alias="RECO_POP_FACTOR")
    default_rating_power: float = Field(
        default=2.0, alias="RECO_RATING_POWER", gt=0
    )
    default_use_negatives: bool = Field(default=True, alias="RECO_USE_NEGATIVES")
    liked_quantile: float = Field(
        default=0.95, alias="RECO_LIKED_QUANTILE", ge=0.0, le=1.0
    )

    image_batch_limit: int = Field(
        default=50, alias="IMAGE_BATCH_LIMIT", ge=1, le=200
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: object) -> str:
        """Accept level names in any case and reject unknown ones."""

        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if not level:
            return "INFO"
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _blank_key_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def letterboxd_base_url(self) -> str:
        """Return the external site root without a trailing slash."""

        return str(self.letterboxd_url).rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
