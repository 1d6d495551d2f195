"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieStream", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")
    tmdb_watch_region: str = Field(default="US", alias="TMDB_WATCH_REGION")

    page_fetch_timeout: float = Field(
        default=10.0, alias="PAGE_FETCH_TIMEOUT", gt=0, le=120
    )
    session_timeout: float = Field(
        default=45.0, alias="SESSION_TIMEOUT", gt=0, le=600
    )
    max_consecutive_failures: int = Field(
        default=3, alias="MAX_CONSECUTIVE_FAILURES", ge=1, le=20
    )
    default_target_count: int = Field(
        default=100, alias="DEFAULT_TARGET_COUNT", ge=1, le=1_000
    )
    max_pages: int = Field(default=10, alias="MAX_PAGES", ge=1, le=500)
    search_hard_cap: int = Field(
        default=200, alias="SEARCH_HARD_CAP", ge=1, le=10_000
    )

    recommendation_limit: int = Field(
        default=10, alias="RECOMMENDATION_LIMIT", ge=1, le=100
    )
    recommendation_page_limit: int = Field(
        default=3, alias="RECOMMENDATION_PAGE_LIMIT", ge=1, le=20
    )

    poster_placeholder_url: HttpUrl = Field(
        default="https://via.placeholder.com/500x750/374151/ffffff?text=No+Image",
        alias="POSTER_PLACEHOLDER_URL",
    )
    backdrop_placeholder_url: HttpUrl = Field(
        default="https://via.placeholder.com/1920x1080/374151/ffffff?text=No+Image",
        alias="BACKDROP_PLACEHOLDER_URL",
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./moviestream.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: object) -> str:
        """Accept log level names in any case."""

        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if not level:
            return "INFO"
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError("Unknown LOG_LEVEL configured")
        return level

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        """A session must be able to wait for at least one full page fetch."""

        if self.session_timeout < self.page_fetch_timeout:
            raise ValueError(
                "SESSION_TIMEOUT must not be shorter than PAGE_FETCH_TIMEOUT"
            )
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
