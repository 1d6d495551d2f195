"""Client for the paginated catalog endpoints of The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import (
    CatalogUnavailable,
    MalformedRecord,
    MovieNotFound,
    TransientFetchError,
)
from ..genres import GENRE_NAMES
from ..models import MovieRecord
from ..utils import coerce_int, extract_year, ordered_unique, round_rating

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"

CATEGORY_PATHS: dict[str, str] = {
    "popular": "/movie/popular",
    "top_rated": "/movie/top_rated",
    "now_playing": "/movie/now_playing",
    "upcoming": "/movie/upcoming",
}
CATEGORY_ALIASES: dict[str, str] = {
    "toprated": "top_rated",
    "nowplaying": "now_playing",
}
CAST_LIMIT = 5
PROVIDER_KINDS = ("flatrate", "free", "ads", "rent", "buy")


def normalize_category(category: str) -> str:
    """Return the canonical category key, raising for unknown categories."""

    key = (category or "").strip().lower().replace("-", "_")
    key = CATEGORY_ALIASES.get(key, key)
    if key not in CATEGORY_PATHS:
        raise ValueError(f"Unknown catalog category: {category}")
    return key


@dataclass(slots=True)
class CatalogPage:
    """One page of normalised records plus the upstream pagination metadata."""

    records: list[MovieRecord]
    page: int
    total_pages: int = 0
    total_results: int = 0
    raw_count: int = 0
    dropped: int = 0

    @property
    def is_last(self) -> bool:
        """Whether the upstream has reported that no further pages exist."""

        if self.raw_count == 0:
            return True
        return self.total_pages > 0 and self.page >= self.total_pages


class TMDBClient:
    """Thin wrapper around the TMDB HTTP API returning ``MovieRecord`` objects."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        genre_names: Mapping[int, str] | None = None,
    ):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._genre_names = dict(genre_names if genre_names is not None else GENRE_NAMES)

    @property
    def genre_names(self) -> dict[int, str]:
        return dict(self._genre_names)

    def list_genres(self) -> list[dict[str, object]]:
        """Return the configured genre table as ``{id, name}`` entries."""

        return [{"id": genre_id, "name": name} for genre_id, name in self._genre_names.items()]

    async def fetch_page(self, category: str, page: int = 1) -> CatalogPage:
        """Fetch one page of a browse category such as ``popular``."""

        key = normalize_category(category)
        return await self._fetch_listing(CATEGORY_PATHS[key], page=page)

    async def search_page(self, query: str, page: int = 1) -> CatalogPage:
        """Fetch one page of free-text search results."""

        normalized = (query or "").strip()
        if not normalized:
            raise ValueError("Search query is required")
        return await self._fetch_listing(
            "/search/movie",
            page=page,
            params={"query": normalized, "include_adult": "false"},
        )

    async def fetch_genre_page(self, genre_id: int, page: int = 1) -> CatalogPage:
        """Fetch one page of movies tagged with ``genre_id``, most popular first."""

        return await self._fetch_listing(
            "/discover/movie",
            page=page,
            params={
                "with_genres": genre_id,
                "sort_by": "popularity.desc",
                "include_adult": "false",
            },
        )

    async def fetch_similar(self, movie_id: int | str, page: int = 1) -> CatalogPage:
        return await self._fetch_listing(f"/movie/{movie_id}/similar", page=page)

    async def fetch_recommendations(
        self, movie_id: int | str, page: int = 1
    ) -> CatalogPage:
        return await self._fetch_listing(f"/movie/{movie_id}/recommendations", page=page)

    async def fetch_details(self, movie_id: int | str) -> MovieRecord:
        """Return a record enriched with credits and watch providers.

        The three upstream calls run concurrently. A watch provider failure
        degrades to an empty provider list; failures of the core details or
        credits calls surface as ``CatalogUnavailable``.
        """

        core, credits, providers = await asyncio.gather(
            self._get_json(f"/movie/{movie_id}", resource=f"Movie {movie_id}"),
            self._get_json(f"/movie/{movie_id}/credits"),
            self._get_json(f"/movie/{movie_id}/watch/providers"),
            return_exceptions=True,
        )

        if isinstance(core, MovieNotFound):
            raise core
        for label, result in (("details", core), ("credits", credits)):
            if isinstance(result, Exception):
                logger.warning("TMDB %s fetch failed for %s: %s", label, movie_id, result)
                raise CatalogUnavailable(
                    f"TMDB {label} for movie {movie_id} are unavailable"
                ) from result
            if isinstance(result, BaseException):
                raise result

        provider_names: list[str] = []
        if isinstance(providers, Exception):
            logger.info(
                "Watch providers unavailable for %s, continuing without them: %s",
                movie_id,
                providers,
            )
        elif isinstance(providers, BaseException):
            raise providers
        else:
            provider_names = self._extract_providers(providers)

        try:
            record = self.to_record(core)
        except MalformedRecord as exc:
            raise CatalogUnavailable(
                f"TMDB returned malformed details for movie {movie_id}"
            ) from exc

        cast_names, director = self._extract_credits(credits)
        tagline = core.get("tagline")
        return record.model_copy(
            update={
                "runtime_minutes": coerce_int(core.get("runtime")),
                "tagline": tagline.strip() if isinstance(tagline, str) and tagline.strip() else None,
                "director": director,
                "cast": cast_names,
                "watch_providers": provider_names,
            }
        )

    def to_record(self, raw: object) -> MovieRecord:
        """Normalise a raw TMDB movie object into a ``MovieRecord``."""

        if not isinstance(raw, dict):
            raise MalformedRecord("record is not an object")
        raw_id = raw.get("id")
        if raw_id is None or isinstance(raw_id, bool) or raw_id == "":
            raise MalformedRecord("record has no id")
        title = raw.get("title") or raw.get("name")
        if not isinstance(title, str) or not title.strip():
            raise MalformedRecord(f"record {raw_id} has no title")

        overview = raw.get("overview")
        try:
            return MovieRecord(
                id=raw_id,
                title=title.strip(),
                description=overview.strip() if isinstance(overview, str) and overview.strip() else None,
                genres=self._genre_labels(raw),
                release_year=extract_year(raw.get("release_date")),
                popularity=self._coerce_float(raw.get("popularity")),
                vote_average=round_rating(raw.get("vote_average")),
                vote_count=coerce_int(raw.get("vote_count"), default=0) or 0,
                poster_url=self._build_image_url(
                    raw.get("poster_path"),
                    POSTER_BASE_URL,
                    str(self._settings.poster_placeholder_url),
                ),
                backdrop_url=self._build_image_url(
                    raw.get("backdrop_path"),
                    BACKDROP_BASE_URL,
                    str(self._settings.backdrop_placeholder_url),
                ),
            )
        except ValidationError as exc:
            raise MalformedRecord(f"record {raw_id} failed validation: {exc}") from exc

    async def _fetch_listing(
        self,
        path: str,
        *,
        page: int,
        params: Mapping[str, Any] | None = None,
    ) -> CatalogPage:
        query = dict(params or {})
        query["page"] = page
        payload = await self._get_json(path, query)

        results = payload.get("results")
        if not isinstance(results, list):
            raise TransientFetchError(f"TMDB response for {path} has no results array")

        records: list[MovieRecord] = []
        dropped = 0
        for raw in results:
            try:
                records.append(self.to_record(raw))
            except MalformedRecord as exc:
                dropped += 1
                logger.warning(
                    "Dropping malformed TMDB record from %s page %s: %s", path, page, exc
                )

        return CatalogPage(
            records=records,
            page=page,
            total_pages=coerce_int(payload.get("total_pages"), default=0) or 0,
            total_results=coerce_int(payload.get("total_results"), default=0) or 0,
            raw_count=len(results),
            dropped=dropped,
        )

    async def _get_json(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        resource: str | None = None,
    ) -> dict[str, Any]:
        """Issue a GET request and return the decoded JSON object.

        Transport errors, timeouts, non-2xx statuses and malformed bodies all
        raise ``TransientFetchError``. When ``resource`` is given a 404 raises
        ``MovieNotFound`` instead.
        """

        query: dict[str, Any] = {
            "api_key": self._settings.tmdb_api_key,
            "language": self._settings.tmdb_language,
        }
        if params:
            query.update(params)

        try:
            response = await self._client.get(
                path, params=query, timeout=self._settings.page_fetch_timeout
            )
        except httpx.TimeoutException as exc:
            raise TransientFetchError(f"TMDB request to {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransientFetchError(
                f"TMDB request to {path} failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code == 404 and resource:
            raise MovieNotFound(f"{resource} was not found")
        if not 200 <= response.status_code < 300:
            raise TransientFetchError(
                f"TMDB request to {path} returned HTTP {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientFetchError(f"TMDB returned non-JSON body for {path}") from exc
        if not isinstance(payload, dict):
            raise TransientFetchError(f"Unexpected TMDB response structure for {path}")
        return payload

    def _genre_labels(self, raw: dict[str, Any]) -> list[str]:
        raw_ids = raw.get("genre_ids")
        if raw_ids is None:
            raw_ids = [
                entry.get("id")
                for entry in raw.get("genres") or []
                if isinstance(entry, dict)
            ]
        if not isinstance(raw_ids, list):
            return []
        labels = []
        for raw_genre in raw_ids:
            genre_id = coerce_int(raw_genre)
            if genre_id is None or isinstance(raw_genre, bool):
                continue
            name = self._genre_names.get(genre_id)
            if name:
                labels.append(name)
        return ordered_unique(labels)

    def _extract_providers(self, payload: dict[str, Any]) -> list[str]:
        results = payload.get("results")
        if not isinstance(results, dict):
            return []
        region = results.get(self._settings.tmdb_watch_region)
        if not isinstance(region, dict):
            return []
        names: list[str] = []
        for kind in PROVIDER_KINDS:
            for entry in region.get(kind) or []:
                if isinstance(entry, dict) and isinstance(entry.get("provider_name"), str):
                    names.append(entry["provider_name"])
        return ordered_unique(names)

    @staticmethod
    def _extract_credits(payload: dict[str, Any]) -> tuple[list[str], str | None]:
        cast_names = [
            member["name"]
            for member in payload.get("cast") or []
            if isinstance(member, dict) and isinstance(member.get("name"), str)
        ][:CAST_LIMIT]
        director = next(
            (
                member["name"]
                for member in payload.get("crew") or []
                if isinstance(member, dict)
                and member.get("job") == "Director"
                and isinstance(member.get("name"), str)
            ),
            None,
        )
        return cast_names, director

    @staticmethod
    def _coerce_float(value: object) -> float:
        if isinstance(value, bool):
            return 0.0
        try:
            return float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _build_image_url(path: object, base_url: str, placeholder: str) -> str:
        if not isinstance(path, str) or not path.strip():
            return placeholder
        path = path.strip()
        if path.startswith("http"):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{base_url}{path}"
