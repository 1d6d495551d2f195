"""Entry point for the FastAPI-powered movie catalog service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, Field

from .config import settings
from .database import Database
from .errors import CatalogUnavailable, MovieNotFound
from .genres import GENRE_TABLE_VERSION
from .models import MovieRecord
from .services.aggregator import PageAggregator
from .services.emitter import ProgressiveEmitter
from .services.profiles import DatabaseProfileStore
from .services.recommendations import RecommendationEngine
from .services.search import SearchAggregator
from .services.tmdb import TMDBClient

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


@dataclass(slots=True)
class MovieServices:
    """Process-wide services built once at startup and shared by requests."""

    client: TMDBClient
    aggregator: PageAggregator
    search: SearchAggregator
    recommendations: RecommendationEngine


class RecommendationBody(BaseModel):
    favorite_genres: dict[str, int] | list[str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("favoriteGenres", "favorite_genres"),
    )
    exclude_ids: list[int | str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("excludeIds", "exclude_ids"),
    )
    limit: int | None = Field(default=None, ge=1, le=100)


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(settings.page_fetch_timeout, connect=5.0),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    client = TMDBClient(settings, http_client)
    app.state.services = MovieServices(
        client=client,
        aggregator=PageAggregator(client, settings),
        search=SearchAggregator(client, settings),
        recommendations=RecommendationEngine(
            client, settings, DatabaseProfileStore(database.session_factory)
        ),
    )
    app.state.database = database
    logger.info("%s ready against %s", settings.app_name, settings.tmdb_api_url)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Progressive movie catalog aggregation backed by TMDB",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(app: FastAPI) -> MovieServices:
    services = getattr(app.state, "services", None)
    if not isinstance(services, MovieServices):
        raise RuntimeError("Movie services not initialised")
    return services


def _catalog_error(exc: Exception) -> HTTPException:
    if isinstance(exc, MovieNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, CatalogUnavailable):
        return HTTPException(
            status_code=503,
            detail="Movie service temporarily unavailable",
        )
    return HTTPException(status_code=400, detail=str(exc))


def _records_payload(records: list[MovieRecord]) -> list[dict[str, object]]:
    return [record.to_payload() for record in records]


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/movies")
    async def list_movies(
        category: str = "popular",
        limit: int | None = Query(default=None, ge=1, le=1_000),
        max_pages: int | None = Query(default=None, alias="maxPages", ge=1, le=500),
        sort: str | None = None,
        genre: str | None = None,
        year: int | None = None,
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        target = limit or settings.default_target_count
        try:
            records = await services.aggregator.collect(
                category,
                target,
                max_pages or settings.max_pages,
                sort_by=sort,
                genre=genre,
                year=year,
            )
        except (ValueError, CatalogUnavailable) as exc:
            raise _catalog_error(exc) from exc
        return {
            "success": True,
            "data": _records_payload(records),
            "total": len(records),
            "limit": target,
            "category": category,
        }

    @fastapi_app.get("/api/movies/stream")
    async def stream_movies(
        request: Request,
        category: str = "popular",
        limit: int | None = Query(default=None, ge=1, le=1_000),
        max_pages: int | None = Query(default=None, alias="maxPages", ge=1, le=500),
        genre: str | None = None,
        year: int | None = None,
    ) -> StreamingResponse:
        services = get_services(fastapi_app)
        try:
            run = services.aggregator.open_run(
                category,
                limit or settings.default_target_count,
                max_pages or settings.max_pages,
                genre=genre,
                year=year,
            )
        except ValueError as exc:
            raise _catalog_error(exc) from exc
        emitter = ProgressiveEmitter(run, is_disconnected=request.is_disconnected)
        return StreamingResponse(
            emitter.sse(), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @fastapi_app.get("/api/movies/search")
    async def search_movies(
        q: str | None = None,
        all_results: bool = Query(default=True, alias="all"),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        if not q or not q.strip():
            raise HTTPException(status_code=400, detail="Search query is required")
        try:
            result = await services.search.collect(q, target_all=all_results)
        except (ValueError, CatalogUnavailable) as exc:
            raise _catalog_error(exc) from exc
        return {
            "success": True,
            "data": _records_payload(result.records),
            "total": len(result.records),
            "totalAvailable": result.total_available,
            "query": result.query,
        }

    @fastapi_app.get("/api/movies/search/stream")
    async def stream_search(
        request: Request,
        q: str | None = None,
        all_results: bool = Query(default=True, alias="all"),
    ) -> StreamingResponse:
        services = get_services(fastapi_app)
        try:
            run = services.search.collect_search(q or "", all_results)
        except ValueError as exc:
            raise _catalog_error(exc) from exc
        emitter = ProgressiveEmitter(run, is_disconnected=request.is_disconnected)
        return StreamingResponse(
            emitter.sse(), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @fastapi_app.get("/api/movies/genres")
    async def list_genres() -> dict[str, Any]:
        services = get_services(fastapi_app)
        return {
            "success": True,
            "data": services.client.list_genres(),
            "version": GENRE_TABLE_VERSION,
        }

    @fastapi_app.get("/api/movies/genre/{genre_id}")
    async def movies_by_genre(
        genre_id: int,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            result = await services.client.fetch_genre_page(genre_id, page)
        except CatalogUnavailable as exc:
            raise _catalog_error(exc) from exc
        records = result.records[:limit]
        return {
            "success": True,
            "data": _records_payload(records),
            "total": len(records),
            "genreId": genre_id,
            "page": page,
        }

    @fastapi_app.get("/api/movies/{movie_id}/similar")
    async def similar_movies(
        movie_id: int,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            result = await services.client.fetch_similar(movie_id, page)
        except CatalogUnavailable as exc:
            raise _catalog_error(exc) from exc
        records = result.records[:limit]
        return {
            "success": True,
            "data": _records_payload(records),
            "total": len(records),
            "movieId": movie_id,
        }

    @fastapi_app.get("/api/movies/{movie_id}/recommendations")
    async def movie_recommendations(
        movie_id: int,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            result = await services.client.fetch_recommendations(movie_id, page)
        except CatalogUnavailable as exc:
            raise _catalog_error(exc) from exc
        records = result.records[:limit]
        return {
            "success": True,
            "data": _records_payload(records),
            "total": len(records),
            "movieId": movie_id,
        }

    @fastapi_app.get("/api/movies/{movie_id}")
    async def movie_details(movie_id: int) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            record = await services.client.fetch_details(movie_id)
        except (MovieNotFound, CatalogUnavailable) as exc:
            raise _catalog_error(exc) from exc
        return {"success": True, "data": record.to_payload()}

    @fastapi_app.get("/api/recommendations/{user_id}")
    async def recommendations_for_user(
        user_id: str,
        limit: int | None = Query(default=None, ge=1, le=100),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            records = await services.recommendations.recommend_for_user(user_id, limit)
        except CatalogUnavailable as exc:
            raise _catalog_error(exc) from exc
        return {
            "success": True,
            "data": _records_payload(records),
            "userId": user_id,
            "total": len(records),
        }

    @fastapi_app.post("/api/recommendations")
    async def recommendations_from_favorites(body: RecommendationBody) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            records = await services.recommendations.recommend(
                body.favorite_genres, body.exclude_ids, body.limit
            )
        except CatalogUnavailable as exc:
            raise _catalog_error(exc) from exc
        return {
            "success": True,
            "data": _records_payload(records),
            "total": len(records),
        }


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
