"""HTTP surface tests using in-memory catalog fakes."""

from __future__ import annotations

import json
from typing import Any, cast

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.errors import MovieNotFound
from app.main import MovieServices, register_routes
from app.services.aggregator import PageAggregator
from app.services.recommendations import RecommendationEngine
from app.services.search import SearchAggregator
from app.services.tmdb import TMDBClient
from catalog_fakes import FakeCatalog, build_settings, make_record, records_for


class RoutedCatalog(FakeCatalog):
    """Adds the single-call endpoints the routes use directly."""

    def list_genres(self) -> list[dict[str, object]]:
        return [{"id": genre_id, "name": name} for genre_id, name in self.genre_names.items()]

    async def fetch_details(self, movie_id: int | str):
        if movie_id != 550:
            raise MovieNotFound(f"Movie {movie_id} was not found")
        return make_record(550, title="Fight Club", director="David Fincher")


def _client(catalog: RoutedCatalog) -> TestClient:
    settings = build_settings()
    tmdb = cast(TMDBClient, catalog)
    app = FastAPI()
    register_routes(app)
    app.state.services = MovieServices(
        client=tmdb,
        aggregator=PageAggregator(tmdb, settings),
        search=SearchAggregator(tmdb, settings),
        recommendations=RecommendationEngine(tmdb, settings),
    )
    return TestClient(app)


def _pages() -> list[list]:
    return [records_for(range(n, n + 20)) for n in (1, 21, 41)]


def _parse_sse(body: str) -> list[tuple[str, dict[str, Any]]]:
    frames = []
    for chunk in body.split("\n\n"):
        if not chunk.strip():
            continue
        event_line, data_line = chunk.split("\n", 1)
        frames.append(
            (event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: ")))
        )
    return frames


def test_list_movies_returns_bounded_collection() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        response = client.get("/api/movies", params={"category": "popular", "limit": 25})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["total"] == 25
    assert [movie["id"] for movie in payload["data"]] == list(range(1, 26))


def test_list_movies_rejects_unknown_category() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        response = client.get("/api/movies", params={"category": "mixed"})

    assert response.status_code == 400


def test_list_movies_reports_unavailable_upstream() -> None:
    with _client(RoutedCatalog(_pages(), failing={1, 2, 3})) as client:
        response = client.get("/api/movies")

    assert response.status_code == 503


def test_stream_movies_emits_batches_then_completion() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        response = client.get("/api/movies/stream", params={"limit": 30})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = _parse_sse(response.text)
    assert [event for event, _ in frames] == ["batch", "batch", "complete"]
    assert [len(data["batch"]) for _, data in frames] == [20, 10, 0]
    assert frames[-1][1]["isComplete"] is True
    assert frames[-1][1]["runningTotal"] == 30


def test_stream_movies_ends_with_error_frame_on_outage() -> None:
    with _client(RoutedCatalog(_pages() + _pages(), failing={2, 3, 4})) as client:
        response = client.get("/api/movies/stream", params={"limit": 100})

    frames = _parse_sse(response.text)
    assert [event for event, _ in frames] == ["batch", "error"]
    assert frames[-1][1]["error"]["code"] == "catalog_unavailable"


def test_search_requires_query() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        assert client.get("/api/movies/search").status_code == 400
        assert client.get("/api/movies/search/stream", params={"q": " "}).status_code == 400


def test_search_returns_total_available() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        response = client.get("/api/movies/search", params={"q": "matrix", "all": "false"})

    payload = response.json()
    assert payload["totalAvailable"] == 60
    assert payload["total"] == 20
    assert payload["query"] == "matrix"


def test_search_stream_carries_total_in_every_frame() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        response = client.get("/api/movies/search/stream", params={"q": "matrix"})

    frames = _parse_sse(response.text)
    assert frames[0][1]["totalAvailable"] == 60
    assert all(data["totalAvailable"] == 60 for _, data in frames)
    assert frames[-1][1]["runningTotal"] == 60


def test_genres_and_details_endpoints() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        genres = client.get("/api/movies/genres").json()
        found = client.get("/api/movies/550")
        missing = client.get("/api/movies/9")

    assert {"id": 18, "name": "Drama"} in genres["data"]
    assert genres["version"]
    assert found.json()["data"]["director"] == "David Fincher"
    assert missing.status_code == 404


def test_recommendations_from_posted_favorites() -> None:
    with _client(RoutedCatalog(_pages())) as client:
        response = client.post(
            "/api/recommendations",
            json={"favoriteGenres": {}, "excludeIds": [1, 2], "limit": 3},
        )

    payload = response.json()
    assert response.status_code == 200
    assert [movie["id"] for movie in payload["data"]] == [3, 4, 5]
