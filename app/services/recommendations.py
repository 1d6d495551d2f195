"""Genre-driven recommendations with a popularity fallback."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Awaitable, Callable, Collection, Iterable, Mapping

from ..config import Settings
from ..errors import CatalogUnavailable, TransientFetchError
from ..genres import genre_id_for
from ..models import MovieRecord
from .dedup import Deduplicator
from .profiles import ProfileStore
from .tmdb import CatalogPage, TMDBClient

logger = logging.getLogger(__name__)

TOP_GENRE_LIMIT = 5

GenreMultiset = Mapping[str, int] | Iterable[str]


def genre_counter(favorites: GenreMultiset) -> Counter[str]:
    """Build a counter that remembers the first-seen order of each genre."""

    counter: Counter[str] = Counter()
    if isinstance(favorites, Mapping):
        for name, count in favorites.items():
            if not isinstance(name, str) or not name.strip():
                continue
            try:
                weight = int(count)
            except (TypeError, ValueError):
                continue
            if weight > 0:
                counter[name.strip()] += weight
        return counter
    for name in favorites:
        if isinstance(name, str) and name.strip():
            counter[name.strip()] += 1
    return counter


def top_genres(favorites: GenreMultiset, n: int = TOP_GENRE_LIMIT) -> list[str]:
    """Return up to ``n`` genres by descending frequency, ties in first-seen order."""

    return [name for name, _ in genre_counter(favorites).most_common(n)]


def select_sampling_genre(favorites: GenreMultiset) -> str | None:
    """Pick the genre to sample recommendations from (the most frequent one)."""

    ranked = top_genres(favorites)
    return ranked[0] if ranked else None


class RecommendationEngine:
    """Select catalog movies matching a user's favourite genres."""

    def __init__(
        self,
        client: TMDBClient,
        settings: Settings,
        profiles: ProfileStore | None = None,
    ):
        self._client = client
        self._settings = settings
        self._profiles = profiles

    async def recommend(
        self,
        favorite_genres: GenreMultiset,
        exclude_ids: Collection[int | str] = (),
        limit: int | None = None,
    ) -> list[MovieRecord]:
        """Return up to ``limit`` movies with no duplicates and no excluded ids."""

        resolved_limit = limit if limit is not None else self._settings.recommendation_limit
        if resolved_limit <= 0:
            return []

        seen = Deduplicator()
        for excluded in exclude_ids:
            seen.admit(excluded)

        selected: list[MovieRecord] = []
        genre = select_sampling_genre(favorite_genres)
        if genre is not None:
            genre_id = genre_id_for(genre, self._client.genre_names)
            if genre_id is None:
                logger.info("Favourite genre %r is not in the genre table", genre)
            else:
                logger.debug("Sampling recommendations from genre %s (%s)", genre, genre_id)
                try:
                    selected = await self._gather(
                        lambda page: self._client.fetch_genre_page(genre_id, page),
                        seen,
                        resolved_limit,
                        source=f"genre:{genre_id}",
                    )
                except CatalogUnavailable as exc:
                    logger.warning("Falling back to popular titles: %s", exc)

        if len(selected) < resolved_limit:
            try:
                popular = await self._gather(
                    lambda page: self._client.fetch_page("popular", page),
                    seen,
                    resolved_limit - len(selected),
                    source="popular",
                    by_popularity=True,
                )
            except CatalogUnavailable:
                if not selected:
                    raise
                logger.warning("Popular backfill unavailable, returning %s picks", len(selected))
                popular = []
            selected.extend(popular)
        return selected[:resolved_limit]

    async def recommend_for_user(
        self, user_id: str, limit: int | None = None
    ) -> list[MovieRecord]:
        """Recommend using the favourites recorded for ``user_id``."""

        if self._profiles is None:
            raise RuntimeError("Profile store not configured")
        favorites = await self._profiles.favorite_genres(user_id)
        excluded = await self._profiles.excluded_ids(user_id)
        return await self.recommend(favorites, excluded, limit)

    async def _gather(
        self,
        fetch: Callable[[int], Awaitable[CatalogPage]],
        seen: Deduplicator,
        wanted: int,
        *,
        source: str,
        by_popularity: bool = False,
    ) -> list[MovieRecord]:
        """Page through ``fetch`` skipping failed pages.

        Raises ``CatalogUnavailable`` when failures pile up before any page
        has been delivered.
        """

        candidates: list[MovieRecord] = []
        delivered = 0
        failures = 0
        page_number = 1
        while len(candidates) < wanted and page_number <= self._settings.recommendation_page_limit:
            try:
                page = await fetch(page_number)
            except TransientFetchError as exc:
                failures += 1
                logger.warning(
                    "Skipping %s page %s (%s consecutive failures): %s",
                    source,
                    page_number,
                    failures,
                    exc,
                )
                if failures >= self._settings.max_consecutive_failures:
                    break
                page_number += 1
                continue

            failures = 0
            delivered += 1
            candidates.extend(record for record in page.records if seen.admit(record.id))
            if page.is_last:
                break
            page_number += 1

        if not delivered and failures:
            raise CatalogUnavailable(f"Catalog source {source} is unavailable")

        # Upstream popular listings are already ordered by popularity, so
        # ranking the pages fetched so far matches the catalog-wide order.
        if by_popularity:
            candidates = sorted(candidates, key=lambda record: -record.popularity)
        return candidates[:wanted]
