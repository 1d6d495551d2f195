"""Bounded multi-page aggregation of browse catalogs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Literal

from ..config import Settings
from ..errors import CatalogUnavailable, SessionTimeout, TransientFetchError
from ..models import MovieRecord
from .dedup import Deduplicator
from .tmdb import CatalogPage, TMDBClient, normalize_category

logger = logging.getLogger(__name__)

SortKey = Literal["year", "title", "rating"]
SORT_KEYS: tuple[str, ...] = ("year", "title", "rating")

PageFetcher = Callable[[int], Awaitable[CatalogPage]]
RecordFilter = Callable[[MovieRecord], bool]
PageHook = Callable[["SessionState", CatalogPage], None]


@dataclass(slots=True)
class SessionState:
    """Mutable state owned by a single aggregation run."""

    source_label: str
    target_count: int
    max_pages: int
    seen: Deduplicator = field(default_factory=Deduplicator)
    running_total: int = 0
    page: int = 1
    last_page: int | None = None
    is_complete: bool = False
    exhausted: bool = False
    timed_out: bool = False
    consecutive_failures: int = 0
    total_available: int | None = None
    deadline: float | None = None

    @property
    def remaining(self) -> int:
        return max(self.target_count - self.running_total, 0)


@dataclass(slots=True)
class PageBatch:
    """Records admitted from one upstream page."""

    records: list[MovieRecord]
    page_number: int


class AggregationRun:
    """Pull-based page loop shared by browse and search aggregation.

    Every call to :meth:`next_batch` requests upstream pages in increasing
    order until one of them yields new records, the target is reached, the
    page cap is exhausted or the upstream reports its last page.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        state: SessionState,
        *,
        failure_threshold: int,
        record_filter: RecordFilter | None = None,
        on_page: PageHook | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self._state = state
        self._failure_threshold = max(1, failure_threshold)
        self._record_filter = record_filter
        self._on_page = on_page

    @property
    def state(self) -> SessionState:
        return self._state

    async def next_batch(self) -> PageBatch | None:
        """Return the next non-empty batch, or ``None`` once the run is complete."""

        state = self._state
        while not state.is_complete:
            if state.remaining <= 0 or state.page > state.max_pages:
                state.is_complete = True
                break

            page_number = state.page
            state.page += 1
            try:
                page = await self._fetch_within_budget(page_number)
            except TransientFetchError as exc:
                state.consecutive_failures += 1
                logger.warning(
                    "Skipping %s page %s (%s/%s consecutive failures): %s",
                    state.source_label,
                    page_number,
                    state.consecutive_failures,
                    self._failure_threshold,
                    exc,
                )
                if state.consecutive_failures >= self._failure_threshold:
                    state.is_complete = True
                    logger.error(
                        "Aborting %s aggregation after %s consecutive page failures",
                        state.source_label,
                        state.consecutive_failures,
                    )
                    raise CatalogUnavailable(
                        f"Catalog source {state.source_label} is unavailable"
                    ) from exc
                continue

            state.consecutive_failures = 0
            if self._on_page is not None:
                self._on_page(state, page)
            if page.is_last:
                state.exhausted = True

            admitted = self._admit(page.records)
            state.running_total += len(admitted)
            state.last_page = page_number
            if state.exhausted or state.remaining <= 0 or state.page > state.max_pages:
                state.is_complete = True
            if admitted:
                return PageBatch(records=admitted, page_number=page_number)
        return None

    async def drain(self) -> list[MovieRecord]:
        """Collect every remaining batch; a session timeout keeps partial results."""

        records: list[MovieRecord] = []
        while True:
            try:
                batch = await self.next_batch()
            except SessionTimeout:
                logger.info(
                    "Returning %s partial %s results after session timeout",
                    len(records),
                    self._state.source_label,
                )
                return records
            if batch is None:
                return records
            records.extend(batch.records)

    def _admit(self, records: list[MovieRecord]) -> list[MovieRecord]:
        state = self._state
        limit = state.remaining
        admitted: list[MovieRecord] = []
        for record in records:
            if len(admitted) >= limit:
                break
            if self._record_filter is not None and not self._record_filter(record):
                continue
            if not state.seen.admit(record.id):
                continue
            admitted.append(record)
        return admitted

    async def _fetch_within_budget(self, page_number: int) -> CatalogPage:
        state = self._state
        if state.deadline is None:
            return await self._fetch_page(page_number)

        budget = state.deadline - time.monotonic()
        if budget > 0:
            try:
                return await asyncio.wait_for(self._fetch_page(page_number), timeout=budget)
            except asyncio.TimeoutError:
                pass
        state.timed_out = True
        state.is_complete = True
        raise SessionTimeout(
            f"{state.source_label} aggregation exceeded its time budget"
        )


def build_record_filter(
    genre: str | None = None, year: int | None = None
) -> RecordFilter | None:
    """Return a predicate matching a genre name fragment and/or release year."""

    needle = (genre or "").strip().casefold()
    if not needle and year is None:
        return None

    def _matches(record: MovieRecord) -> bool:
        if needle and not any(needle in name.casefold() for name in record.genres):
            return False
        if year is not None and record.release_year != year:
            return False
        return True

    return _matches


def sort_records(records: list[MovieRecord], sort_by: str) -> list[MovieRecord]:
    """Stable sort by year (newest first), title or rating (highest first)."""

    if sort_by == "year":
        return sorted(
            records,
            key=lambda record: (record.release_year is None, -(record.release_year or 0)),
        )
    if sort_by == "title":
        return sorted(records, key=lambda record: record.title.casefold())
    if sort_by == "rating":
        return sorted(records, key=lambda record: -record.vote_average)
    raise ValueError(f"Unsupported sort key: {sort_by}")


class PageAggregator:
    """Drive bounded browse-catalog runs against the TMDB client."""

    def __init__(self, client: TMDBClient, settings: Settings):
        self._client = client
        self._settings = settings

    def open_run(
        self,
        category: str,
        target_count: int,
        max_pages: int,
        *,
        genre: str | None = None,
        year: int | None = None,
    ) -> AggregationRun:
        """Create a fresh run for ``category``; nothing is fetched until pulled."""

        key = normalize_category(category)
        if target_count < 1:
            raise ValueError("Target count must be positive")
        if max_pages < 1:
            raise ValueError("Page cap must be positive")
        state = SessionState(
            source_label=key,
            target_count=target_count,
            max_pages=max_pages,
            deadline=time.monotonic() + self._settings.session_timeout,
        )
        return AggregationRun(
            partial(self._client.fetch_page, key),
            state,
            failure_threshold=self._settings.max_consecutive_failures,
            record_filter=build_record_filter(genre, year),
        )

    async def collect(
        self,
        category: str,
        target_count: int,
        max_pages: int,
        *,
        sort_by: str | None = None,
        genre: str | None = None,
        year: int | None = None,
    ) -> list[MovieRecord]:
        """Aggregate up to ``target_count`` unique records from ``category``."""

        if sort_by is not None and sort_by not in SORT_KEYS:
            raise ValueError(f"Unsupported sort key: {sort_by}")
        run = self.open_run(category, target_count, max_pages, genre=genre, year=year)
        records = await run.drain()
        logger.info(
            "Collected %s %s records across %s pages",
            len(records),
            run.state.source_label,
            run.state.page - 1,
        )
        if sort_by is None:
            return records
        return sort_records(records, sort_by)
