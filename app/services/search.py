"""Free-text search aggregation that tracks the upstream result count."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from functools import partial

from ..config import Settings
from ..models import MovieRecord
from .aggregator import AggregationRun, SessionState
from .tmdb import CatalogPage, TMDBClient

logger = logging.getLogger(__name__)

TMDB_PAGE_SIZE = 20


@dataclass(slots=True)
class SearchResult:
    """Aggregated search records and the total the upstream reported."""

    query: str
    records: list[MovieRecord]
    total_available: int


class SearchAggregator:
    """Aggregate search pages until ``min(total_available, hard_cap)`` records."""

    def __init__(
        self,
        client: TMDBClient,
        settings: Settings,
        *,
        hard_cap: int | None = None,
    ):
        self._client = client
        self._settings = settings
        self._hard_cap = hard_cap if hard_cap is not None else settings.search_hard_cap

    def collect_search(self, query: str, target_all: bool = True) -> AggregationRun:
        """Return a pull-based run over the search results for ``query``.

        With ``target_all`` the run keeps paging until it holds
        ``min(total_available, hard_cap)`` unique records or the upstream runs
        out; otherwise only the first page is fetched.
        """

        normalized = (query or "").strip()
        if not normalized:
            raise ValueError("Search query is required")

        if target_all:
            # Leave room for pages skipped after transient failures.
            max_pages = (
                math.ceil(self._hard_cap / TMDB_PAGE_SIZE)
                + self._settings.max_consecutive_failures
            )
        else:
            max_pages = 1

        state = SessionState(
            source_label=f"search:{normalized}",
            target_count=self._hard_cap,
            max_pages=max_pages,
            deadline=time.monotonic() + self._settings.session_timeout,
        )
        return AggregationRun(
            partial(self._client.search_page, normalized),
            state,
            failure_threshold=self._settings.max_consecutive_failures,
            on_page=self._capture_total,
        )

    async def collect(self, query: str, target_all: bool = True) -> SearchResult:
        """Drain a search run for callers that do not stream."""

        run = self.collect_search(query, target_all)
        records = await run.drain()
        total = run.state.total_available or 0
        logger.info(
            "Search %r collected %s of %s available results",
            query,
            len(records),
            total,
        )
        return SearchResult(query=query.strip(), records=records, total_available=total)

    def _capture_total(self, state: SessionState, page: CatalogPage) -> None:
        if state.total_available is not None:
            return
        total = page.total_results or len(page.records)
        state.total_available = total
        state.target_count = min(total, self._hard_cap)
