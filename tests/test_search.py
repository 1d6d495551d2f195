"""Tests for search aggregation and its reported totals."""

from __future__ import annotations

from typing import cast

import pytest

from app.errors import CatalogUnavailable
from app.services.emitter import ProgressiveEmitter
from app.services.search import SearchAggregator
from app.services.tmdb import TMDBClient
from catalog_fakes import FakeCatalog, build_settings, records_for


def _search(catalog: FakeCatalog, *, hard_cap: int | None = None, **overrides) -> SearchAggregator:
    return SearchAggregator(
        cast(TMDBClient, catalog), build_settings(**overrides), hard_cap=hard_cap
    )


@pytest.mark.anyio("asyncio")
async def test_search_stream_reports_total_and_matches_running_total() -> None:
    """Every frame carries the total and batch sizes add up to the final count."""

    catalog = FakeCatalog(
        [records_for(range(1, 21)), records_for(range(21, 41)), records_for(range(41, 46))]
    )
    run = _search(catalog).collect_search("matrix", target_all=True)
    frames = [frame async for frame in ProgressiveEmitter(run)]

    payloads = [frame.message.to_payload() for frame in frames]
    assert payloads[0]["totalAvailable"] == 45
    assert all(payload["totalAvailable"] == 45 for payload in payloads)
    assert [frame.event for frame in frames] == ["batch", "batch", "batch", "complete"]

    batch_sizes = sum(len(payload["batch"]) for payload in payloads)
    final = payloads[-1]
    assert final["isComplete"] is True
    assert batch_sizes == final["runningTotal"] == 45
    assert final["sourceLabel"] == "search:matrix"


@pytest.mark.anyio("asyncio")
async def test_search_stops_at_hard_cap() -> None:
    catalog = FakeCatalog([records_for(range(n, n + 20)) for n in (1, 21, 41, 61, 81)])
    result = await _search(catalog, hard_cap=30).collect("alien")

    assert result.total_available == 100
    assert len(result.records) == 30
    assert catalog.calls == [1, 2]


@pytest.mark.anyio("asyncio")
async def test_search_without_target_all_fetches_first_page_only() -> None:
    catalog = FakeCatalog([records_for(range(1, 21)), records_for(range(21, 41))])
    result = await _search(catalog).collect("heat", target_all=False)

    assert len(result.records) == 20
    assert result.total_available == 40
    assert catalog.calls == [1]


@pytest.mark.anyio("asyncio")
async def test_search_deduplicates_repeated_results() -> None:
    catalog = FakeCatalog(
        [records_for(range(1, 11)), records_for(range(6, 16))], total_results=20
    )
    result = await _search(catalog).collect("dune")

    assert [record.id for record in result.records] == list(range(1, 16))
    assert result.total_available == 20


@pytest.mark.anyio("asyncio")
async def test_search_total_comes_from_first_successful_page() -> None:
    catalog = FakeCatalog(
        [records_for(range(1, 21)), records_for(range(21, 41)), records_for(range(41, 51))],
        failing={1},
    )
    run = _search(catalog).collect_search("jaws")
    batch = await run.next_batch()

    assert batch is not None
    assert batch.page_number == 2
    assert run.state.total_available == 50


@pytest.mark.anyio("asyncio")
async def test_search_with_no_results_completes_empty() -> None:
    catalog = FakeCatalog([[]])
    result = await _search(catalog).collect("zzzz")

    assert result.records == []
    assert result.total_available == 0


@pytest.mark.anyio("asyncio")
async def test_search_aborts_on_sustained_failure() -> None:
    catalog = FakeCatalog([records_for(range(1, 21))], failing={1, 2, 3})

    with pytest.raises(CatalogUnavailable):
        await _search(catalog).collect("up")


def test_blank_query_is_rejected() -> None:
    with pytest.raises(ValueError, match="Search query is required"):
        _search(FakeCatalog([])).collect_search("   ")
