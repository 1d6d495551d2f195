"""Tests for bounded browse aggregation."""

from __future__ import annotations

from typing import cast

import pytest

from app.errors import CatalogUnavailable
from app.services.aggregator import PageAggregator, sort_records
from app.services.tmdb import TMDBClient
from catalog_fakes import FakeCatalog, build_settings, make_record, records_for


def _aggregator(catalog: FakeCatalog, **overrides) -> PageAggregator:
    return PageAggregator(cast(TMDBClient, catalog), build_settings(**overrides))


def _three_pages_with_overlap() -> list[list]:
    page_one = records_for(range(1, 21))
    page_two = records_for(list(range(16, 21)) + list(range(21, 36)))
    page_three = records_for(range(36, 56))
    return [page_one, page_two, page_three]


@pytest.mark.anyio("asyncio")
async def test_collect_deduplicates_across_pages() -> None:
    """Ids repeated on a later page are emitted only once."""

    catalog = FakeCatalog(_three_pages_with_overlap())
    records = await _aggregator(catalog).collect("popular", 100, 10)

    ids = [record.id for record in records]
    assert len(ids) == 55
    assert len(set(ids)) == 55
    assert ids == list(range(1, 56))
    assert catalog.calls == [1, 2, 3]


@pytest.mark.anyio("asyncio")
async def test_collect_stops_at_target_count() -> None:
    catalog = FakeCatalog([records_for(range(n, n + 20)) for n in (1, 21, 41)])
    records = await _aggregator(catalog).collect("popular", 25, 10)

    assert [record.id for record in records] == list(range(1, 26))
    assert catalog.calls == [1, 2]


@pytest.mark.anyio("asyncio")
async def test_collect_respects_page_cap() -> None:
    catalog = FakeCatalog([records_for(range(n, n + 20)) for n in (1, 21, 41)])
    records = await _aggregator(catalog).collect("top_rated", 100, 2)

    assert len(records) == 40
    assert catalog.calls == [1, 2]


@pytest.mark.anyio("asyncio")
async def test_collect_is_deterministic_for_identical_upstream_data() -> None:
    pages = _three_pages_with_overlap()
    first = await _aggregator(FakeCatalog(pages)).collect("popular", 50, 10)
    second = await _aggregator(FakeCatalog(pages)).collect("popular", 50, 10)

    assert [record.id for record in first] == [record.id for record in second]


@pytest.mark.anyio("asyncio")
async def test_single_page_failure_is_skipped() -> None:
    catalog = FakeCatalog(
        [records_for(range(n, n + 20)) for n in (1, 21, 41)],
        failing={2},
    )
    records = await _aggregator(catalog).collect("popular", 100, 10)

    assert [record.id for record in records] == list(range(1, 21)) + list(range(41, 61))
    assert catalog.calls == [1, 2, 3]


@pytest.mark.anyio("asyncio")
async def test_consecutive_failures_abort_the_run() -> None:
    catalog = FakeCatalog(
        [records_for(range(n, n + 20)) for n in (1, 21, 41, 61, 81)],
        failing={2, 3, 4},
    )

    with pytest.raises(CatalogUnavailable):
        await _aggregator(catalog).collect("popular", 100, 10)
    assert catalog.calls == [1, 2, 3, 4]


@pytest.mark.anyio("asyncio")
async def test_failures_separated_by_success_do_not_abort() -> None:
    catalog = FakeCatalog(
        [records_for(range(n, n + 10)) for n in (1, 11, 21, 31, 41)],
        failing={2, 4},
    )
    records = await _aggregator(catalog, MAX_CONSECUTIVE_FAILURES=2).collect(
        "popular", 100, 10
    )

    assert len(records) == 30


@pytest.mark.anyio("asyncio")
async def test_session_timeout_returns_partial_results() -> None:
    catalog = FakeCatalog(
        [records_for(range(n, n + 20)) for n in (1, 21, 41)],
        delays={2: 1.0},
    )
    aggregator = _aggregator(catalog, PAGE_FETCH_TIMEOUT=0.01, SESSION_TIMEOUT=0.05)

    records = await aggregator.collect("popular", 100, 10)

    assert [record.id for record in records] == list(range(1, 21))
    assert catalog.calls == [1, 2]


@pytest.mark.anyio("asyncio")
async def test_collect_filters_by_genre_and_year() -> None:
    page = [
        make_record(1, genres=["Drama"], release_year=1999),
        make_record(2, genres=["Comedy"], release_year=1999),
        make_record(3, genres=["Drama", "Crime"], release_year=2001),
        make_record(4, genres=["Science Fiction"], release_year=1999),
    ]
    aggregator = _aggregator(FakeCatalog([page]))

    dramas = await aggregator.collect("popular", 10, 1, genre="drama")
    nineties_drama = await aggregator.collect("popular", 10, 1, genre="Drama", year=1999)
    fiction = await aggregator.collect("popular", 10, 1, genre="fiction")

    assert [record.id for record in dramas] == [1, 3]
    assert [record.id for record in nineties_drama] == [1]
    assert [record.id for record in fiction] == [4]


@pytest.mark.anyio("asyncio")
async def test_collect_rejects_unknown_category_before_fetching() -> None:
    catalog = FakeCatalog([records_for(range(1, 5))])

    with pytest.raises(ValueError, match="Unknown catalog category"):
        await _aggregator(catalog).collect("trending-now", 10, 1)
    assert catalog.calls == []


@pytest.mark.anyio("asyncio")
async def test_collect_rejects_unknown_sort_key() -> None:
    with pytest.raises(ValueError, match="Unsupported sort key"):
        await _aggregator(FakeCatalog([])).collect("popular", 10, 1, sort_by="length")


@pytest.mark.anyio("asyncio")
async def test_collect_applies_requested_sort() -> None:
    page = [
        make_record(1, title="beta", vote_average=7.0, release_year=2000),
        make_record(2, title="Alpha", vote_average=9.0, release_year=None),
        make_record(3, title="gamma", vote_average=7.0, release_year=2010),
    ]
    records = await _aggregator(FakeCatalog([page])).collect(
        "popular", 10, 1, sort_by="rating"
    )

    assert [record.id for record in records] == [2, 1, 3]


def test_sort_records_keeps_ties_in_aggregation_order() -> None:
    records = [
        make_record(1, title="Same", release_year=2001, vote_average=7.5),
        make_record(2, title="same", release_year=2001, vote_average=7.5),
        make_record(3, title="Earlier", release_year=None, vote_average=8.0),
        make_record(4, title="Newest", release_year=2020, vote_average=7.5),
    ]

    assert [r.id for r in sort_records(records, "year")] == [4, 1, 2, 3]
    assert [r.id for r in sort_records(records, "title")] == [3, 4, 1, 2]
    assert [r.id for r in sort_records(records, "rating")] == [3, 1, 2, 4]
