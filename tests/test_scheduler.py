from __future__ import annotations

import asyncio

import pytest

from congresso_etl.config import RatePolicy
from congresso_etl.entities import EntityBasic
from congresso_etl.scheduler import RawExtractionResult, chunked, extract_all


def roster(n: int) -> list[EntityBasic]:
    return [EntityBasic(id=str(i), name=f"dep {i}") for i in range(1, n + 1)]


def test_chunked_keeps_order_and_remainder():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


@pytest.mark.asyncio
async def test_in_flight_never_exceeds_concurrency():
    in_flight = 0
    peak = 0

    async def extract_one(e: EntityBasic) -> RawExtractionResult:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return RawExtractionResult(e.id, items=[{"n": 1}], total_pages=1)

    results = await extract_all(
        roster(7), extract_one, concurrency=3, rate=RatePolicy.none(), show_progress=False
    )
    assert peak == 3
    assert len(results) == 7
    assert all(r.ok for r in results)


@pytest.mark.asyncio
async def test_failures_are_isolated_per_entity():
    async def extract_one(e: EntityBasic) -> RawExtractionResult:
        if e.id == "2":
            raise RuntimeError("upstream 500")
        return RawExtractionResult(e.id, items=[{"id": e.id}])

    results = await extract_all(
        roster(4), extract_one, concurrency=2, rate=RatePolicy.none(), show_progress=False
    )
    by_id = {r.entity_id: r for r in results}
    assert not by_id["2"].ok
    assert by_id["2"].items == []
    assert "upstream 500" in by_id["2"].error
    assert by_id["2"].entity.name == "dep 2"
    assert [r.ok for r in results].count(True) == 3


@pytest.mark.asyncio
async def test_progress_reported_after_each_chunk():
    seen = []

    async def extract_one(e: EntityBasic) -> RawExtractionResult:
        return RawExtractionResult(e.id)

    await extract_all(
        roster(5),
        extract_one,
        concurrency=2,
        rate=RatePolicy.none(),
        on_chunk=seen.append,
        show_progress=False,
    )
    assert [(p.done, p.chunk, p.chunks) for p in seen] == [(2, 1, 3), (4, 2, 3), (5, 3, 3)]
    assert seen[-1].succeeded == 5


@pytest.mark.asyncio
async def test_no_pause_after_last_chunk(monkeypatch: pytest.MonkeyPatch):
    sleeps = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("congresso_etl.scheduler.asyncio.sleep", fake_sleep)

    async def extract_one(e: EntityBasic) -> RawExtractionResult:
        return RawExtractionResult(e.id)

    await extract_all(
        roster(4),
        extract_one,
        concurrency=2,
        rate=RatePolicy(between_chunks=1.5),
        show_progress=False,
    )
    assert sleeps == [1.5]
