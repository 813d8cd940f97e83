"""Tests for signal appends and earliest-wins drop outcomes."""

import itertools
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from conftest import FakeCache
from dropwatch.db.models import DropEvent, DropOutcome
from dropwatch.signals.store import SignalStore

T = datetime(2024, 10, 1, 14, 0, 0)


async def outcome_rows(session_factory, product_id, retailer_id=1):
    async with session_factory() as db:
        result = await db.execute(
            select(DropOutcome).where(
                DropOutcome.product_id == product_id, DropOutcome.retailer_id == retailer_id
            )
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_buy_window_from_first_seen_to_first_in_stock(session_factory):
    store = SignalStore(session_factory)
    await store.record_first_seen(1, 1, T)
    outcome = await store.record_first_in_stock(1, 1, T + timedelta(seconds=300))

    assert outcome.first_seen_at == T
    assert outcome.first_instock_at == T + timedelta(seconds=300)
    assert outcome.buy_window_seconds == 300
    assert outcome.drop_at == T


@pytest.mark.asyncio
async def test_any_call_order_converges_to_minima(session_factory):
    calls = [
        ("seen", T + timedelta(seconds=60)),
        ("seen", T),
        ("in_stock", T + timedelta(seconds=400)),
        ("in_stock", T + timedelta(seconds=300)),
    ]
    store = SignalStore(session_factory)

    for product_id, order in enumerate(itertools.permutations(calls), start=1):
        for kind, at in order:
            if kind == "seen":
                outcome = await store.record_first_seen(product_id, 1, at)
            else:
                outcome = await store.record_first_in_stock(product_id, 1, at)
            assert outcome.buy_window_seconds is None or outcome.buy_window_seconds >= 0

        rows = await outcome_rows(session_factory, product_id)
        assert len(rows) == 1, order
        assert rows[0].first_seen_at == T
        assert rows[0].first_instock_at == T + timedelta(seconds=300)
        assert rows[0].buy_window_seconds == 300

    # 24 products touched, no lock kept behind
    assert len(store._outcome_locks) == 0


@pytest.mark.asyncio
async def test_replays_are_idempotent(session_factory):
    store = SignalStore(session_factory)
    for _ in range(3):
        await store.record_first_seen(1, 1, T)
        await store.record_first_in_stock(1, 1, T + timedelta(seconds=120))

    rows = await outcome_rows(session_factory, 1)
    assert len(rows) == 1
    assert rows[0].buy_window_seconds == 120


@pytest.mark.asyncio
async def test_in_stock_before_any_sighting_has_zero_window(session_factory):
    store = SignalStore(session_factory)
    outcome = await store.record_first_in_stock(1, 1, T)
    assert outcome.first_seen_at is None
    assert outcome.buy_window_seconds == 0


@pytest.mark.asyncio
async def test_sighting_outside_lookback_starts_new_occurrence(session_factory):
    store = SignalStore(session_factory)
    await store.record_first_seen(1, 1, T)
    await store.record_first_seen(1, 1, T + timedelta(hours=49))

    rows = await outcome_rows(session_factory, 1)
    assert len(rows) == 2


@pytest.mark.asyncio
async def test_record_signal_appends(session_factory):
    store = SignalStore(session_factory)
    assert await store.record_signal(1, 1, "url_live", observed_at=T, value="https://x", source="test")

    async with session_factory() as db:
        event = (await db.execute(select(DropEvent))).scalar_one()
    assert event.signal_type == "url_live"
    assert event.signal_value == "https://x"
    assert event.observed_at == T


@pytest.mark.asyncio
async def test_record_signal_rejects_unknown_type(session_factory):
    store = SignalStore(session_factory)
    with pytest.raises(ValueError):
        await store.record_signal(1, 1, "restocked", observed_at=T)


@pytest.mark.asyncio
async def test_dedupe_suppresses_repeats_within_ttl(session_factory):
    store = SignalStore(session_factory, cache=FakeCache())

    assert await store.record_signal(1, 1, "price_present", value="49.99", dedupe=True)
    assert not await store.record_signal(1, 1, "price_present", value="49.99", dedupe=True)
    assert await store.record_signal(1, 1, "price_present", value="44.99", dedupe=True)
    assert await store.record_signal(1, 1, "price_present", value="49.99", dedupe=False)

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(DropEvent))).scalar_one()
    assert count == 3


@pytest.mark.asyncio
async def test_dedupe_falls_back_to_append_when_cache_fails(session_factory):
    class BrokenCache(FakeCache):
        async def set_if_absent(self, key, value, ttl_seconds):
            raise ConnectionError("redis down")

    store = SignalStore(session_factory, cache=BrokenCache())
    assert await store.record_signal(1, 1, "url_live", value="u", dedupe=True)
    assert await store.record_signal(1, 1, "url_live", value="u", dedupe=True)
