"""Tests for the historical context store."""

import pytest

from accuracy_engine.cache.historical_context import HistoricalContextStore, historical_key
from accuracy_engine.exceptions import StoreError
from accuracy_engine.models.accuracy import AccuracySnapshot, HistoricalContext, Trend, TrendDirection


@pytest.fixture
def historical(redis_store, profile_store):
    return HistoricalContextStore(redis_store, profile_store, ttl_seconds=3600, persist_every=5)


class TestRecord:
    async def test_refreshes_redis_every_time(self, historical, fake_redis):
        context = await historical.record("u1", AccuracySnapshot(overall=72), 0, Trend())
        assert context.message_count == 1
        assert context.overall == 72
        assert historical_key("u1") in fake_redis.data
        assert fake_redis.ttls[historical_key("u1")] == 3600

    async def test_durable_write_every_fifth(self, historical, profile_store):
        for count in range(10):
            await historical.record("u1", AccuracySnapshot(overall=60 + count), count, Trend())
        assert profile_store.historical_upserts == 2
        assert profile_store.historical["u1"].message_count == 10

    async def test_durable_failure_is_absorbed(self, historical, profile_store):
        profile_store.fail_writes = 1
        context = await historical.record("u1", AccuracySnapshot(overall=60), 4, Trend())
        assert context.message_count == 5
        assert "u1" not in profile_store.historical


class TestGet:
    async def test_redis_hit(self, historical):
        trend = Trend(direction=TrendDirection.IMPROVING, confidence=0.7, recent_average=71)
        await historical.record("u1", AccuracySnapshot(overall=75), 2, trend)
        context = await historical.get("u1")
        assert context.message_count == 3
        assert context.trend == trend

    async def test_falls_back_to_store_and_rewarms(self, historical, profile_store, fake_redis):
        profile_store.historical["u2"] = HistoricalContext(user_id="u2", message_count=10, overall=66)
        context = await historical.get("u2")
        assert context.message_count == 10
        assert historical_key("u2") in fake_redis.data

    async def test_no_history(self, historical):
        assert await historical.get("nobody") is None

    async def test_store_failure_means_no_history(self, historical, profile_store):
        profile_store.fail_reads = 1
        assert await historical.get("u3") is None

    async def test_fetch_reports_store_failure(self, historical, profile_store):
        profile_store.fail_reads = 1
        with pytest.raises(StoreError):
            await historical.fetch("u3")

    async def test_fetch_without_history(self, historical):
        assert await historical.fetch("nobody") is None

    async def test_redis_down_uses_store(self, broken_redis_store, profile_store):
        historical = HistoricalContextStore(broken_redis_store, profile_store)
        profile_store.historical["u4"] = HistoricalContext(user_id="u4", message_count=3, overall=50)
        context = await historical.get("u4")
        assert context.overall == 50
