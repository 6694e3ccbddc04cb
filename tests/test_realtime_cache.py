"""Tests for the fast realtime cache."""

import asyncio

import pytest

from accuracy_engine.cache.realtime_cache import FastRealtimeCache, realtime_key
from accuracy_engine.models.accuracy import AccuracySnapshot, AggregatedProfile, CacheEntry


@pytest.fixture
def cache(profile_store, redis_store):
    return FastRealtimeCache(profile_store, redis_store, ttl_seconds=3600, autosave_interval_seconds=0.01)


NEW_USER_SCORES = {"overall": 82, "grammar": 80, "vocabulary": 85, "spelling": 90, "fluency": 75}


class TestInitializeUser:
    async def test_defaults_for_unknown_user(self, cache, fake_redis):
        profile = await cache.initialize_user("u1")
        assert profile.n_messages == 0
        assert profile.scores == AccuracySnapshot()
        assert cache.has_user("u1")
        assert realtime_key("u1") in fake_redis.data

    async def test_loads_from_redis_before_store(self, cache, redis_store, profile_store):
        await redis_store.set_json(realtime_key("u1"), CacheEntry(n_messages=7, scores=AccuracySnapshot(overall=66)))
        profile_store.profiles["u1"] = AggregatedProfile(n_messages=2)
        profile = await cache.initialize_user("u1")
        assert profile.n_messages == 7
        assert profile.scores.overall == 66

    async def test_loads_from_store_on_redis_miss(self, cache, profile_store, fake_redis):
        profile_store.profiles["u1"] = AggregatedProfile(n_messages=4, scores=AccuracySnapshot(overall=58))
        profile = await cache.initialize_user("u1")
        assert profile.n_messages == 4
        assert realtime_key("u1") in fake_redis.data
        assert cache.dirty_users() == []

    async def test_memory_hit_skips_backends(self, cache, profile_store):
        await cache.initialize_user("u1")
        profile_store.profiles["u1"] = AggregatedProfile(n_messages=9)
        profile = await cache.initialize_user("u1")
        assert profile.n_messages == 0

    async def test_store_failure_falls_back_to_defaults(self, cache, profile_store):
        profile_store.fail_reads = 1
        profile = await cache.initialize_user("u1")
        assert profile.n_messages == 0

    async def test_redis_down(self, profile_store, broken_redis_store):
        cache = FastRealtimeCache(profile_store, broken_redis_store)
        profile_store.profiles["u1"] = AggregatedProfile(n_messages=3)
        profile = await cache.initialize_user("u1")
        assert profile.n_messages == 3


class TestUpdate:
    async def test_new_user_scenario(self, cache):
        profile = await cache.update("u1", NEW_USER_SCORES)
        assert profile.scores.overall == 82
        assert profile.n_messages == 1
        assert profile.confidence_score == 50

    async def test_cumulative_average(self, cache):
        await cache.update("u1", {"overall": 80})
        profile = await cache.update("u1", {"overall": 90})
        assert profile.scores.overall == 85
        assert profile.n_messages == 2

    async def test_absent_categories_keep_previous(self, cache):
        await cache.update("u1", {"overall": 80, "grammar": 70})
        profile = await cache.update("u1", {"overall": 80})
        assert profile.scores.grammar == 70

    async def test_syntax_uses_exponential_smoothing(self, cache):
        await cache.update("u1", {"syntax": 50})
        profile = await cache.update("u1", {"syntax": 100})
        assert profile.scores.syntax == 85

    async def test_marks_dirty_and_mirrors(self, cache, fake_redis, redis_store, profile_store):
        await cache.update("u1", {"overall": 70})
        assert cache.dirty_users() == ["u1"]
        mirrored = await redis_store.get_json(realtime_key("u1"))
        assert mirrored["is_dirty"] is True
        assert mirrored["scores"]["overall"] == 70
        assert profile_store.upsert_calls == 0

    async def test_apply_weighted_stores_snapshot_verbatim(self, cache):
        await cache.update("u1", {"overall": 40})
        weighted = AccuracySnapshot(overall=77, adjusted_overall=74, grammar=70)
        profile = await cache.apply_weighted("u1", weighted)
        assert profile.scores == weighted
        assert profile.n_messages == 2

    async def test_get(self, cache):
        assert cache.get("u1") is None
        await cache.update("u1", {"overall": 70})
        assert cache.get("u1").scores.overall == 70


class TestPersistence:
    async def test_force_save(self, cache, profile_store):
        await cache.update("u1", {"overall": 70})
        assert await cache.force_save("u1") is True
        assert profile_store.profiles["u1"].scores.overall == 70
        assert cache.dirty_users() == []

    async def test_force_save_clean_entry(self, cache):
        await cache.initialize_user("u1")
        assert await cache.force_save("u1") is False
        assert await cache.force_save("unknown") is False

    async def test_force_save_failure_keeps_dirty(self, cache, profile_store):
        await cache.update("u1", {"overall": 70})
        profile_store.fail_writes = 1
        assert await cache.force_save("u1") is False
        assert cache.dirty_users() == ["u1"]

    async def test_autosave_fail_then_succeed(self, cache, profile_store):
        await cache.update("u1", {"overall": 70})
        profile_store.fail_writes = 1

        assert await cache.flush_dirty() == 0
        assert cache.dirty_users() == ["u1"]

        assert await cache.flush_dirty() == 1
        assert cache.dirty_users() == []
        assert profile_store.upsert_calls == 2

    async def test_background_loop_flushes(self, cache, profile_store):
        await cache.init()
        try:
            await cache.update("u1", {"overall": 70})
            for _ in range(100):
                if not cache.dirty_users():
                    break
                await asyncio.sleep(0.01)
            assert cache.dirty_users() == []
            assert "u1" in profile_store.profiles
        finally:
            await cache.shutdown()

    async def test_shutdown_flushes_all_dirty(self, profile_store, redis_store):
        cache = FastRealtimeCache(profile_store, redis_store, autosave_interval_seconds=3600)
        await cache.init()
        await cache.update("u1", {"overall": 70})
        await cache.update("u2", {"overall": 60})
        await cache.shutdown()
        assert set(profile_store.profiles) == {"u1", "u2"}
        assert cache.dirty_users() == []


class TestCleanup:
    async def test_cleanup_saves_and_evicts(self, cache, profile_store, fake_redis):
        await cache.update("u1", {"overall": 70})
        await cache.cleanup("u1")
        assert "u1" in profile_store.profiles
        assert not cache.has_user("u1")
        assert realtime_key("u1") not in fake_redis.data

    async def test_cleanup_saves_update_made_during_write(self, cache, profile_store):
        await cache.update("u1", {"overall": 70})
        original_upsert = profile_store.upsert

        async def upsert_with_concurrent_update(user_id, profile):
            result = await original_upsert(user_id, profile)
            if profile_store.upsert_calls == 1:
                await cache.update("u1", {"overall": 90})
            return result

        profile_store.upsert = upsert_with_concurrent_update
        await cache.cleanup("u1")

        assert profile_store.upsert_calls == 2
        assert profile_store.profiles["u1"].n_messages == 2
        assert profile_store.profiles["u1"].scores.overall == 80
        assert not cache.has_user("u1")

    async def test_cleanup_unknown_user(self, cache, profile_store):
        await cache.cleanup("ghost")
        assert profile_store.upsert_calls == 0

    async def test_invalidate_without_redis(self, cache, fake_redis):
        await cache.update("u1", {"overall": 70})
        await cache.invalidate("u1", include_redis=False)
        assert not cache.has_user("u1")
        assert realtime_key("u1") in fake_redis.data
