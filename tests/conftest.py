"""Shared in-memory doubles for Redis and the durable profile store."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from accuracy_engine.exceptions import StoreError
from accuracy_engine.models.accuracy import AggregatedProfile, HistoricalContext
from accuracy_engine.storage.redis_store import RedisJSONStore


class FakeRedis:
    """Subset of redis.asyncio.Redis backed by a dict (TTLs are recorded, not enforced)."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self):
        self.closed = True


class BrokenRedis:
    """Client whose every call fails as if the server were unreachable."""

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    async def delete(self, *keys):
        raise RedisConnectionError("connection refused")

    async def aclose(self):
        raise RedisConnectionError("connection refused")


class InMemoryProfileStore:
    """ProfileStore double; ``fail_writes``/``fail_reads`` make the next N calls raise StoreError."""

    def __init__(self):
        self.profiles: dict[str, AggregatedProfile] = {}
        self.historical: dict[str, HistoricalContext] = {}
        self.upsert_calls = 0
        self.historical_upserts = 0
        self.fail_writes = 0
        self.fail_reads = 0

    def _maybe_fail_read(self):
        if self.fail_reads:
            self.fail_reads -= 1
            raise StoreError("read failed")

    def _maybe_fail_write(self):
        if self.fail_writes:
            self.fail_writes -= 1
            raise StoreError("write failed")

    async def find_by_user(self, user_id):
        self._maybe_fail_read()
        profile = self.profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def upsert(self, user_id, profile):
        self.upsert_calls += 1
        self._maybe_fail_write()
        self.profiles[user_id] = profile.model_copy(deep=True)
        return True

    async def find_historical(self, user_id):
        self._maybe_fail_read()
        context = self.historical.get(user_id)
        return context.model_copy(deep=True) if context else None

    async def upsert_historical(self, user_id, context):
        self.historical_upserts += 1
        self._maybe_fail_write()
        self.historical[user_id] = context.model_copy(deep=True)
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis):
    return RedisJSONStore(fake_redis)


@pytest.fixture
def broken_redis_store():
    return RedisJSONStore(BrokenRedis())


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()
