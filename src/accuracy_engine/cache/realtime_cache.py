"""In-memory accuracy profiles mirrored to Redis and flushed to durable storage.

The in-process map is the only mutable copy of a user's profile once the user
is initialized. Every update is mirrored to Redis immediately; durable writes
happen only on the autosave tick, on ``force_save`` and on ``shutdown``.
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from accuracy_engine.assessment.cumulative import cumulative_average, exponential_smoothing
from accuracy_engine.exceptions import StoreError
from accuracy_engine.models.accuracy import (
    AccuracySnapshot,
    AggregatedProfile,
    CacheEntry,
    profile_confidence,
)
from accuracy_engine.storage.profile_store import ProfileStore
from accuracy_engine.storage.redis_store import RedisJSONStore

logger = structlog.get_logger()

REALTIME_KEY_PREFIX = "fastAccuracy:"

# Categories with continuous analyzer scores, smoothed instead of averaged
SMOOTHED_CATEGORIES = frozenset({"syntax", "coherence"})


def realtime_key(user_id: str) -> str:
    return f"{REALTIME_KEY_PREFIX}{user_id}"


class FastRealtimeCache:
    """Per-user accuracy cache with dirty tracking and periodic flush.

    Args:
        profile_store: Durable system of record.
        redis_store: Best-effort Redis mirror.
        ttl_seconds: Lifetime of the Redis mirror key.
        autosave_interval_seconds: Period of the background flush.
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        redis_store: RedisJSONStore,
        ttl_seconds: int = 3600,
        autosave_interval_seconds: float = 30.0,
    ):
        self.profile_store = profile_store
        self.redis_store = redis_store
        self.ttl_seconds = ttl_seconds
        self.autosave_interval_seconds = autosave_interval_seconds
        self._entries: dict[str, CacheEntry] = {}
        self._autosave_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Start the autosave loop. Calling it twice is a no-op."""
        if self._autosave_task is not None:
            return
        self._autosave_task = asyncio.create_task(self._autosave_loop())
        logger.info("realtime_cache_started", interval=self.autosave_interval_seconds)

    async def shutdown(self) -> None:
        """Stop the autosave loop and flush every dirty entry once."""
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            await asyncio.gather(self._autosave_task, return_exceptions=True)
            self._autosave_task = None

        saved = await self.flush_dirty()
        logger.info("realtime_cache_stopped", flushed=saved, remaining_dirty=len(self.dirty_users()))

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.autosave_interval_seconds)
            try:
                await self.flush_dirty()
            except Exception:
                logger.exception("realtime_cache_autosave_failed")

    async def flush_dirty(self) -> int:
        """Run one autosave pass. Returns the number of entries written."""
        dirty = self.dirty_users()
        if not dirty:
            return 0
        results = await asyncio.gather(*(self.force_save(user_id) for user_id in dirty))
        saved = sum(1 for ok in results if ok)
        logger.debug("realtime_cache_flushed", dirty=len(dirty), saved=saved)
        return saved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def initialize_user(self, user_id: str) -> AggregatedProfile:
        """Load a user's profile into memory.

        Lookup order: in-process map, Redis mirror, durable store, zeroed
        defaults. The first hit wins and is written back to memory and Redis.
        """
        entry = self._entries.get(user_id)
        if entry is not None:
            return entry.to_profile()

        source = "redis"
        entry = await self._load_from_redis(user_id)
        if entry is None:
            source = "store"
            entry = await self._load_from_store(user_id)
        if entry is None:
            source = "defaults"
            entry = CacheEntry()

        self._entries[user_id] = entry
        await self._mirror(user_id, entry)
        logger.debug("realtime_cache_user_initialized", user_id=user_id, source=source)
        return entry.to_profile()

    def get(self, user_id: str) -> AggregatedProfile | None:
        entry = self._entries.get(user_id)
        return entry.to_profile() if entry is not None else None

    def has_user(self, user_id: str) -> bool:
        return user_id in self._entries

    def dirty_users(self) -> list[str]:
        return [user_id for user_id, entry in self._entries.items() if entry.is_dirty]

    async def _load_from_redis(self, user_id: str) -> CacheEntry | None:
        data = await self.redis_store.get_json(realtime_key(user_id))
        if data is None:
            return None
        try:
            return CacheEntry.model_validate(data)
        except ValidationError:
            logger.warning("realtime_cache_payload_invalid", user_id=user_id)
            return None

    async def _load_from_store(self, user_id: str) -> CacheEntry | None:
        try:
            profile = await self.profile_store.find_by_user(user_id)
        except (StoreError, ValidationError) as e:
            logger.warning("realtime_cache_store_load_failed", user_id=user_id, error=str(e))
            return None
        if profile is None:
            return None
        return CacheEntry(**profile.model_dump(), is_dirty=False)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update(
        self, user_id: str, new_scores: AccuracySnapshot | dict[str, Any]
    ) -> AggregatedProfile:
        """Fold one message's scores into the cached running averages.

        Core categories use a cumulative mean over the post-increment message
        count; syntax and coherence use 0.7/0.3 exponential smoothing.
        Categories absent from ``new_scores`` keep their previous value.
        """
        if user_id not in self._entries:
            await self.initialize_user(user_id)
        entry = self._entries[user_id]

        incoming = AccuracySnapshot.from_scores(new_scores)
        provided = incoming.provided_categories()
        count = entry.n_messages + 1

        updated = entry.scores.model_copy()
        for key in provided:
            previous = getattr(entry.scores, key)
            value = getattr(incoming, key)
            if key in SMOOTHED_CATEGORIES:
                setattr(updated, key, exponential_smoothing(previous, value, count))
            else:
                setattr(updated, key, cumulative_average(previous, value, count))
        if "overall" in provided and "adjusted_overall" not in provided:
            updated.adjusted_overall = updated.overall

        return await self._commit(user_id, entry, updated, count)

    async def apply_weighted(self, user_id: str, weighted: AccuracySnapshot) -> AggregatedProfile:
        """Store an already-aggregated snapshot as the user's current profile."""
        if user_id not in self._entries:
            await self.initialize_user(user_id)
        entry = self._entries[user_id]
        return await self._commit(user_id, entry, weighted.model_copy(), entry.n_messages + 1)

    async def _commit(
        self, user_id: str, entry: CacheEntry, scores: AccuracySnapshot, count: int
    ) -> AggregatedProfile:
        entry.scores = scores
        entry.n_messages = count
        entry.confidence_score = profile_confidence(count)
        entry.last_updated = datetime.now()
        entry.is_dirty = True
        await self._mirror(user_id, entry)
        return entry.to_profile()

    async def force_save(self, user_id: str) -> bool:
        """Write a dirty entry to the durable store.

        Returns:
            True only when the write was confirmed; False when the entry is
            missing, already clean, or the write failed.
        """
        entry = self._entries.get(user_id)
        if entry is None or not entry.is_dirty:
            return False
        snapshot_time = entry.last_updated
        try:
            await self.profile_store.upsert(user_id, entry.to_profile())
        except StoreError as e:
            logger.warning("realtime_cache_save_failed", user_id=user_id, error=str(e))
            return False

        # An update that landed during the write keeps the entry dirty
        if entry.last_updated == snapshot_time:
            entry.is_dirty = False
            await self._mirror(user_id, entry)
        logger.debug("realtime_cache_saved", user_id=user_id, n_messages=entry.n_messages)
        return True

    async def invalidate(self, user_id: str, include_redis: bool = True) -> None:
        """Drop a user from memory (and Redis) without saving."""
        self._entries.pop(user_id, None)
        if include_redis:
            await self.redis_store.delete(realtime_key(user_id))

    async def cleanup(self, user_id: str) -> None:
        """Save then forget a user, e.g. on logout."""
        had_entry = user_id in self._entries
        if had_entry:
            # Updates that land during a write leave the entry dirty
            while await self.force_save(user_id):
                entry = self._entries.get(user_id)
                if entry is None or not entry.is_dirty:
                    break
        await self.invalidate(user_id)
        logger.info("realtime_cache_user_cleaned", user_id=user_id, had_entry=had_entry)

    async def _mirror(self, user_id: str, entry: CacheEntry) -> bool:
        return await self.redis_store.set_json(realtime_key(user_id), entry, self.ttl_seconds)
