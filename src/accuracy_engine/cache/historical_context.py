"""Redis-resident trend state with throttled durable persistence."""

from datetime import datetime

import structlog
from pydantic import ValidationError

from accuracy_engine.exceptions import StoreError
from accuracy_engine.models.accuracy import AccuracySnapshot, HistoricalContext, Trend
from accuracy_engine.storage.profile_store import ProfileStore
from accuracy_engine.storage.redis_store import RedisJSONStore

logger = structlog.get_logger()

HISTORICAL_KEY_PREFIX = "accuracy:historical:"


def historical_key(user_id: str) -> str:
    return f"{HISTORICAL_KEY_PREFIX}{user_id}"


class HistoricalContextStore:
    """Reads and refreshes a user's HistoricalContext.

    Redis always holds the latest context. The durable store is written only
    on every ``persist_every``-th aggregation, so a restart loses at most the
    updates since the last durable write that are no longer in Redis.

    Args:
        redis_store: Best-effort Redis wrapper.
        profile_store: Durable store used on Redis miss and for throttled writes.
        ttl_seconds: Redis key lifetime.
        persist_every: Durable write period, in aggregations.
    """

    def __init__(
        self,
        redis_store: RedisJSONStore,
        profile_store: ProfileStore,
        ttl_seconds: int = 3600,
        persist_every: int = 5,
    ):
        self.redis_store = redis_store
        self.profile_store = profile_store
        self.ttl_seconds = ttl_seconds
        self.persist_every = max(1, persist_every)

    async def get(self, user_id: str) -> HistoricalContext | None:
        """Return the user's context, or None when there is no usable history."""
        try:
            return await self.fetch(user_id)
        except StoreError as e:
            logger.warning("historical_context_load_failed", user_id=user_id, error=str(e))
            return None

    async def fetch(self, user_id: str) -> HistoricalContext | None:
        """Return the user's context, or None when none was ever stored.

        Raises:
            StoreError: If the durable store could not be read.
        """
        cached = await self.redis_store.get_json(historical_key(user_id))
        if cached is not None:
            try:
                return HistoricalContext.model_validate(cached)
            except ValidationError:
                logger.warning("historical_context_invalid", user_id=user_id, source="redis")

        try:
            context = await self.profile_store.find_historical(user_id)
        except ValidationError as e:
            raise StoreError(f"Invalid historical context for {user_id}: {e}") from e
        if context is None:
            return None

        await self.redis_store.set_json(historical_key(user_id), context, self.ttl_seconds)
        return context

    async def record(
        self,
        user_id: str,
        snapshot: AccuracySnapshot,
        message_count: int,
        trend: Trend,
    ) -> HistoricalContext:
        """Store the context produced by one aggregation.

        Args:
            user_id: User the aggregation belongs to.
            snapshot: Weighted snapshot returned by the aggregator.
            message_count: Messages folded in before this aggregation.
            trend: Trend returned by the aggregator.

        Returns:
            The stored context, with ``message_count`` incremented.
        """
        context = HistoricalContext(
            user_id=user_id,
            message_count=message_count + 1,
            overall=snapshot.overall,
            categories=snapshot,
            trend=trend,
            last_updated=datetime.now(),
        )
        await self.redis_store.set_json(historical_key(user_id), context, self.ttl_seconds)

        if context.message_count % self.persist_every == 0:
            try:
                await self.profile_store.upsert_historical(user_id, context)
                logger.debug(
                    "historical_context_persisted",
                    user_id=user_id,
                    message_count=context.message_count,
                )
            except StoreError as e:
                logger.warning("historical_context_persist_failed", user_id=user_id, error=str(e))
        return context
