"""Request-id keyed response cache (L1 in memory, L2 Redis)."""

import time

import structlog
from pydantic import ValidationError

from accuracy_engine.models.analysis import AnalysisResponse
from accuracy_engine.storage.redis_store import RedisJSONStore

logger = structlog.get_logger()

IDEMPOTENCY_KEY_PREFIX = "accuracy:idempotency:"


def idempotency_key(request_id: str) -> str:
    return f"{IDEMPOTENCY_KEY_PREFIX}{request_id}"


class IdempotencyCache:
    """Remembers the response produced for each request id.

    Args:
        redis_store: L2 store shared across restarts.
        ttl_seconds: Lifetime of an entry in both tiers.
        max_local_entries: L1 size bound; the oldest entries are evicted first.
    """

    def __init__(
        self,
        redis_store: RedisJSONStore,
        ttl_seconds: int = 86400,
        max_local_entries: int = 10000,
    ):
        self.redis_store = redis_store
        self.ttl_seconds = ttl_seconds
        self.max_local_entries = max_local_entries
        self._local: dict[str, tuple[AnalysisResponse, float]] = {}  # request_id -> (response, stored_at)

    async def get(self, request_id: str) -> AnalysisResponse | None:
        # L1: in-memory
        if request_id in self._local:
            response, stored_at = self._local[request_id]
            if time.monotonic() - stored_at < self.ttl_seconds:
                return response.model_copy(deep=True)
            del self._local[request_id]

        # L2: Redis
        data = await self.redis_store.get_json(idempotency_key(request_id))
        if data is None:
            return None
        try:
            response = AnalysisResponse.model_validate(data)
        except ValidationError:
            logger.warning("idempotency_payload_invalid", request_id=request_id)
            return None
        self._remember(request_id, response)
        return response.model_copy(deep=True)

    async def put(self, request_id: str, response: AnalysisResponse) -> None:
        self._remember(request_id, response)
        await self.redis_store.set_json(idempotency_key(request_id), response, self.ttl_seconds)

    def _remember(self, request_id: str, response: AnalysisResponse) -> None:
        self._local.pop(request_id, None)
        while len(self._local) >= self.max_local_entries:
            del self._local[next(iter(self._local))]
        self._local[request_id] = (response.model_copy(deep=True), time.monotonic())
