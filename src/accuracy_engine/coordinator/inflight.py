"""Per-key de-duplication of concurrent computations."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class InFlightRegistry(Generic[T]):
    """Runs at most one computation per key at a time.

    Callers arriving while a computation for their key is pending await the
    same future instead of starting another one. The entry is removed as soon
    as the computation settles, so later callers start fresh work.
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Future[T]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> tuple[T, bool]:
        """Await the shared result for ``key``.

        Returns:
            ``(result, joined)`` where ``joined`` is True when this caller
            reused a computation started by another caller.
        """
        existing = self._pending.get(key)
        if existing is not None:
            return await asyncio.shield(existing), True

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure does not log "never retrieved"
            future.exception()
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            self._pending.pop(key, None)
