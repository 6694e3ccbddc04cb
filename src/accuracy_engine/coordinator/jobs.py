"""Contract for the durable persistence job queue."""

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field

from accuracy_engine.models.accuracy import AccuracySnapshot, AggregatedProfile


class PersistenceJob(BaseModel):
    """Work item asking the job queue to persist one message's outcome."""

    request_id: str
    user_id: str
    message_scores: AccuracySnapshot
    weighted: AccuracySnapshot
    aggregated: AggregatedProfile
    created_at: datetime = Field(default_factory=datetime.now)


class JobQueue(Protocol):
    """Durable queue owned by another service; only enqueueing is used here."""

    async def add(
        self,
        job: PersistenceJob,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None: ...
