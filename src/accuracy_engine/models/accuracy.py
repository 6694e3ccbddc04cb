"""Accuracy score models shared by the aggregator, caches and coordinator."""

import math
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Per-category fields every snapshot carries (overall/adjusted_overall excluded)
CATEGORY_KEYS: tuple[str, ...] = (
    "grammar",
    "vocabulary",
    "spelling",
    "fluency",
    "punctuation",
    "capitalization",
    "syntax",
    "coherence",
)

SCORE_KEYS: tuple[str, ...] = ("overall", "adjusted_overall", *CATEGORY_KEYS)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive scores (banker's rounding skews averages)."""
    return int(math.floor(value + 0.5))


def to_number(value: Any, default: float = 0.0) -> float:
    """Coerce arbitrary input to a finite float, falling back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def clamp_score(value: Any) -> int:
    """Clamp any input into an integer score in [0, 100]."""
    number = to_number(value)
    if number <= 0:
        return 0
    if number >= 100:
        return 100
    return round_half_up(number)


class AccuracySnapshot(BaseModel):
    """One message's or one aggregate's scores, each an integer in [0, 100].

    Malformed values (NaN, None, strings, out-of-range numbers) are coerced
    rather than rejected so a bad analyzer never aborts aggregation.
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    overall: int = 0
    adjusted_overall: int = 0
    grammar: int = 0
    vocabulary: int = 0
    spelling: int = 0
    fluency: int = 0
    punctuation: int = 0
    capitalization: int = 0
    syntax: int = 0
    coherence: int = 0

    @field_validator(*SCORE_KEYS, mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> int:
        return clamp_score(value)

    @classmethod
    def from_scores(cls, scores: "AccuracySnapshot | dict[str, Any] | None") -> "AccuracySnapshot":
        """Build a snapshot from a loose mapping, accepting camelCase aliases."""
        if scores is None:
            return cls()
        if isinstance(scores, AccuracySnapshot):
            return scores.model_copy()
        data = dict(scores)
        if "adjustedOverall" in data and "adjusted_overall" not in data:
            data["adjusted_overall"] = data.pop("adjustedOverall")
        return cls.model_validate(data)

    def provided_categories(self) -> set[str]:
        """Score fields explicitly supplied when the snapshot was built."""
        return {key for key in SCORE_KEYS if key in self.model_fields_set}

    def category_scores(self) -> dict[str, int]:
        return {key: getattr(self, key) for key in CATEGORY_KEYS}


class TrendDirection(StrEnum):
    """Direction of a user's recent overall score."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class Trend(BaseModel):
    direction: TrendDirection = TrendDirection.STABLE
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    recent_average: float = 0.0


class Weights(BaseModel):
    """Blend coefficients for one aggregation call (historical + current == 1)."""

    historical: float = Field(ge=0.0, le=1.0)
    current: float = Field(ge=0.0, le=1.0)


def profile_confidence(n_messages: int) -> int:
    """Confidence (0-100) in an aggregated profile, non-decreasing in message count."""
    if n_messages <= 0:
        return 0
    return min(100, round_half_up(50 + 0.5 * (n_messages - 1)))


class AggregatedProfile(BaseModel):
    """Durable per-user accuracy state."""

    n_messages: int = Field(default=0, ge=0)
    scores: AccuracySnapshot = Field(default_factory=AccuracySnapshot)
    last_updated: datetime = Field(default_factory=datetime.now)
    confidence_score: int = Field(default=0, ge=0, le=100)


class CacheEntry(AggregatedProfile):
    """In-memory mirror of an AggregatedProfile with unflushed-change tracking."""

    is_dirty: bool = False

    def to_profile(self) -> AggregatedProfile:
        return AggregatedProfile.model_validate(self.model_dump(exclude={"is_dirty"}))


class HistoricalContext(BaseModel):
    """Cached trend state used to weight the next aggregation."""

    user_id: str
    message_count: int = Field(default=0, ge=0)
    overall: int = 0
    categories: AccuracySnapshot = Field(default_factory=AccuracySnapshot)
    trend: Trend = Field(default_factory=Trend)
    last_updated: datetime = Field(default_factory=datetime.now)
