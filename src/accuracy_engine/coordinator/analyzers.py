"""Tier-gated fan-out to the external category analyzers."""

import asyncio
import re
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from accuracy_engine.exceptions import AnalyzerError
from accuracy_engine.models.accuracy import CATEGORY_KEYS, AccuracySnapshot, clamp_score, round_half_up
from accuracy_engine.models.analysis import (
    AnalysisDepth,
    DetectedError,
    MessageAnalysis,
    MessageStatistics,
    UserTier,
)

logger = structlog.get_logger()

# Score used for a category that was not analyzed
NEUTRAL_SCORE = 75

TIER_SKIPPED_CATEGORIES: dict[UserTier, frozenset[str]] = {
    UserTier.FREE: frozenset({"vocabulary", "coherence"}),
    UserTier.PRO: frozenset({"coherence"}),
    UserTier.PREMIUM: frozenset(),
}

# Weights of the per-message overall score (sum to 1.0)
MESSAGE_OVERALL_WEIGHTS: dict[str, float] = {
    "grammar": 0.20,
    "vocabulary": 0.20,
    "spelling": 0.15,
    "fluency": 0.15,
    "punctuation": 0.05,
    "capitalization": 0.05,
    "syntax": 0.10,
    "coherence": 0.10,
}

# Short-message leniency: messages under LENIENCY_WORDS words close part of
# the gap to 100 on adjusted_overall
LENIENCY_WORDS = 5
LENIENCY_PER_MISSING_WORD = 0.1
MAX_LENIENCY = 0.3

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


class AnalyzerResult(BaseModel):
    """What a category analyzer returns for one message."""

    score: float | None = None
    feedback: str = ""
    errors: list[DetectedError] = Field(default_factory=list)


class Analyzer(Protocol):
    async def analyze(self, text: str) -> AnalyzerResult: ...


def skipped_for_tier(tier: UserTier) -> frozenset[str]:
    return TIER_SKIPPED_CATEGORIES.get(tier, TIER_SKIPPED_CATEGORIES[UserTier.FREE])


def apply_leniency(overall: float, word_count: int) -> float:
    """Raise the overall score of very short messages toward 100."""
    if word_count >= LENIENCY_WORDS:
        return overall
    factor = min(MAX_LENIENCY, (LENIENCY_WORDS - word_count) * LENIENCY_PER_MISSING_WORD)
    return overall + (100 - overall) * factor


class AnalyzerSuite:
    """Runs the registered analyzers allowed for a tier, in parallel.

    Categories without a registered analyzer, and categories the tier does
    not include, get ``NEUTRAL_SCORE``. Only tier skips downgrade the
    analysis depth to ``basic``.

    Args:
        analyzers: Category name to analyzer.
    """

    def __init__(self, analyzers: dict[str, Analyzer] | None = None):
        self.analyzers = dict(analyzers or {})
        unknown = set(self.analyzers) - set(CATEGORY_KEYS)
        if unknown:
            raise ValueError(f"Unknown analyzer categories: {sorted(unknown)}")

    async def analyze(self, text: str, tier: UserTier) -> MessageAnalysis:
        """Score one message.

        Raises:
            AnalyzerError: If any analyzer fails.
        """
        skipped = skipped_for_tier(tier)
        to_run = {
            category: analyzer
            for category, analyzer in self.analyzers.items()
            if category not in skipped
        }

        try:
            results = await asyncio.gather(
                *(analyzer.analyze(text) for analyzer in to_run.values())
            )
        except Exception as e:
            raise AnalyzerError(f"Analyzer failed: {e}") from e
        by_category = dict(zip(to_run, results))

        scores: dict[str, int] = {}
        feedback: dict[str, str] = {}
        errors: list[DetectedError] = []
        for category in CATEGORY_KEYS:
            result = by_category.get(category)
            if result is None or result.score is None:
                scores[category] = NEUTRAL_SCORE
                continue
            scores[category] = clamp_score(result.score)
            if result.feedback:
                feedback[category] = result.feedback
            errors.extend(result.errors)

        return self._assemble(text, tier, scores, feedback=feedback, errors=errors)

    def from_submitted(
        self,
        text: str,
        tier: UserTier,
        submitted: AccuracySnapshot,
        statistics: MessageStatistics | None = None,
    ) -> MessageAnalysis:
        """Build a message analysis from scores the caller already computed.

        Tier gating still applies: skipped categories are replaced by
        ``NEUTRAL_SCORE``, as are categories the caller left out. A submitted
        ``overall`` is kept unless gating changed a category. Fields set on
        ``statistics`` override the counts derived from ``text``.
        """
        skipped = skipped_for_tier(tier)
        provided = submitted.provided_categories()
        scores = {
            category: (
                getattr(submitted, category)
                if category in provided and category not in skipped
                else NEUTRAL_SCORE
            )
            for category in CATEGORY_KEYS
        }
        overall = None
        if "overall" in provided and not (skipped & provided):
            overall = submitted.overall
        return self._assemble(text, tier, scores, overall=overall, statistics=statistics)

    def _assemble(
        self,
        text: str,
        tier: UserTier,
        scores: dict[str, int],
        feedback: dict[str, str] | None = None,
        errors: list[DetectedError] | None = None,
        overall: int | None = None,
        statistics: MessageStatistics | None = None,
    ) -> MessageAnalysis:
        skipped = skipped_for_tier(tier)
        errors = errors or []

        word_count = len(text.split())
        if overall is None:
            overall = sum(scores[key] * weight for key, weight in MESSAGE_OVERALL_WEIGHTS.items())
        scores["overall"] = round_half_up(overall)
        scores["adjusted_overall"] = round_half_up(apply_leniency(overall, word_count))

        errors_by_category: dict[str, int] = {}
        for error in errors:
            errors_by_category[error.type] = errors_by_category.get(error.type, 0) + 1

        stats = MessageStatistics(
            word_count=word_count,
            sentence_count=len([s for s in _SENTENCE_SPLIT.split(text) if s.strip()]),
            error_count=len(errors),
            critical_error_count=sum(1 for error in errors if error.severity == "critical"),
            errors_by_category=errors_by_category,
        )
        if statistics is not None:
            stats = stats.model_copy(update=statistics.model_dump(exclude_unset=True))

        features_skipped = [category for category in CATEGORY_KEYS if category in skipped]
        logger.debug(
            "message_analyzed",
            tier=tier.value,
            skipped=features_skipped,
            overall=scores["overall"],
            error_count=stats.error_count,
        )
        return MessageAnalysis(
            scores=AccuracySnapshot(**scores),
            feedback=feedback or {},
            statistics=stats,
            errors=errors,
            analysis_depth=AnalysisDepth.BASIC if features_skipped else AnalysisDepth.FULL,
            features_skipped=features_skipped,
        )
