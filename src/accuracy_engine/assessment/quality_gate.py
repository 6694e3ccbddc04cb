"""Language-quality veto applied to analyzer scores before aggregation."""

import math
import re

import structlog
from pydantic import BaseModel, Field

from accuracy_engine.assessment.lexicon import (
    ENGLISH_VOCABULARY,
    normalize_token,
    tokenize_ascii_words,
)
from accuracy_engine.models.accuracy import CATEGORY_KEYS, AccuracySnapshot, round_half_up
from accuracy_engine.models.analysis import (
    DetectedError,
    LanguageDetectionSummary,
    MessageStatistics,
)

logger = structlog.get_logger()

NON_LATIN_PATTERN = re.compile(r"[^\x00-\x7f]")
DEVANAGARI_PATTERN = re.compile(r"[\u0900-\u097F]")

NON_LATIN_RATIO_THRESHOLD = 0.35
ENGLISH_RATIO_CONFIDENCE_THRESHOLD = 0.55
MIN_ENGLISH_WORDS_FOR_CONFIDENCE = 8
MIN_KNOWN_RATIO_FOR_CONFIDENCE = 0.05
LEXICAL_PENALTY_THRESHOLD = 0.2
MAX_LEXICAL_PENALTY = 10
MIN_LEXICAL_PENALTY = 6
MAX_NON_ENGLISH_PENALTY = 45
MIN_NON_ENGLISH_PENALTY = 18
GRAMMAR_FLOOR_RATIO = 0.7

# Share of the applied penalty each category absorbs
NON_ENGLISH_SENSITIVITY: dict[str, float] = {
    "grammar": 0.65,
    "vocabulary": 0.7,
    "spelling": 0.55,
    "fluency": 0.6,
    "punctuation": 0.35,
    "capitalization": 0.35,
    "syntax": 0.55,
    "coherence": 0.6,
}

LEXICAL_SENSITIVITY: dict[str, float] = {
    "grammar": 0.45,
    "vocabulary": 0.65,
    "spelling": 0.3,
    "fluency": 0.45,
    "punctuation": 0.25,
    "capitalization": 0.25,
    "syntax": 0.35,
    "coherence": 0.35,
}


class GateResult(BaseModel):
    """Scores and diagnostics after the quality gate ran."""

    scores: AccuracySnapshot
    statistics: MessageStatistics
    errors: list[DetectedError] = Field(default_factory=list)
    feedback: list[str] = Field(default_factory=list)
    penalty_reason: str | None = None
    applied_penalty: int = 0


def _penalize(scores: AccuracySnapshot, drop: int, sensitivity: dict[str, float]) -> AccuracySnapshot:
    updated = {
        "overall": max(0, scores.overall - drop),
        "adjusted_overall": max(0, scores.adjusted_overall - drop),
    }
    for category in CATEGORY_KEYS:
        updated[category] = max(
            0, getattr(scores, category) - round_half_up(drop * sensitivity[category])
        )
    return AccuracySnapshot(**updated)


def _raise_counts(stats: MessageStatistics, errors: int, critical: int, by_category: dict[str, int]) -> None:
    stats.error_count = max(stats.error_count, errors)
    stats.critical_error_count = max(stats.critical_error_count, critical)
    for category, count in by_category.items():
        stats.errors_by_category[category] = max(stats.errors_by_category.get(category, 0), count)


def _empty_result(stats: MessageStatistics) -> GateResult:
    _raise_counts(stats, 18, 9, {"language": 18, "fluency": math.ceil(18 * 0.6)})
    error = DetectedError(
        type="fluency",
        category="clarity",
        severity="critical",
        message="No answer received to analyze.",
        suggestion="Please reply in clear English sentences.",
        explanation="Empty responses do not count toward practice.",
    )
    logger.info("quality_gate_penalty", reason="empty")
    return GateResult(
        scores=AccuracySnapshot(**{key: 0 for key in ("overall", "adjusted_overall", *CATEGORY_KEYS)}),
        statistics=stats,
        errors=[error],
        feedback=[
            "We could not detect any English content in your reply.",
            "Please respond in English to receive helpful corrections.",
        ],
        penalty_reason="empty",
        applied_penalty=100,
    )


def enforce_penalty(
    scores: AccuracySnapshot,
    text: str | None,
    language: LanguageDetectionSummary | None = None,
    statistics: MessageStatistics | None = None,
) -> GateResult:
    """Penalize scores for empty, non-English or degenerate input.

    Branches are evaluated in priority order (empty, non-Latin or detected
    non-English, no English words, short gibberish, low lexical coverage)
    and only the first applicable one fires.

    Args:
        scores: Raw analyzer scores for the message.
        text: The user's message.
        language: Language-detection summary, if available.
        statistics: Analyzer statistics to raise with synthetic error counts.

    Returns:
        GateResult with possibly penalized scores.
    """
    stats = statistics.model_copy(deep=True) if statistics else MessageStatistics()
    trimmed = (text or "").strip()
    if not trimmed:
        return _empty_result(stats)

    condensed = re.sub(r"\s+", " ", trimmed)
    total_chars = len(re.sub(r"\s", "", condensed))
    non_latin_count = len(NON_LATIN_PATTERN.findall(condensed))
    devanagari_count = len(DEVANAGARI_PATTERN.findall(condensed))
    words = tokenize_ascii_words(condensed)
    word_count = len(words)
    known = [
        token
        for token in (normalize_token(word) for word in words)
        if token and token in ENGLISH_VOCABULARY
    ]
    known_ratio = len(known) / word_count if word_count else 0.0
    non_latin_ratio = non_latin_count / total_chars if total_chars else 0.0

    detected_non_english = bool(language and language.should_skip_english_checks)
    detected_mixed = bool(language and language.should_relax_grammar and not detected_non_english)
    primary_label = language.primary_language if language else None
    english_ratio = language.english_ratio if language else 0.0
    probability = language.probability if language else 0.0
    label = (primary_label or "").lower()
    is_primary_english = "english" in label or label == "en"
    strong_english_signal = (
        is_primary_english and probability >= 0.5
    ) or english_ratio >= ENGLISH_RATIO_CONFIDENCE_THRESHOLD

    non_latin_triggered = non_latin_ratio > NON_LATIN_RATIO_THRESHOLD or devanagari_count > 0
    short_gibberish = 0 < word_count <= 3 and known_ratio == 0 and total_chars > 6
    lexical_coverage_low = word_count >= 4 and known_ratio < LEXICAL_PENALTY_THRESHOLD

    reason: str | None = None
    message: str | None = None
    if detected_non_english:
        reason = "non_english"
        message = (
            f"Detected primarily {primary_label}; English-only scoring skipped."
            if primary_label
            else "Detected mostly non-English characters."
        )
    elif non_latin_triggered:
        reason = "non_latin"
        message = "Your response contains mostly non-English characters."
    elif word_count == 0:
        reason = "no_english_words"
        message = "No English words were detected in your message."
    elif short_gibberish:
        reason = "short_gibberish"
        message = "We detected random text that does not look like English sentences."
    elif lexical_coverage_low:
        if (
            strong_english_signal
            and word_count >= MIN_ENGLISH_WORDS_FOR_CONFIDENCE
            and known_ratio >= MIN_KNOWN_RATIO_FOR_CONFIDENCE
        ):
            logger.debug(
                "quality_gate_lexical_override",
                known_ratio=round(known_ratio, 3),
                word_count=word_count,
                english_ratio=round(english_ratio, 3),
            )
        else:
            reason = "low_lexical_coverage"
            message = "Most words were not recognized as English vocabulary."

    if reason is None:
        return GateResult(scores=scores.model_copy(), statistics=stats)

    if reason in ("non_english", "non_latin", "no_english_words"):
        severity = 1.0 if reason != "no_english_words" else 0.7
        mitigation = round_half_up(0.35 * 20) if detected_mixed else 0
        capped = min(MAX_NON_ENGLISH_PENALTY, round_half_up((1 - known_ratio) * 50 * severity))
        applied = max(MIN_NON_ENGLISH_PENALTY, capped - mitigation)
        penalized = _penalize(scores, applied, NON_ENGLISH_SENSITIVITY)

        base_errors = max(
            stats.error_count,
            math.ceil(total_chars * 0.9 * severity),
            word_count * 4,
            18,
        )
        _raise_counts(
            stats,
            base_errors,
            math.ceil(base_errors * (0.75 if non_latin_triggered else 0.6)),
            {
                "language": math.ceil(base_errors * 0.9),
                "vocabulary": math.ceil(base_errors * 0.6),
                "grammar": math.ceil(base_errors * 0.5),
                "fluency": math.ceil(base_errors * 0.45),
            },
        )
    else:
        lexical_severity = max(0.0, LEXICAL_PENALTY_THRESHOLD - known_ratio)
        scale = min(1.0, lexical_severity / LEXICAL_PENALTY_THRESHOLD)
        applied = max(MIN_LEXICAL_PENALTY, round_half_up(scale * MAX_LEXICAL_PENALTY))
        penalized = _penalize(scores, applied, LEXICAL_SENSITIVITY)

        boost = math.ceil(max(word_count * 2, 8) * (0.4 + scale))
        _raise_counts(
            stats,
            boost,
            math.ceil(boost * 0.35),
            {
                "vocabulary": math.ceil(boost * 0.65),
                "grammar": math.ceil(boost * 0.4),
                "fluency": math.ceil(boost * 0.3),
            },
        )

        if reason == "low_lexical_coverage":
            grammar_floor = min(100, round_half_up(penalized.grammar * GRAMMAR_FLOOR_RATIO))
            if grammar_floor > 0:
                penalized.overall = max(penalized.overall, grammar_floor)
                penalized.adjusted_overall = max(penalized.adjusted_overall, grammar_floor)

    logger.info(
        "quality_gate_penalty",
        reason=reason,
        applied_penalty=applied,
        known_ratio=round(known_ratio, 3),
        non_latin_ratio=round(non_latin_ratio, 3),
        word_count=word_count,
        primary_language=primary_label,
    )

    error = DetectedError(
        type="vocabulary",
        category="clarity",
        severity="critical",
        message="Non-English or low-quality content detected.",
        suggestion="Reply in English with simple sentences.",
        explanation=message,
    )
    feedback = [
        message,
        "We detected mixed-language text. Try longer English sections."
        if detected_mixed
        else "Please respond in English to get personalized feedback.",
    ]
    return GateResult(
        scores=penalized,
        statistics=stats,
        errors=[error],
        feedback=feedback,
        penalty_reason=reason,
        applied_penalty=applied,
    )
