"""Trend-aware weighted aggregation of message scores into a user profile."""

import math

import structlog
from pydantic import BaseModel

from accuracy_engine.assessment.tuning import AggregatorConfig
from accuracy_engine.models.accuracy import (
    CATEGORY_KEYS,
    AccuracySnapshot,
    Trend,
    TrendDirection,
    Weights,
    clamp_score,
    round_half_up,
    to_number,
)

logger = structlog.get_logger()


class AggregationResult(BaseModel):
    """Output of one aggregation call."""

    weighted: AccuracySnapshot
    weights: Weights
    trend: Trend
    message_count: int


class WeightedAggregator:
    """Blends a new message's scores with a user's history.

    The blend uses adaptive weights (message count, message quality,
    deviation from the recent trend), a per-category responsiveness tilt,
    an anti-amplification clamp and decline-only smoothing.

    Args:
        config: Tuning constants. Defaults to ``AggregatorConfig()``.
    """

    def __init__(self, config: AggregatorConfig | None = None):
        self.config = config or AggregatorConfig()

    def aggregate(
        self,
        current: AccuracySnapshot | dict | None,
        previous: AccuracySnapshot | dict | None,
        message_count: int,
        trend: Trend | None = None,
        error_count: int | None = None,
    ) -> AggregationResult:
        """Combine ``current`` with ``previous`` history.

        Args:
            current: Scores of the newest message.
            previous: Last aggregated snapshot for the user.
            message_count: Messages already folded into ``previous``.
            trend: Trend state from the historical context, if known.
            error_count: Errors found in the newest message.

        Returns:
            AggregationResult with the blended snapshot, weights and new trend.
        """
        current = AccuracySnapshot.from_scores(current)
        previous = AccuracySnapshot.from_scores(previous)
        message_count = max(0, int(to_number(message_count)))

        weights = self.compute_weights(message_count, trend, current, previous)

        if message_count == 0:
            weighted = current.model_copy()
            if error_count:
                weighted.adjusted_overall = self.apply_graduated_penalty(
                    weighted.overall, error_count
                )
        else:
            weighted = self._blend(current, previous, weights)
            weighted = self._smooth(weighted, previous, message_count)
            weighted.overall = self._bound_overall(
                weighted.overall, current.overall, previous.overall
            )
            weighted.adjusted_overall = self.apply_graduated_penalty(
                weighted.overall, error_count
            )

        new_trend = self.update_trend(previous.overall, weighted.overall, message_count, trend)

        logger.debug(
            "accuracy_aggregated",
            message_count=message_count,
            historical_weight=weights.historical,
            current_overall=current.overall,
            previous_overall=previous.overall,
            weighted_overall=weighted.overall,
            trend=new_trend.direction.value,
        )

        return AggregationResult(
            weighted=weighted,
            weights=weights,
            trend=new_trend,
            message_count=message_count,
        )

    def compute_weights(
        self,
        message_count: int,
        trend: Trend | None,
        current: AccuracySnapshot,
        previous: AccuracySnapshot,
    ) -> Weights:
        """Compute historical/current blend weights for one call."""
        cfg = self.config
        if message_count <= 0:
            return Weights(historical=0.0, current=1.0)

        # More history means slightly more inertia
        hist = min(
            cfg.max_historical_weight,
            cfg.base_historical_weight + cfg.historical_growth_per_message * message_count,
        )

        overall = current.overall
        if overall < cfg.poor_quality_threshold:
            hist = min(cfg.poor_quality_cap, hist * cfg.poor_quality_multiplier)
        elif overall <= cfg.good_quality_threshold:
            hist = min(cfg.moderate_quality_cap, hist * cfg.moderate_quality_multiplier)
        else:
            hist = min(
                cfg.good_quality_cap,
                max(cfg.good_quality_floor, hist * cfg.good_quality_multiplier),
            )

        reference = trend.recent_average if trend is not None else previous.overall
        deviation = abs(reference - overall)
        if deviation > cfg.sharp_deviation_threshold:
            hist *= cfg.sharp_deviation_multiplier
        elif deviation > cfg.moderate_deviation_threshold:
            hist *= cfg.moderate_deviation_multiplier

        if trend is not None and trend.confidence > cfg.trend_confidence_threshold:
            confidence = min(cfg.max_trend_confidence, trend.confidence)
            if trend.direction == TrendDirection.DECLINING:
                hist = max(hist - cfg.declining_trend_step * confidence, cfg.min_historical_weight)
            elif trend.direction == TrendDirection.IMPROVING:
                hist = hist + cfg.improving_trend_step * confidence

        hist = round(max(cfg.min_historical_weight, min(hist, cfg.max_historical_weight)), 2)
        return Weights(historical=hist, current=round(1 - hist, 2))

    def _blend(
        self,
        current: AccuracySnapshot,
        previous: AccuracySnapshot,
        weights: Weights,
    ) -> AccuracySnapshot:
        cfg = self.config
        blended: dict[str, int] = {}

        for category in CATEGORY_KEYS:
            curr_val = getattr(current, category)
            prev_val = getattr(previous, category)
            responsiveness = cfg.category_responsiveness.get(category, cfg.default_responsiveness)

            hist_weight = max(
                0.0, weights.historical * (1 - responsiveness * cfg.responsiveness_factor)
            )
            curr_weight = max(
                0.0, weights.current * (1 + responsiveness * cfg.responsiveness_factor)
            )
            total = (hist_weight + curr_weight) or 1.0
            value = (prev_val * hist_weight + curr_val * curr_weight) / total

            # Sequential blending must not drift above both inputs
            value = min(value, max(curr_val, prev_val) + cfg.category_amplification_margin)
            blended[category] = clamp_score(value)

        total_score = 0.0
        weight_sum = 0.0
        for category, weight in cfg.overall_weights.items():
            volatility = abs(blended[category] - getattr(previous, category))
            penalty = cfg.volatility_penalty if volatility > cfg.volatility_threshold else 1.0
            total_score += blended[category] * weight * penalty
            weight_sum += weight
        computed = clamp_score(total_score / (weight_sum or 1.0))

        overall = self._bound_overall(computed, current.overall, previous.overall)
        return AccuracySnapshot(overall=overall, adjusted_overall=overall, **blended)

    def _smooth(
        self,
        weighted: AccuracySnapshot,
        previous: AccuracySnapshot,
        message_count: int,
    ) -> AccuracySnapshot:
        """Soften steep declines; improvements pass through unchanged."""
        cfg = self.config
        if message_count < cfg.min_messages_for_smoothing:
            return weighted

        factor = min(
            cfg.max_smoothing_factor,
            math.log10(message_count + 1) / cfg.smoothing_log_divisor,
        )
        smoothed = weighted.model_copy()
        for key in ("overall", *CATEGORY_KEYS):
            w_val = getattr(weighted, key)
            p_val = getattr(previous, key)
            diff = w_val - p_val
            if diff < -cfg.decline_smoothing_threshold:
                setattr(smoothed, key, clamp_score(p_val + diff * factor))
        return smoothed

    def _overall_margin(self, current_overall: int) -> int:
        cfg = self.config
        low, high = cfg.middle_band
        if low <= current_overall <= high:
            return cfg.middle_band_margin
        if current_overall > high:
            return cfg.high_band_margin
        return cfg.default_overall_margin

    def _bound_overall(self, value: int, current_overall: int, previous_overall: int) -> int:
        """Keep overall within [min(inputs), max(inputs) + band margin]."""
        ceiling = max(current_overall, previous_overall) + self._overall_margin(current_overall)
        floor = min(current_overall, previous_overall)
        return clamp_score(max(floor, min(value, ceiling)))

    def apply_graduated_penalty(self, score: int, error_count: int | None) -> int:
        """Reduce ``score`` by a step percentage chosen from ``error_count``."""
        count = int(to_number(error_count))
        for threshold, percent in self.config.error_penalty_steps:
            if count >= threshold:
                points = round_half_up(score * percent / 100)
                adjusted = max(0, score - points)
                logger.debug(
                    "graduated_penalty_applied",
                    error_count=count,
                    percent=percent,
                    adjusted=adjusted,
                )
                return adjusted
        return clamp_score(score)

    def update_trend(
        self,
        previous_overall: int,
        new_overall: int,
        message_count: int,
        trend: Trend | None,
    ) -> Trend:
        """Derive the next trend state from the latest aggregated overall."""
        cfg = self.config
        growth = 1 - math.exp(-message_count / cfg.trend_confidence_horizon)
        confidence = round(
            max(cfg.min_trend_confidence, min(cfg.max_trend_confidence, growth)), 2
        )

        if message_count == 0:
            return Trend(
                direction=TrendDirection.STABLE,
                confidence=confidence,
                recent_average=float(new_overall),
            )

        diff = new_overall - previous_overall
        if diff > cfg.trend_direction_threshold:
            direction = TrendDirection.IMPROVING
        elif diff < -cfg.trend_direction_threshold:
            direction = TrendDirection.DECLINING
        else:
            direction = TrendDirection.STABLE

        base = trend.recent_average if trend is not None else previous_overall
        recent_average = round_half_up(base * (1 - cfg.ema_alpha) + new_overall * cfg.ema_alpha)

        return Trend(direction=direction, confidence=confidence, recent_average=float(recent_average))
