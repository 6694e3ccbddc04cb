"""Tests for the weighted aggregator."""

import math

import pytest

from accuracy_engine.assessment.aggregator import WeightedAggregator
from accuracy_engine.assessment.tuning import AggregatorConfig
from accuracy_engine.models.accuracy import (
    CATEGORY_KEYS,
    SCORE_KEYS,
    AccuracySnapshot,
    Trend,
    TrendDirection,
)


def uniform(value, **overrides):
    data = {key: value for key in SCORE_KEYS}
    data.update(overrides)
    return AccuracySnapshot(**data)


@pytest.fixture
def aggregator():
    return WeightedAggregator()


class TestClamping:
    @pytest.mark.parametrize("bad", [-50, 250, math.nan, None, "oops"])
    def test_outputs_always_in_range(self, aggregator, bad):
        current = {key: bad for key in SCORE_KEYS}
        previous = {key: 150 for key in SCORE_KEYS}
        result = aggregator.aggregate(current, previous, 7, error_count=3)
        for key in SCORE_KEYS:
            assert 0 <= getattr(result.weighted, key) <= 100

    def test_negative_message_count_treated_as_cold_start(self, aggregator):
        result = aggregator.aggregate(uniform(60), uniform(90), -3)
        assert result.message_count == 0
        assert result.weighted == uniform(60)


class TestColdStart:
    def test_returns_current_exactly(self, aggregator):
        current = AccuracySnapshot(overall=82, adjusted_overall=80, grammar=80, vocabulary=85)
        result = aggregator.aggregate(current, uniform(10), 0)
        assert result.weighted == current
        assert result.weights.historical == 0.0
        assert result.weights.current == 1.0

    def test_previous_is_ignored(self, aggregator):
        current = uniform(55)
        a = aggregator.aggregate(current, uniform(0), 0)
        b = aggregator.aggregate(current, uniform(100), 0)
        assert a.weighted == b.weighted

    def test_trend_starts_stable(self, aggregator):
        result = aggregator.aggregate(uniform(70), None, 0)
        assert result.trend.direction == TrendDirection.STABLE
        assert result.trend.recent_average == 70


class TestAntiAmplification:
    @pytest.mark.parametrize("current_overall", [0, 20, 45, 69, 70, 78, 85, 86, 99, 100])
    @pytest.mark.parametrize("previous_overall", [0, 30, 60, 80, 95, 100])
    @pytest.mark.parametrize("message_count", [1, 3, 10, 50])
    def test_overall_never_exceeds_inputs_plus_margin(
        self, aggregator, current_overall, previous_overall, message_count
    ):
        current = uniform(current_overall)
        previous = uniform(previous_overall)
        result = aggregator.aggregate(current, previous, message_count)
        assert result.weighted.overall <= max(current_overall, previous_overall) + 6
        assert result.weighted.overall >= min(current_overall, previous_overall)

    def test_category_capped_above_inputs(self, aggregator):
        result = aggregator.aggregate(uniform(90), uniform(92), 20)
        for key in CATEGORY_KEYS:
            assert getattr(result.weighted, key) <= 92 + 4


class TestSharpDrop:
    def test_drop_lands_between_current_and_previous_minus_20(self, aggregator):
        result = aggregator.aggregate(uniform(35), uniform(90), 15)
        assert 35 <= result.weighted.overall < 70

    def test_drop_reduces_historical_weight(self, aggregator):
        steady = aggregator.compute_weights(15, None, uniform(88), uniform(90))
        dropped = aggregator.compute_weights(15, None, uniform(35), uniform(90))
        assert dropped.historical <= steady.historical


class TestComputeWeights:
    def test_weights_sum_to_one(self, aggregator):
        for count in (1, 5, 20, 100):
            for overall in (10, 50, 90):
                weights = aggregator.compute_weights(count, None, uniform(overall), uniform(70))
                assert weights.historical + weights.current == pytest.approx(1.0)

    def test_good_quality_capped(self, aggregator):
        weights = aggregator.compute_weights(10, None, uniform(80), uniform(80))
        assert weights.historical == 0.05
        assert weights.current == 0.95

    def test_moderate_quality_capped(self, aggregator):
        weights = aggregator.compute_weights(10, None, uniform(60), uniform(60))
        assert weights.historical == 0.07

    def test_improving_trend_raises_weight(self, aggregator):
        trend = Trend(direction=TrendDirection.IMPROVING, confidence=0.8, recent_average=60)
        weights = aggregator.compute_weights(10, trend, uniform(60), uniform(60))
        assert weights.historical == 0.11

    def test_declining_trend_respects_minimum(self, aggregator):
        trend = Trend(direction=TrendDirection.DECLINING, confidence=0.9, recent_average=80)
        weights = aggregator.compute_weights(10, trend, uniform(80), uniform(80))
        assert weights.historical == 0.05

    def test_low_confidence_trend_ignored(self, aggregator):
        trend = Trend(direction=TrendDirection.IMPROVING, confidence=0.3, recent_average=60)
        weights = aggregator.compute_weights(10, trend, uniform(60), uniform(60))
        assert weights.historical == 0.07

    def test_custom_config(self):
        config = AggregatorConfig(moderate_quality_cap=0.2)
        weights = WeightedAggregator(config).compute_weights(10, None, uniform(60), uniform(60))
        assert weights.historical == 0.2


class TestGraduatedPenalty:
    @pytest.mark.parametrize(
        "errors,expected",
        [(None, 80), (0, 80), (4, 80), (5, 76), (8, 68), (10, 60), (15, 48), (40, 48)],
    )
    def test_steps(self, aggregator, errors, expected):
        assert aggregator.apply_graduated_penalty(80, errors) == expected

    def test_adjusted_overall_uses_error_count(self, aggregator):
        result = aggregator.aggregate(uniform(80), uniform(80), 5, error_count=10)
        assert result.weighted.adjusted_overall < result.weighted.overall

    def test_cold_start_penalty_only_touches_adjusted(self, aggregator):
        result = aggregator.aggregate(uniform(80), None, 0, error_count=10)
        assert result.weighted.overall == 80
        assert result.weighted.adjusted_overall == 60


class TestTrend:
    def test_improving(self, aggregator):
        trend = aggregator.update_trend(60, 70, 10, None)
        assert trend.direction == TrendDirection.IMPROVING
        assert trend.recent_average == 63
        assert trend.confidence == 0.1

    def test_declining(self, aggregator):
        trend = aggregator.update_trend(80, 70, 10, None)
        assert trend.direction == TrendDirection.DECLINING

    def test_stable_within_threshold(self, aggregator):
        trend = aggregator.update_trend(70, 74, 10, None)
        assert trend.direction == TrendDirection.STABLE

    def test_ema_uses_previous_recent_average(self, aggregator):
        previous = Trend(recent_average=50)
        trend = aggregator.update_trend(70, 70, 10, previous)
        assert trend.recent_average == 56

    def test_ema_keeps_zero_recent_average(self, aggregator):
        trend = aggregator.update_trend(70, 70, 10, Trend(recent_average=0.0))
        assert trend.recent_average == 21

    def test_confidence_grows_and_caps(self, aggregator):
        low = aggregator.update_trend(70, 70, 20, None).confidence
        high = aggregator.update_trend(70, 70, 2000, None).confidence
        assert low < high
        assert high == 0.95
