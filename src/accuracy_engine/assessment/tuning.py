"""Tuning constants for weighted accuracy aggregation."""

from pydantic import BaseModel, Field


class AggregatorConfig(BaseModel):
    """All thresholds and weights used by WeightedAggregator.

    Grouped in one model so tests can vary a single constant at a time.
    """

    # Baseline weights
    base_historical_weight: float = 0.25
    historical_growth_per_message: float = 0.005
    max_historical_weight: float = 0.35
    min_historical_weight: float = 0.05

    # Quality rule: (overall threshold, multiplier, bound)
    poor_quality_threshold: float = 40.0
    poor_quality_multiplier: float = 1.5
    poor_quality_cap: float = 0.10
    good_quality_threshold: float = 70.0
    moderate_quality_multiplier: float = 1.2
    moderate_quality_cap: float = 0.07
    good_quality_multiplier: float = 0.8
    good_quality_floor: float = 0.03
    good_quality_cap: float = 0.05

    # Deviation rule against the trend's recent average
    sharp_deviation_threshold: float = 20.0
    sharp_deviation_multiplier: float = 0.4
    moderate_deviation_threshold: float = 12.0
    moderate_deviation_multiplier: float = 0.65

    # Trend rule
    trend_confidence_threshold: float = 0.6
    declining_trend_step: float = 0.10
    improving_trend_step: float = 0.05

    # Per-category blend
    category_responsiveness: dict[str, float] = Field(
        default_factory=lambda: {
            "grammar": 0.65,
            "vocabulary": 0.75,
            "spelling": 0.70,
            "fluency": 0.75,
            "punctuation": 0.75,
            "capitalization": 0.70,
            "syntax": 0.70,
            "coherence": 0.70,
        }
    )
    default_responsiveness: float = 0.5
    responsiveness_factor: float = 0.5
    category_amplification_margin: int = 4

    # Overall recomputation
    overall_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "grammar": 0.30,
            "vocabulary": 0.15,
            "spelling": 0.20,
            "fluency": 0.15,
            "punctuation": 0.10,
            "capitalization": 0.10,
        }
    )
    volatility_threshold: float = 25.0
    volatility_penalty: float = 0.9
    middle_band: tuple[int, int] = (70, 85)
    middle_band_margin: int = 3
    high_band_margin: int = 4
    default_overall_margin: int = 6

    # Asymmetric smoothing
    decline_smoothing_threshold: float = 15.0
    smoothing_log_divisor: float = 1.2
    max_smoothing_factor: float = 0.92
    min_messages_for_smoothing: int = 2

    # Graduated error penalty: (min errors, percent reduction), checked in order
    error_penalty_steps: tuple[tuple[int, int], ...] = ((15, 40), (10, 25), (8, 15), (5, 5))

    # Trend estimation
    trend_direction_threshold: float = 5.0
    trend_confidence_horizon: float = 200.0
    min_trend_confidence: float = 0.1
    max_trend_confidence: float = 0.95
    ema_alpha: float = 0.3
