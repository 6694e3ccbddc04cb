"""Low-latency averaging used by the realtime display cache."""

from accuracy_engine.models.accuracy import clamp_score, to_number

# Analyzer-first split for continuous categories
SMOOTHING_CURRENT_WEIGHT = 0.7


def cumulative_average(old_value: float, new_value: float, count: int) -> int:
    """Fold ``new_value`` into a running mean.

    Args:
        old_value: Mean over the previous ``count - 1`` messages.
        new_value: Score of the newest message.
        count: Message count including the newest message.

    Returns:
        Rounded, clamped running mean.
    """
    if count <= 1:
        return clamp_score(new_value)
    old = to_number(old_value)
    new = to_number(new_value)
    return clamp_score((old * (count - 1) + new) / count)


def exponential_smoothing(
    previous: float,
    incoming: float | None,
    count: int,
    current_weight: float = SMOOTHING_CURRENT_WEIGHT,
) -> int:
    """Blend ``incoming`` with ``previous`` using a fixed current/previous split.

    A missing ``incoming`` keeps ``previous``; the first message is taken as-is.
    """
    if incoming is None:
        return clamp_score(previous)
    if count <= 1:
        return clamp_score(incoming)
    return clamp_score(
        current_weight * to_number(incoming) + (1 - current_weight) * to_number(previous)
    )
