"""Tests for the realtime cache's averaging helpers."""

from accuracy_engine.assessment.cumulative import cumulative_average, exponential_smoothing


class TestCumulativeAverage:
    def test_first_message_taken_as_is(self):
        assert cumulative_average(0, 82, 1) == 82

    def test_running_mean(self):
        assert cumulative_average(80, 90, 2) == 85
        assert cumulative_average(85, 70, 3) == 80

    def test_malformed_input_is_zero(self):
        assert cumulative_average(float("nan"), 60, 2) == 30

    def test_result_clamped(self):
        assert cumulative_average(100, 400, 2) == 100


class TestExponentialSmoothing:
    def test_missing_incoming_keeps_previous(self):
        assert exponential_smoothing(64, None, 5) == 64

    def test_first_message_taken_as_is(self):
        assert exponential_smoothing(0, 70, 1) == 70

    def test_seventy_thirty_split(self):
        assert exponential_smoothing(50, 100, 4) == 85
