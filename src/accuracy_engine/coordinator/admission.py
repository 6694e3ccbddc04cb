"""Soft admission control for concurrent computations."""


class AdmissionController:
    """Counts in-flight computations against a fixed ceiling.

    This is not a queue: a caller that cannot be admitted is told to come
    back later and never waits.
    """

    def __init__(self, max_in_flight: int = 1000, retry_after_seconds: int = 5):
        self.max_in_flight = max_in_flight
        self.retry_after_seconds = retry_after_seconds
        self.in_flight = 0

    @property
    def at_capacity(self) -> bool:
        return self.in_flight >= self.max_in_flight

    def try_acquire(self) -> bool:
        if self.at_capacity:
            return False
        self.in_flight += 1
        return True

    def release(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)
