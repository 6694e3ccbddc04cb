"""Exception hierarchy for the accuracy engine."""


class AccuracyEngineError(Exception):
    """Base exception for all accuracy engine errors."""


class AnalyzerError(AccuracyEngineError):
    """Raised when an external category analyzer fails."""


class StoreError(AccuracyEngineError):
    """Raised when the durable profile store cannot read or write."""
