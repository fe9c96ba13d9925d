class StrategyLabError(Exception):
    """Base exception for strategy lab failures."""


class InsufficientDataError(StrategyLabError):
    """Raised when a candle series is too short for the requested run."""


class InvalidParameterRangeError(StrategyLabError, ValueError):
    """Raised when an optimization range cannot be enumerated."""
