"""Error types raised by the analysis engines."""

from typing import Optional


class AnalysisError(Exception):
    """Base class for analysis engine errors."""


class InsufficientDataError(AnalysisError, ValueError):
    """A series is shorter than the minimum a method needs.

    Keeps ValueError compatibility for callers that already catch it.
    """

    def __init__(self, required: int, actual: int, method: Optional[str] = None):
        self.required = required
        self.actual = actual
        self.method = method
        super().__init__(insufficient_data_message(required, actual, method))


def insufficient_data_message(required: int, actual: int, method: Optional[str] = None) -> str:
    """Return message for a too-short input series."""
    if method:
        return f"Insufficient data for {method}: at least {required} data points required, got {actual}"
    return f"Insufficient data: at least {required} data points required, got {actual}"
