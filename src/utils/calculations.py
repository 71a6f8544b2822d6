"""
Mathematical and statistical calculation utilities.

Shared by the deviation, trend and forecasting engines so every consumer uses
the same regression, CAGR and dispersion formulas. None of the functions here
return NaN or infinity: degenerate inputs map to defined sentinels.
"""

import math
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Sequence, Tuple


@dataclass(frozen=True)
class RegressionResult:
    """Ordinary least squares fit against the index sequence 0..n-1."""
    slope: float
    intercept: float
    r_squared: float

    def predict(self, x: float) -> float:
        """Predicted value at position x."""
        return self.intercept + self.slope * x


def calculate_variance_percentage(current: float, previous: float) -> float:
    """
    Calculate variance percentage between two values.

    Args:
        current: Current period value
        previous: Previous period value

    Returns:
        Variance percentage, 100 for new activity on a zero base
    """
    if previous == 0:
        return 100.0 if current != 0 else 0.0
    return ((current - previous) / abs(previous)) * 100


def calculate_variance_amount(current: float, previous: float) -> float:
    """
    Calculate absolute variance amount between two values.

    Args:
        current: Current period value
        previous: Previous period value

    Returns:
        Variance amount
    """
    return current - previous


def compute_delta(previous: float, current: float) -> Tuple[float, float]:
    """Return (delta_abs, delta_pct) for a previous/current pair."""
    return (
        calculate_variance_amount(current, previous),
        calculate_variance_percentage(current, previous),
    )


def is_material(delta_abs: float, delta_pct: float,
                abs_threshold: float, pct_threshold: float) -> bool:
    """
    Materiality gate: both the absolute and the percentage change must reach
    their thresholds.
    """
    return abs(delta_abs) >= abs_threshold and abs(delta_pct) >= pct_threshold


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def standard_deviation(values: Sequence[float], sample: bool = True) -> float:
    """
    Standard deviation of a series.

    Args:
        values: Series values
        sample: Divide by n-1 when True, by n (population) when False

    Returns:
        Standard deviation, 0.0 when there are too few points
    """
    ddof = 1 if sample else 0
    if len(values) <= ddof or len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=ddof))


def coefficient_of_variation(std_dev: float, avg: float) -> float:
    """Scale-free volatility: std / |mean|, 0 when the mean is 0."""
    if avg == 0:
        return 0.0
    return std_dev / abs(avg)


def linear_regression(values: Sequence[float]) -> RegressionResult:
    """
    Fit y = intercept + slope * x by ordinary least squares with x = 0..n-1.

    Args:
        values: Time series values, oldest first

    Returns:
        RegressionResult with slope, intercept and R-squared
    """
    n = len(values)
    if n < 2:
        return RegressionResult(slope=0.0, intercept=float(values[0]) if n else 0.0, r_squared=0.0)

    y = np.asarray(values, dtype=float)
    x = np.arange(n, dtype=float)
    x_mean = (n - 1) / 2
    y_mean = float(np.mean(y))

    dx = x - x_mean
    denominator = float(np.sum(dx * dx))
    slope = float(np.sum(dx * (y - y_mean))) / denominator if denominator != 0 else 0.0
    intercept = y_mean - slope * x_mean

    ss_tot = float(np.sum((y - y_mean) ** 2))
    ss_res = float(np.sum((y - (intercept + slope * x)) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot != 0 else 0.0

    return RegressionResult(slope=slope, intercept=intercept, r_squared=r_squared)


def calculate_cagr(start_value: float, end_value: float, periods: int) -> float:
    """
    Compound annual growth rate between two values.

    For two negative figures the growth is measured on magnitudes and the sign
    is flipped when the value moved up (towards zero), so a shrinking loss
    reads as a positive rate. A sign change between start and end yields 0.

    Args:
        start_value: Value of the first period
        end_value: Value of the last period
        periods: Number of compounding periods between them

    Returns:
        Growth rate as a fraction (0.1 == 10%)
    """
    if start_value == 0 or periods < 1:
        return 0.0
    if start_value < 0 and end_value < 0:
        growth = (abs(end_value) / abs(start_value)) ** (1 / periods) - 1
        return -growth if end_value > start_value else growth
    if start_value > 0 and end_value > 0:
        return (end_value / start_value) ** (1 / periods) - 1
    return 0.0


def moving_average(values: Sequence[float], window: int = 3) -> List[float]:
    """
    Trailing moving average.

    The first window-1 entries are the raw values; there is no partial-window
    averaging.
    """
    series = pd.Series(values, dtype=float)
    averages = series.rolling(window).mean()
    averages.iloc[:window - 1] = series.iloc[:window - 1]
    return averages.tolist()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def round_cents(value: float) -> float:
    """Round a currency amount to two decimals."""
    return round(value, 2)
