"""
Forecasting primitives over monthly time series.

Each method checks its minimum series length up front and raises
InsufficientDataError instead of producing degenerate output.
"""

import logging
import math
import numpy as np
import pandas as pd
from typing import Any, Dict, List, Sequence
from dataclasses import dataclass

from data.models import TimeSeriesPoint, to_plain
from analysis.errors import InsufficientDataError
from utils.calculations import linear_regression, mean, round_cents, standard_deviation


logger = logging.getLogger(__name__)

PREDICTION_Z = 1.96
INTERVAL_CONFIDENCE = 0.95

LINEAR_MIN_POINTS = 3
EXPONENTIAL_MIN_POINTS = 2


@dataclass(frozen=True)
class ForecastPoint:
    period: str
    value: float
    lower_bound: float
    upper_bound: float
    confidence: float


@dataclass(frozen=True)
class ForecastModel:
    type: str
    slope: float
    intercept: float
    r_squared: float
    trend: str
    trend_strength: str


@dataclass(frozen=True)
class ForecastStatistics:
    mean: float
    std_dev: float
    min: float
    max: float
    growth_rate: float


@dataclass(frozen=True)
class ForecastResult:
    historical: List[TimeSeriesPoint]
    forecast: List[ForecastPoint]
    model: ForecastModel
    statistics: ForecastStatistics

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


def _require(data: Sequence[TimeSeriesPoint], minimum: int, method: str):
    if len(data) < minimum:
        raise InsufficientDataError(required=minimum, actual=len(data), method=method)


def _require_positive(periods_ahead: int):
    if periods_ahead < 1:
        raise ValueError(f"periods_ahead must be at least 1, got {periods_ahead}")


def _future_periods(last_period: str, count: int) -> List[str]:
    """Calendar months following last_period (YYYY-MM)."""
    start = pd.Period(last_period[:7], freq='M')
    return [str(start + i) for i in range(1, count + 1)]


def _growth_rate(values: Sequence[float]) -> float:
    if len(values) < 2 or values[0] == 0:
        return 0.0
    return ((values[-1] - values[0]) / abs(values[0])) * 100


def _statistics(values: Sequence[float], std_dev: float) -> ForecastStatistics:
    return ForecastStatistics(
        mean=round_cents(mean(values)),
        std_dev=round_cents(std_dev),
        min=round_cents(min(values)),
        max=round_cents(max(values)),
        growth_rate=round(_growth_rate(values), 1),
    )


def _trend_label(slope: float, avg: float) -> str:
    """Direction of a slope, flat within 1% of the mean's magnitude."""
    if slope > 0.01 * abs(avg):
        return 'increasing'
    if slope < -0.01 * abs(avg):
        return 'decreasing'
    return 'stable'


def _trend_strength(r_squared: float) -> str:
    if abs(r_squared) > 0.7:
        return 'strong'
    if abs(r_squared) > 0.4:
        return 'moderate'
    return 'weak'


def linear_forecast(data: Sequence[TimeSeriesPoint], periods_ahead: int = 3) -> ForecastResult:
    """
    Linear regression forecast with 95% prediction intervals.

    Args:
        data: Monthly points, oldest first (at least 3)
        periods_ahead: Number of months to forecast

    Returns:
        ForecastResult

    Raises:
        InsufficientDataError: With fewer than 3 points
    """
    _require(data, LINEAR_MIN_POINTS, "linear forecast")
    _require_positive(periods_ahead)

    values = [p.value for p in data]
    n = len(values)
    regression = linear_regression(values)

    x = np.arange(n, dtype=float)
    x_mean = (n - 1) / 2
    sxx = float(np.sum((x - x_mean) ** 2))
    residuals = np.asarray(values, dtype=float) - (regression.intercept + regression.slope * x)
    std_error = math.sqrt(float(np.sum(residuals ** 2)) / (n - 2))

    forecast = []
    for i, period in enumerate(_future_periods(data[-1].period, periods_ahead), start=1):
        future_x = n + i - 1
        predicted = regression.predict(future_x)
        margin = PREDICTION_Z * std_error * math.sqrt(1 + 1 / n + ((future_x - x_mean) ** 2) / sxx)
        forecast.append(ForecastPoint(
            period=period,
            value=round_cents(predicted),
            lower_bound=round_cents(predicted - margin),
            upper_bound=round_cents(predicted + margin),
            confidence=INTERVAL_CONFIDENCE,
        ))

    avg = mean(values)
    return ForecastResult(
        historical=list(data),
        forecast=forecast,
        model=ForecastModel(
            type='linear',
            slope=round_cents(regression.slope),
            intercept=round_cents(regression.intercept),
            r_squared=round(regression.r_squared, 3),
            trend=_trend_label(regression.slope, avg),
            trend_strength=_trend_strength(regression.r_squared),
        ),
        statistics=_statistics(values, standard_deviation(values, sample=False)),
    )


def moving_average_forecast(data: Sequence[TimeSeriesPoint], window_size: int = 3,
                            periods_ahead: int = 3) -> ForecastResult:
    """
    Flat forecast at the last moving average.

    Raises:
        InsufficientDataError: With fewer points than the window size
    """
    if window_size < 1:
        raise ValueError(f"window_size must be at least 1, got {window_size}")
    _require(data, window_size, "moving average forecast")
    _require_positive(periods_ahead)

    values = [p.value for p in data]
    y = pd.Series(values, dtype=float)
    averages = y.rolling(window_size).mean()
    last_average = float(averages.iloc[-1])

    # residuals against the trailing average of each full window
    residuals = (y - averages).dropna()
    std_dev = math.sqrt(float((residuals ** 2).mean()))

    forecast = [
        ForecastPoint(
            period=period,
            value=round_cents(last_average),
            lower_bound=round_cents(last_average - PREDICTION_Z * std_dev),
            upper_bound=round_cents(last_average + PREDICTION_Z * std_dev),
            confidence=INTERVAL_CONFIDENCE,
        )
        for period in _future_periods(data[-1].period, periods_ahead)
    ]

    return ForecastResult(
        historical=list(data),
        forecast=forecast,
        model=ForecastModel(
            type='moving_average',
            slope=0.0,
            intercept=last_average,
            r_squared=0.0,
            trend='stable',
            trend_strength='weak',
        ),
        statistics=_statistics(values, std_dev),
    )


def exponential_forecast(data: Sequence[TimeSeriesPoint], alpha: float = 0.3,
                         periods_ahead: int = 3) -> ForecastResult:
    """
    Simple exponential smoothing with intervals widening by sqrt(horizon).

    Args:
        data: Monthly points, oldest first (at least 2)
        alpha: Smoothing factor in (0, 1]
        periods_ahead: Number of months to forecast

    Raises:
        InsufficientDataError: With fewer than 2 points
    """
    if not 0 < alpha <= 1:
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    _require(data, EXPONENTIAL_MIN_POINTS, "exponential smoothing forecast")
    _require_positive(periods_ahead)

    values = [p.value for p in data]
    y = pd.Series(values, dtype=float)
    smoothed = y.ewm(alpha=alpha, adjust=False).mean()
    last_smoothed = float(smoothed.iloc[-1])

    errors = y - smoothed
    std_error = math.sqrt(float((errors ** 2).mean()))

    forecast = []
    for i, period in enumerate(_future_periods(data[-1].period, periods_ahead), start=1):
        margin = PREDICTION_Z * std_error * math.sqrt(i)
        forecast.append(ForecastPoint(
            period=period,
            value=round_cents(last_smoothed),
            lower_bound=round_cents(last_smoothed - margin),
            upper_bound=round_cents(last_smoothed + margin),
            confidence=INTERVAL_CONFIDENCE,
        ))

    avg = mean(values)
    if last_smoothed > avg:
        trend = 'increasing'
    elif last_smoothed < avg:
        trend = 'decreasing'
    else:
        trend = 'stable'

    return ForecastResult(
        historical=list(data),
        forecast=forecast,
        model=ForecastModel(
            type='exponential',
            slope=0.0,
            intercept=last_smoothed,
            r_squared=0.0,
            trend=trend,
            trend_strength='moderate',
        ),
        statistics=_statistics(values, standard_deviation(values, sample=False)),
    )


def auto_forecast(data: Sequence[TimeSeriesPoint], periods_ahead: int = 3) -> ForecastResult:
    """
    Linear forecast when it explains the series well (R² > 0.5), exponential
    smoothing otherwise.

    Raises:
        InsufficientDataError: With fewer than 3 points
    """
    linear = linear_forecast(data, periods_ahead)
    if linear.model.r_squared > 0.5:
        return linear
    logger.debug(f"Linear fit too weak (R²={linear.model.r_squared}), using exponential smoothing")
    return exponential_forecast(data, 0.3, periods_ahead)
