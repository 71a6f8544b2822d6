"""
Unit tests for the forecasting primitives.
"""

import pytest
import sys
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from analysis.errors import InsufficientDataError
from analysis.forecasting import (
    ForecastResult, auto_forecast, exponential_forecast, linear_forecast, moving_average_forecast
)
from data.models import TimeSeriesPoint


def series(values, start_year=2024, start_month=1):
    points = []
    for i, value in enumerate(values):
        year = start_year + (start_month - 1 + i) // 12
        month = (start_month - 1 + i) % 12 + 1
        points.append(TimeSeriesPoint(period=f"{year}-{month:02d}", value=value))
    return points


class TestLinearForecast:
    """Test cases for linear_forecast."""

    def test_requires_three_points(self):
        """Test the minimum series length."""
        with pytest.raises(InsufficientDataError) as exc_info:
            linear_forecast(series([1, 2]))
        assert exc_info.value.required == 3
        assert exc_info.value.actual == 2

    def test_insufficient_data_is_value_error(self):
        with pytest.raises(ValueError):
            linear_forecast([])

    def test_exact_line(self):
        """Test values, model and zero-width intervals on an exact line."""
        result = linear_forecast(series([100, 110, 120, 130]), periods_ahead=2)

        assert isinstance(result, ForecastResult)
        assert [p.value for p in result.forecast] == [140.0, 150.0]
        assert result.forecast[0].lower_bound == pytest.approx(140.0)
        assert result.forecast[0].upper_bound == pytest.approx(140.0)
        assert result.model.type == "linear"
        assert result.model.slope == 10.0
        assert result.model.r_squared == 1.0
        assert result.model.trend == "increasing"
        assert result.model.trend_strength == "strong"

    def test_periods_roll_over_year_end(self):
        result = linear_forecast(series([1, 2, 3], start_year=2024, start_month=10), periods_ahead=3)
        assert [p.period for p in result.forecast] == ["2025-01", "2025-02", "2025-03"]

    def test_intervals_widen(self):
        result = linear_forecast(series([100, 140, 90, 160, 120]), periods_ahead=3)
        widths = [p.upper_bound - p.lower_bound for p in result.forecast]

        assert widths == sorted(widths)
        assert all(0 <= p.confidence <= 1 for p in result.forecast)

    def test_statistics(self):
        result = linear_forecast(series([100, 110, 120, 130]))

        assert result.statistics.mean == 115.0
        assert result.statistics.min == 100.0
        assert result.statistics.max == 130.0
        assert result.statistics.growth_rate == 30.0

    def test_growth_rate_from_zero(self):
        assert linear_forecast(series([0, 10, 20])).statistics.growth_rate == 0.0

    def test_flat_negative_series_is_stable(self):
        """Test that the 1% band scales with the magnitude of a negative mean."""
        assert linear_forecast(series([-100, -100.5, -101])).model.trend == "stable"
        assert linear_forecast(series([-100, -110, -120])).model.trend == "decreasing"


class TestMovingAverageForecast:
    """Test cases for moving_average_forecast."""

    def test_requires_window(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            moving_average_forecast(series([1, 2, 3]), window_size=4)
        assert exc_info.value.required == 4

    def test_flat_forecast(self):
        result = moving_average_forecast(series([10, 20, 30, 40]), window_size=2, periods_ahead=2)

        assert [p.value for p in result.forecast] == [35.0, 35.0]
        assert result.model.type == "moving_average"
        assert result.model.trend == "stable"
        # residuals against the trailing averages: 5, 5, 5
        assert result.statistics.std_dev == 5.0
        assert result.forecast[0].upper_bound == pytest.approx(35 + 1.96 * 5)


class TestExponentialForecast:
    """Test cases for exponential_forecast."""

    def test_requires_two_points(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            exponential_forecast(series([1]))
        assert exc_info.value.required == 2

    def test_smoothing(self):
        """Test the smoothed level and widening interval."""
        result = exponential_forecast(series([100, 200]), alpha=0.5, periods_ahead=2)

        assert result.forecast[0].value == 150.0
        assert result.model.type == "exponential"
        assert result.model.trend == "stable"
        first, second = result.forecast
        assert second.upper_bound - second.lower_bound > first.upper_bound - first.lower_bound

    def test_smoothing_recursion(self):
        """Test the smoothed level s_t = alpha * x_t + (1 - alpha) * s_(t-1) seeded with the first value."""
        result = exponential_forecast(series([100, 200, 400]), alpha=0.5, periods_ahead=1)

        # smoothed levels 100, 150, 275; in-sample errors 0, 50, 125
        assert result.forecast[0].value == 275.0
        assert result.forecast[0].upper_bound == pytest.approx(275 + 1.96 * (18125 / 3) ** 0.5, abs=0.01)

    def test_invalid_alpha(self):
        with pytest.raises(ValueError):
            exponential_forecast(series([1, 2]), alpha=0)


class TestAutoForecast:
    """Test cases for auto_forecast."""

    def test_picks_linear_for_good_fit(self):
        assert auto_forecast(series([10, 20, 30, 40])).model.type == "linear"

    def test_falls_back_to_exponential(self):
        assert auto_forecast(series([10, 50, 5, 45, 12])).model.type == "exponential"

    def test_requires_three_points(self):
        with pytest.raises(InsufficientDataError):
            auto_forecast(series([10, 20]))

    def test_to_dict(self):
        data = auto_forecast(series([10, 20, 30])).to_dict()
        assert data['forecast'][0]['period'] == "2024-04"
        assert data['historical'][0]['value'] == 10
