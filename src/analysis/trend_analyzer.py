"""
Multi-period trend analysis for accounts, cost centers and the P&L.

Every account and cost center gets one point per supplied period; periods
without bookings contribute zero. Each series is then regressed, classified,
screened for anomalies and forecast one period ahead.
"""

import logging
import math
import pandas as pd
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.settings import Settings
from data.models import Period, bookings_to_frame
from analysis.alert_generator import AlertGenerator
from analysis.errors import InsufficientDataError
from analysis.trend_models import (
    AccountTrend, CostCenterTrend, ForecastMethod, MarginTrend, NextPeriodForecast,
    PeriodAmount, PnlPeriod, PnlTrend, TrendAnalysisResult, TrendAnomaly, TrendDirection,
    TrendMeta
)
from utils.calculations import (
    calculate_cagr, clamp, coefficient_of_variation,
    linear_regression, mean, moving_average, standard_deviation
)


def classify_trend(cv: float, std_dev: float, slope: float,
                   volatility_cv: float = 0.5, stable_factor: float = 0.1) -> TrendDirection:
    """
    Classify a series from its volatility and regression slope.

    Args:
        cv: Coefficient of variation
        std_dev: Standard deviation of the series
        slope: Regression slope
        volatility_cv: CV above which the series counts as volatile
        stable_factor: Slopes below this share of the std count as flat

    Returns:
        TrendDirection
    """
    if cv > volatility_cv:
        return TrendDirection.VOLATILE
    # A flat line has zero std as well, so slope == 0 needs its own check
    if slope == 0 or abs(slope) < std_dev * stable_factor:
        return TrendDirection.STABLE
    return TrendDirection.RISING if slope > 0 else TrendDirection.FALLING


def forecast_next_period(values: Sequence[float], method: ForecastMethod = ForecastMethod.LINEAR,
                         window: int = 3, moving_average_confidence: float = 0.6) -> NextPeriodForecast:
    """
    One-step-ahead forecast of a series.

    Exponential forecasting regresses in log space and therefore needs every
    value to be strictly positive; otherwise it falls back to linear.

    Args:
        values: Series values, oldest first
        method: Requested forecast method
        window: Moving average window
        moving_average_confidence: Fixed confidence of the moving average method

    Returns:
        NextPeriodForecast with confidence in [0, 1]
    """
    n = len(values)
    if n == 0:
        return NextPeriodForecast(next_period=0.0, method=method, confidence=0.0)

    if method == ForecastMethod.EXPONENTIAL and all(v > 0 for v in values):
        regression = linear_regression([math.log(v) for v in values])
        return NextPeriodForecast(
            next_period=math.exp(regression.predict(n)),
            method=ForecastMethod.EXPONENTIAL,
            confidence=clamp(regression.r_squared, 0.0, 1.0),
        )

    if method == ForecastMethod.MOVING_AVERAGE:
        return NextPeriodForecast(
            next_period=moving_average(values, window)[-1],
            method=ForecastMethod.MOVING_AVERAGE,
            confidence=clamp(moving_average_confidence, 0.0, 1.0),
        )

    regression = linear_regression(values)
    return NextPeriodForecast(
        next_period=regression.predict(n),
        method=ForecastMethod.LINEAR,
        confidence=clamp(regression.r_squared, 0.0, 1.0),
    )


def detect_anomalies(labels: Sequence[str], values: Sequence[float],
                     sigma: float = 2.0) -> List[TrendAnomaly]:
    """
    Points further than sigma standard deviations from the regression line.

    The threshold uses the population standard deviation of the series.
    Series shorter than three points never produce anomalies.
    """
    if len(values) < 3:
        return []

    regression = linear_regression(values)
    std_dev = standard_deviation(values, sample=False)
    if std_dev == 0:
        return []

    anomalies = []
    for i, (label, actual) in enumerate(zip(labels, values)):
        expected = regression.predict(i)
        deviation = abs(actual - expected)
        if deviation > sigma * std_dev:
            anomalies.append(TrendAnomaly(period=label, expected=expected,
                                          actual=actual, deviation=deviation))
    return anomalies


class TrendAnalyzer:
    """N-period trend engine."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.logger = logging.getLogger(__name__)
        self.volatility_cv = float(self.settings.get_trend_setting("volatility_cv", 0.5))
        self.stable_factor = float(self.settings.get_trend_setting("stable_slope_factor", 0.1))
        self.anomaly_sigma = float(self.settings.get_trend_setting("anomaly_sigma", 2.0))
        self.window = int(self.settings.get_trend_setting("moving_average_window", 3))
        self.ma_confidence = float(self.settings.get_trend_setting("moving_average_confidence", 0.6))
        self.account_limit = int(self.settings.get_trend_setting("account_limit", 50))
        self.cost_center_limit = int(self.settings.get_trend_setting("cost_center_limit", 20))

    def analyze(self, periods: Sequence[Period]) -> TrendAnalysisResult:
        """
        Analyze an ordered list of periods, oldest first.

        Args:
            periods: Periods in chronological order

        Returns:
            TrendAnalysisResult with P&L, account and cost center trends and alerts

        Raises:
            InsufficientDataError: If no period is supplied
        """
        if not periods:
            raise InsufficientDataError(required=1, actual=0, method="trend analysis")

        labels = [p.label for p in periods]
        self.logger.info(f"Starting trend analysis over {len(periods)} periods: {labels}")

        pnl_trend = self._analyze_pnl(periods)
        combined = self._combine_periods(periods)

        account_trends = [
            AccountTrend(account=int(key[0]), account_name=key[1], **stats)
            for key, stats in self._series_by(combined, ['account', 'account_name'], labels)
        ]
        cost_center_trends = [
            CostCenterTrend(cost_center=key, **stats)
            for key, stats in self._series_by(combined, 'cost_center', labels)
        ]

        account_trends.sort(key=lambda t: abs(t.cagr), reverse=True)
        cost_center_trends.sort(key=lambda t: abs(t.cagr), reverse=True)

        alerts = AlertGenerator(self.settings).generate(account_trends, cost_center_trends, pnl_trend)

        result = TrendAnalysisResult(
            meta=TrendMeta(
                period_count=len(periods),
                period_labels=labels,
                total_bookings=sum(len(p.bookings) for p in periods),
            ),
            pnl_trend=pnl_trend,
            account_trends=account_trends[:self.account_limit],
            cost_center_trends=cost_center_trends[:self.cost_center_limit],
            alerts=alerts,
        )

        self.logger.info(
            f"Trend analysis completed: {len(account_trends)} account series, "
            f"{len(cost_center_trends)} cost center series, {len(alerts)} alerts"
        )
        return result

    def _analyze_pnl(self, periods: Sequence[Period]) -> PnlTrend:
        pnl_periods = []
        for period in periods:
            totals = period.totals
            margin = (totals.result / totals.revenue) * 100 if totals.revenue != 0 else 0.0
            pnl_periods.append(PnlPeriod(
                label=period.label,
                revenue=totals.revenue,
                expenses=totals.expenses,
                result=totals.result,
                margin=margin,
            ))

        revenues = [p.revenue for p in pnl_periods]
        expenses = [p.expenses for p in pnl_periods]
        margins = [p.margin for p in pnl_periods]
        compounding = len(periods) - 1

        revenue_std = standard_deviation(revenues)
        revenue_trend = classify_trend(
            coefficient_of_variation(revenue_std, mean(revenues)), revenue_std,
            linear_regression(revenues).slope, self.volatility_cv, self.stable_factor,
        )

        if margins[-1] > margins[0]:
            margin_trend = MarginTrend.IMPROVING
        elif margins[-1] < margins[0]:
            margin_trend = MarginTrend.DECLINING
        else:
            margin_trend = MarginTrend.STABLE

        return PnlTrend(
            periods=pnl_periods,
            revenue_trend=revenue_trend,
            margin_trend=margin_trend,
            revenue_cagr=calculate_cagr(revenues[0], revenues[-1], compounding),
            expense_cagr=calculate_cagr(expenses[0], expenses[-1], compounding),
        )

    def _combine_periods(self, periods: Sequence[Period]) -> pd.DataFrame:
        """All bookings in one frame, tagged with their period index."""
        frames = [
            bookings_to_frame(period.bookings).assign(period_index=i)
            for i, period in enumerate(periods)
            if period.bookings
        ]
        if not frames:
            return bookings_to_frame([])
        combined = pd.concat(frames, ignore_index=True)
        combined['amount'] = combined['amount'].astype(float)
        return combined

    def _series_by(self, combined: pd.DataFrame, by, labels: List[str]) -> List[Tuple[Any, Dict[str, Any]]]:
        """Gap-filled series per key with their statistics."""
        if combined.empty:
            return []

        columns = list(range(len(labels)))
        amounts = combined.pivot_table(
            index=by, columns='period_index', values='amount', aggfunc='sum', fill_value=0.0
        ).reindex(columns=columns, fill_value=0.0)
        counts = combined.pivot_table(
            index=by, columns='period_index', values='amount', aggfunc='count', fill_value=0
        ).reindex(index=amounts.index, columns=columns, fill_value=0)

        series = []
        for key, amount_row, count_row in zip(amounts.index, amounts.to_numpy(), counts.to_numpy()):
            points = [
                PeriodAmount(label=label, amount=float(amount), booking_count=int(count))
                for label, amount, count in zip(labels, amount_row, count_row)
            ]
            series.append((key, self._series_statistics(points)))
        return series

    def _series_statistics(self, points: List[PeriodAmount]) -> Dict[str, Any]:
        values = [p.amount for p in points]
        labels = [p.label for p in points]

        std_dev = standard_deviation(values)
        avg = mean(values)
        cv = coefficient_of_variation(std_dev, avg)
        regression = linear_regression(values)

        method = ForecastMethod.EXPONENTIAL if all(v > 0 for v in values) else ForecastMethod.LINEAR

        return {
            'periods': points,
            'trend': classify_trend(cv, std_dev, regression.slope, self.volatility_cv, self.stable_factor),
            'cagr': calculate_cagr(values[0], values[-1], len(values) - 1),
            'mean': avg,
            'standard_deviation': std_dev,
            'coefficient_of_variation': cv,
            'regression': regression,
            'moving_average': moving_average(values, self.window),
            'forecast': forecast_next_period(values, method, self.window, self.ma_confidence),
            'anomalies': detect_anomalies(labels, values, self.anomaly_sigma),
        }


def analyze_trends(periods: Sequence[Period], settings: Optional[Settings] = None) -> TrendAnalysisResult:
    """Run the trend engine over chronologically ordered periods."""
    return TrendAnalyzer(settings).analyze(periods)
