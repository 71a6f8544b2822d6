"""
Rolling forecast combining posted actuals with seasonal trend projections.

Revenue and expense series are built from absolute monthly amounts. Months
before the first open month (as_of) are actuals; forecasting starts at
as_of and runs for the configured horizon.
"""

import logging
import pandas as pd
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field

from config.settings import Settings
from config.account_mapping import REVENUE, EXPENSE
from data.models import Booking, bookings_to_frame, to_plain
from utils.calculations import (
    clamp, linear_regression, mean, round_cents, round_half_up, standard_deviation
)


METHODS = ('auto', 'seasonal', 'trend', 'hybrid')
CONFIDENCE_LEVELS = (0.9, 0.95)
Z_SCORES = {0.95: 1.96, 0.9: 1.645}
YEAR_END_Z = 1.96
STRONG_TREND_CONFIDENCE = 0.5
NEUTRAL_SEASONALITY = [1.0] * 12


@dataclass
class RollingForecastConfig:
    """Horizon, method and confidence of a rolling forecast run."""
    forecast_horizon: int = 12
    seasonality_detection: bool = True
    confidence_level: float = 0.95
    method: str = 'hybrid'
    as_of: Optional[str] = None  # first open month, YYYY-MM

    def __post_init__(self):
        if int(self.forecast_horizon) < 1:
            raise ValueError(f"forecast_horizon must be at least 1, got {self.forecast_horizon}")
        if self.confidence_level not in CONFIDENCE_LEVELS:
            raise ValueError(f"confidence_level must be 0.90 or 0.95, got {self.confidence_level}")
        if self.method not in METHODS:
            raise ValueError(f"method must be one of {', '.join(METHODS)}, got {self.method!r}")
        if self.as_of is not None:
            try:
                self.as_of = str(pd.Period(str(self.as_of)[:7], freq='M'))
            except ValueError as e:
                raise ValueError(f"as_of must be a YYYY-MM month, got {self.as_of!r}") from e

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "RollingForecastConfig":
        """Build a config from settings defaults, applying keyword overrides."""
        values = {
            'forecast_horizon': int(settings.get_forecast_setting('horizon', 12)),
            'seasonality_detection': bool(settings.get_forecast_setting('seasonality_detection', True)),
            'confidence_level': float(settings.get_forecast_setting('confidence_level', 0.95)),
            'method': settings.get_forecast_setting('method', 'hybrid'),
        }
        values.update(overrides)
        return cls(**values)

    @property
    def projection_method(self) -> str:
        """Method actually applied; auto runs the hybrid projection."""
        return 'hybrid' if self.method == 'auto' else self.method


@dataclass(frozen=True)
class MonthlyDataPoint:
    period: str
    forecast: float
    lower_bound: float
    upper_bound: float
    is_actual: bool = False
    seasonal_index: float = 1.0
    actual: Optional[float] = None


@dataclass(frozen=True)
class AccountForecast:
    """Forecast of one revenue or expense account."""
    account: int
    account_name: str
    category: str
    monthly_data: List[MonthlyDataPoint]
    annual_projection: float
    annual_actual: float
    remaining_forecast: float
    trend: str
    seasonality: List[float]
    confidence: float


@dataclass(frozen=True)
class ForecastInsight:
    type: str  # trend | seasonality | risk | opportunity
    severity: str  # info | warning | positive
    title: str
    description: str
    account: Optional[int] = None
    impact: Optional[float] = None


@dataclass(frozen=True)
class AnnualProjection:
    total_revenue: float
    total_expenses: float
    projected_result: float
    actual_ytd: float
    forecast_remaining: float
    achievement_pct: int


@dataclass
class TimelineMonth:
    period: str
    revenue: float
    expenses: float
    result: float
    is_actual: bool
    cumulative_revenue: float = 0.0
    cumulative_expenses: float = 0.0
    cumulative_result: float = 0.0


@dataclass(frozen=True)
class YearEndRange:
    optimistic: float
    expected: float
    pessimistic: float


@dataclass(frozen=True)
class RollingForecastResult:
    config: RollingForecastConfig
    as_of: str
    annual_projection: AnnualProjection
    monthly_timeline: List[TimelineMonth]
    revenue_forecast: List[MonthlyDataPoint]
    expense_forecast: List[MonthlyDataPoint]
    account_forecasts: List[AccountForecast]
    insights: List[ForecastInsight] = field(default_factory=list)
    year_end_range: Optional[YearEndRange] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


def seasonal_indices(monthly_values: Dict[str, float]) -> List[float]:
    """
    Seasonal index per calendar month (1.0 = average month).

    Args:
        monthly_values: Amount per YYYY-MM period

    Returns:
        Twelve indices, January first. Months without data stay at 1.0, as do
        all months when the overall average is not positive.
    """
    if not monthly_values:
        return list(NEUTRAL_SEASONALITY)

    series = pd.Series(monthly_values, dtype=float)
    calendar_month = [int(period[5:7]) for period in series.index]
    month_averages = series.groupby(calendar_month).mean()
    overall = series.mean()
    if overall <= 0:
        return list(NEUTRAL_SEASONALITY)

    indices = list(NEUTRAL_SEASONALITY)
    for month, average in month_averages.items():
        indices[int(month) - 1] = float(average / overall)
    return indices


def confidence_margin(values: Sequence[float], confidence_level: float, step: int) -> float:
    """Interval half-width for forecast step (1-based), widening 10% per step."""
    if len(values) < 2:
        return 0.0
    z = Z_SCORES.get(confidence_level, Z_SCORES[0.9])
    return z * standard_deviation(values, sample=False) * (1 + step * 0.1)


def project_months(history: Sequence[float], start: pd.Period, horizon: int, method: str,
                   indices: Sequence[float], confidence_level: float) -> Tuple[List[MonthlyDataPoint], List[float]]:
    """
    Project a monthly series forward.

    Args:
        history: Observed monthly values, oldest first
        start: First forecast month
        horizon: Number of months to forecast
        method: seasonal, trend or hybrid
        indices: Twelve seasonal indices
        confidence_level: 0.90 or 0.95

    Returns:
        Tuple of rounded forecast points and the unrounded forecast values
    """
    regression = linear_regression(history)
    avg = mean(history)
    n = len(history)

    points = []
    raw_values = []
    for i in range(1, horizon + 1):
        period = start + (i - 1)
        index = indices[period.month - 1]
        trend_value = regression.predict(n + i - 1)

        if method == 'seasonal':
            value = avg * index
        elif method == 'trend':
            value = trend_value
        else:
            value = max(0.0, trend_value * index)

        margin = confidence_margin(history, confidence_level, i)
        points.append(MonthlyDataPoint(
            period=str(period),
            forecast=round_cents(value),
            lower_bound=round_cents(max(0.0, value - margin)),
            upper_bound=round_cents(value + margin),
            seasonal_index=round(index, 2),
        ))
        raw_values.append(value)

    return points, raw_values


class RollingForecaster:
    """Rolling year-end forecast over revenue, expense and account series."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.logger = logging.getLogger(__name__)
        self.classifier = self.settings.account_classifier
        self.year_end_uncertainty = float(self.settings.get_forecast_setting("year_end_uncertainty", 0.15))
        self.personnel_keywords = self.settings.get_personnel_keywords()

    def forecast(self, current_bookings: Sequence[Booking], historical_bookings: Sequence[Booking] = (),
                 config: Optional[RollingForecastConfig] = None) -> RollingForecastResult:
        """
        Generate the rolling forecast.

        Args:
            current_bookings: Recent bookings feeding the projection; only months
                of the as_of year before as_of count as year-to-date actuals
            historical_bookings: Earlier bookings, used for seasonality only
            config: Forecast configuration; settings defaults when omitted

        Returns:
            RollingForecastResult
        """
        config = config or RollingForecastConfig.from_settings(self.settings)
        method = config.projection_method

        current = self._prepare(current_bookings)
        combined = self._prepare(list(current_bookings) + list(historical_bookings))
        as_of = self._resolve_as_of(config, current)

        self.logger.info(
            f"Starting rolling forecast as of {as_of}: {len(current_bookings)} current bookings, "
            f"{len(historical_bookings)} historical bookings, method {method}"
        )

        actual = self._monthly_by_category(current)
        all_months = self._monthly_by_category(combined)

        forecasts = {}
        remaining = {}
        for category in (REVENUE, EXPENSE):
            indices = (seasonal_indices(all_months[category]) if config.seasonality_detection
                       else list(NEUTRAL_SEASONALITY))
            points, raw_values = project_months(
                list(actual[category].values()), as_of, config.forecast_horizon,
                method, indices, config.confidence_level,
            )
            forecasts[category] = points
            remaining[category] = self._sum_in_year(points, raw_values, as_of.year)

        timeline = self._build_timeline(actual, forecasts, as_of)

        ytd_revenue = self._year_to_date(actual[REVENUE], as_of)
        ytd_expenses = self._year_to_date(actual[EXPENSE], as_of)
        total_revenue = ytd_revenue + remaining[REVENUE]
        total_expenses = ytd_expenses + remaining[EXPENSE]
        projected_result = total_revenue - total_expenses
        actual_ytd = ytd_revenue - ytd_expenses

        projection = AnnualProjection(
            total_revenue=round_cents(total_revenue),
            total_expenses=round_cents(total_expenses),
            projected_result=round_cents(projected_result),
            actual_ytd=round_cents(actual_ytd),
            forecast_remaining=round_cents(projected_result - actual_ytd),
            achievement_pct=round_half_up((as_of.month - 1) / 12 * 100),
        )

        account_forecasts = self._forecast_accounts(current, as_of, config)
        insights = self._generate_insights(account_forecasts)

        spread = YEAR_END_Z * self.year_end_uncertainty * total_revenue
        year_end_range = YearEndRange(
            optimistic=round_cents(projected_result + spread),
            expected=round_cents(projected_result),
            pessimistic=round_cents(projected_result - spread),
        )

        self.logger.info(
            f"Rolling forecast completed: projected result {projection.projected_result:,.2f}, "
            f"{len(account_forecasts)} account forecasts, {len(insights)} insights"
        )

        return RollingForecastResult(
            config=config,
            as_of=str(as_of),
            annual_projection=projection,
            monthly_timeline=timeline,
            revenue_forecast=forecasts[REVENUE],
            expense_forecast=forecasts[EXPENSE],
            account_forecasts=account_forecasts,
            insights=insights,
            year_end_range=year_end_range,
        )

    def _prepare(self, bookings: Sequence[Booking]) -> pd.DataFrame:
        """Booking frame with month, account class and absolute value columns."""
        frame = bookings_to_frame(bookings)
        frame['month'] = frame['posting_date'].map(lambda d: d.strftime("%Y-%m")).astype(object)
        frame['category'] = frame['account'].map(self.classifier.classify).astype(object)
        frame['value'] = frame['amount'].abs()
        return frame[frame['category'].isin([REVENUE, EXPENSE])]

    def _resolve_as_of(self, config: RollingForecastConfig, current: pd.DataFrame) -> pd.Period:
        if config.as_of is not None:
            return pd.Period(config.as_of, freq='M')
        if current.empty:
            return pd.Period(date.today().strftime("%Y-%m"), freq='M')
        return pd.Period(current['month'].max(), freq='M') + 1

    def _monthly_by_category(self, frame: pd.DataFrame) -> Dict[str, Dict[str, float]]:
        """Absolute monthly totals per class; months posted in either class appear in both."""
        if frame.empty:
            return {REVENUE: {}, EXPENSE: {}}

        table = (
            frame.groupby(['month', 'category'])['value'].sum()
            .unstack(fill_value=0.0)
            .reindex(columns=[REVENUE, EXPENSE], fill_value=0.0)
            .sort_index()
        )
        return {
            category: {month: float(value) for month, value in table[category].items()}
            for category in (REVENUE, EXPENSE)
        }

    def _sum_in_year(self, points: Sequence[MonthlyDataPoint], raw_values: Sequence[float], year: int) -> float:
        return sum((value for point, value in zip(points, raw_values) if int(point.period[:4]) == year), 0.0)

    def _year_to_date(self, values_by_month: Dict[str, float], as_of: pd.Period) -> float:
        """Actuals of the as_of year posted before as_of."""
        first_month = str(pd.Period(year=as_of.year, month=1, freq='M'))
        return sum((value for month, value in values_by_month.items()
                    if first_month <= month < str(as_of)), 0.0)

    def _build_timeline(self, actual: Dict[str, Dict[str, float]],
                        forecasts: Dict[str, List[MonthlyDataPoint]], as_of: pd.Period) -> List[TimelineMonth]:
        """Twelve months of the as_of year with cumulative sums."""
        forecast_values = {
            category: {point.period: point.forecast for point in points}
            for category, points in forecasts.items()
        }

        timeline = []
        cumulative_revenue = 0.0
        cumulative_expenses = 0.0
        for month in range(1, 13):
            period = str(pd.Period(year=as_of.year, month=month, freq='M'))
            is_actual = month < as_of.month
            source = actual if is_actual else forecast_values
            revenue = source[REVENUE].get(period, 0.0)
            expenses = source[EXPENSE].get(period, 0.0)

            cumulative_revenue += revenue
            cumulative_expenses += expenses
            timeline.append(TimelineMonth(
                period=period,
                revenue=round_cents(revenue),
                expenses=round_cents(expenses),
                result=round_cents(revenue - expenses),
                is_actual=is_actual,
                cumulative_revenue=round_cents(cumulative_revenue),
                cumulative_expenses=round_cents(cumulative_expenses),
                cumulative_result=round_cents(cumulative_revenue - cumulative_expenses),
            ))
        return timeline

    def _forecast_accounts(self, current: pd.DataFrame, as_of: pd.Period,
                           config: RollingForecastConfig) -> List[AccountForecast]:
        """Forecast every revenue and expense account of the current bookings."""
        if current.empty:
            return []

        names = current.groupby('account')['account_name'].first()
        categories = current.groupby('account')['category'].first()
        monthly = current.groupby(['account', 'month'])['value'].sum()

        forecasts = []
        for account in sorted(names.index):
            values_by_month = {month: float(v) for month, v in monthly.loc[account].sort_index().items()}
            values = list(values_by_month.values())

            regression = linear_regression(values)
            indices = (seasonal_indices(values_by_month) if config.seasonality_detection
                       else list(NEUTRAL_SEASONALITY))
            points, raw_values = project_months(
                values, as_of, config.forecast_horizon, config.projection_method,
                indices, config.confidence_level,
            )
            points = [
                MonthlyDataPoint(
                    period=p.period, forecast=p.forecast, lower_bound=p.lower_bound,
                    upper_bound=p.upper_bound, seasonal_index=p.seasonal_index,
                    actual=values_by_month.get(p.period),
                )
                for p in points
            ]

            annual_actual = self._year_to_date(values_by_month, as_of)
            remaining_forecast = self._sum_in_year(points, raw_values, as_of.year)
            monthly_mean = mean(values)
            if regression.slope > 0.01 * monthly_mean:
                trend = 'increasing'
            elif regression.slope < -0.01 * monthly_mean:
                trend = 'decreasing'
            else:
                trend = 'stable'

            forecasts.append(AccountForecast(
                account=int(account),
                account_name=str(names.loc[account]),
                category=categories.loc[account],
                monthly_data=points,
                annual_projection=round_cents(annual_actual + remaining_forecast),
                annual_actual=round_cents(annual_actual),
                remaining_forecast=round_cents(remaining_forecast),
                trend=trend,
                seasonality=[round(i, 2) for i in indices],
                confidence=clamp(regression.r_squared, 0.0, 1.0),
            ))

        forecasts.sort(key=lambda f: f.annual_projection, reverse=True)
        return forecasts

    def _is_personnel(self, forecast: AccountForecast) -> bool:
        name = forecast.account_name.lower()
        return any(keyword in name for keyword in self.personnel_keywords)

    def _generate_insights(self, forecasts: Sequence[AccountForecast]) -> List[ForecastInsight]:
        insights = []

        for forecast in forecasts:
            if forecast.confidence <= STRONG_TREND_CONFIDENCE or forecast.trend == 'stable':
                continue
            is_revenue = forecast.category == REVENUE
            if forecast.trend == 'increasing':
                insights.append(ForecastInsight(
                    type='trend',
                    severity='positive' if is_revenue else 'warning',
                    title=f"{forecast.account_name} {'growth' if is_revenue else 'increase'}",
                    description=f"{forecast.account_name} shows a strong upward trend.",
                    account=forecast.account,
                    impact=forecast.remaining_forecast,
                ))
            else:
                insights.append(ForecastInsight(
                    type='trend',
                    severity='warning' if is_revenue else 'positive',
                    title=f"{forecast.account_name} {'decline' if is_revenue else 'reduction'}",
                    description=f"{forecast.account_name} shows a downward trend.",
                    account=forecast.account,
                    impact=-forecast.remaining_forecast,
                ))

        personnel = [f for f in forecasts if f.category == EXPENSE and self._is_personnel(f)]
        revenue = [f for f in forecasts if f.category == REVENUE]
        if personnel and revenue:
            personnel_remaining = sum(f.remaining_forecast for f in personnel)
            revenue_remaining = sum(f.remaining_forecast for f in revenue)
            personnel_growth = personnel_remaining / (sum(f.annual_actual for f in personnel) or 1) * 100
            revenue_growth = revenue_remaining / (sum(f.annual_actual for f in revenue) or 1) * 100
            if personnel_growth > revenue_growth:
                insights.append(ForecastInsight(
                    type='risk',
                    severity='warning',
                    title="Personnel costs growing faster than revenue",
                    description=(
                        f"Personnel costs grow by {personnel_growth:.1f}% of their actuals "
                        f"against {revenue_growth:.1f}% for revenue."
                    ),
                    impact=round_cents(personnel_remaining - revenue_remaining),
                ))

        opportunities = [
            f for f in revenue
            if f.trend == 'increasing' and f.confidence > STRONG_TREND_CONFIDENCE
        ]
        if opportunities:
            insights.append(ForecastInsight(
                type='opportunity',
                severity='positive',
                title="Revenue growth detected",
                description=f"{len(opportunities)} revenue accounts show strong growth.",
                impact=round_cents(sum(f.remaining_forecast for f in opportunities)),
            ))

        return insights


def generate_rolling_forecast(current_bookings: Sequence[Booking], historical_bookings: Sequence[Booking] = (),
                              config: Optional[RollingForecastConfig] = None,
                              settings: Optional[Settings] = None) -> RollingForecastResult:
    """Run the rolling forecast over current and historical bookings."""
    return RollingForecaster(settings).forecast(current_bookings, historical_bookings, config)
