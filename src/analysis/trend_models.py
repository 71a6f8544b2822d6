"""
Result types of the trend engine and its alerts.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum

from data.models import to_plain
from utils.calculations import RegressionResult


class TrendDirection(Enum):
    """Shape of a time series."""
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"
    VOLATILE = "volatile"


class MarginTrend(Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class ForecastMethod(Enum):
    """Methods of the one-step-ahead forecast."""
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    MOVING_AVERAGE = "moving_average"


@dataclass(frozen=True)
class PeriodAmount:
    label: str
    amount: float
    booking_count: int = 0


@dataclass(frozen=True)
class NextPeriodForecast:
    next_period: float
    method: ForecastMethod
    confidence: float


@dataclass(frozen=True)
class TrendAnomaly:
    """A period whose value is far off the regression line."""
    period: str
    expected: float
    actual: float
    deviation: float


@dataclass(frozen=True)
class SeriesTrend:
    """Statistics of one gap-filled time series."""
    periods: List[PeriodAmount]
    trend: TrendDirection
    cagr: float
    mean: float
    standard_deviation: float
    coefficient_of_variation: float
    regression: RegressionResult
    moving_average: List[float]
    forecast: NextPeriodForecast
    anomalies: List[TrendAnomaly]

    @property
    def values(self) -> List[float]:
        return [p.amount for p in self.periods]


@dataclass(frozen=True)
class AccountTrend(SeriesTrend):
    account: int
    account_name: str


@dataclass(frozen=True)
class CostCenterTrend(SeriesTrend):
    cost_center: str


@dataclass(frozen=True)
class PnlPeriod:
    label: str
    revenue: float
    expenses: float
    result: float
    margin: float  # result / revenue in percent


@dataclass(frozen=True)
class PnlTrend:
    periods: List[PnlPeriod]
    revenue_trend: TrendDirection
    margin_trend: MarginTrend
    revenue_cagr: float
    expense_cagr: float


@dataclass(frozen=True)
class TrendMeta:
    period_count: int
    period_labels: List[str]
    total_bookings: int


class AlertType(Enum):
    """Kinds of trend alerts."""
    TREND_BREAK = "trend_break"
    ACCELERATION = "acceleration"
    DECELERATION = "deceleration"
    NEW_VOLATILITY = "new_volatility"
    THRESHOLD_BREACH = "threshold_breach"


class AlertSeverity(Enum):
    """Severity levels, most urgent first."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.INFO: 2,
}


@dataclass(frozen=True)
class TrendAlert:
    """A classified observation with its triggering metrics."""
    type: AlertType
    severity: AlertSeverity
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    account: Optional[int] = None
    account_name: Optional[str] = None
    cost_center: Optional[str] = None


@dataclass(frozen=True)
class TrendAnalysisResult:
    meta: TrendMeta
    pnl_trend: PnlTrend
    account_trends: List[AccountTrend]
    cost_center_trends: List[CostCenterTrend]
    alerts: List[TrendAlert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)
