"""
Alert generation over trend engine output.

Turns account and cost center series plus the P&L trend into a severity
ranked list of alerts: trend breaks, new volatility, anomaly threshold
breaches and portfolio-level revenue and margin warnings.
"""

import logging
from typing import List, Optional, Sequence

from config.settings import Settings
from analysis.trend_models import (
    AccountTrend, AlertSeverity, AlertType, CostCenterTrend, MarginTrend,
    PnlTrend, SeriesTrend, TrendAlert, TrendDirection
)
from utils.calculations import linear_regression


class AlertGenerator:
    """Classifies notable changes found by the trend engine."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.logger = logging.getLogger(__name__)
        self.volatility_cv = float(self.settings.get_trend_setting("volatility_cv", 0.5))
        self.critical_cagr = float(self.settings.get_trend_setting("critical_cagr", 0.2))
        self.revenue_critical_cagr = float(self.settings.get_trend_setting("revenue_critical_cagr", -0.1))

    def generate(self, account_trends: Sequence[AccountTrend],
                 cost_center_trends: Sequence[CostCenterTrend],
                 pnl_trend: PnlTrend) -> List[TrendAlert]:
        """
        Generate alerts for all series and the P&L.

        Args:
            account_trends: Account series
            cost_center_trends: Cost center series
            pnl_trend: Portfolio P&L trend

        Returns:
            Alerts sorted critical first, then warning, then info
        """
        alerts = []

        for trend in account_trends:
            subject = f"account {trend.account}"
            alerts.extend(self._series_alerts(
                trend, subject, account=trend.account, account_name=trend.account_name
            ))

        for trend in cost_center_trends:
            subject = f"cost center {trend.cost_center or '(none)'}"
            alerts.extend(self._series_alerts(trend, subject, cost_center=trend.cost_center))

        alerts.extend(self._portfolio_alerts(pnl_trend))

        alerts.sort(key=lambda a: a.severity.rank)
        self.logger.info(f"Generated {len(alerts)} trend alerts")
        return alerts

    def _series_alerts(self, trend: SeriesTrend, subject: str, **reference) -> List[TrendAlert]:
        values = trend.values
        if len(values) < 3:
            return []

        alerts = []

        trend_break = self._trend_break(values)
        if trend_break is not None:
            first_slope, second_slope = trend_break
            severity = (AlertSeverity.CRITICAL if abs(trend.cagr) > self.critical_cagr
                        else AlertSeverity.WARNING)
            change = "growth to decline" if first_slope > 0 else "decline to growth"
            alerts.append(TrendAlert(
                type=AlertType.TREND_BREAK,
                severity=severity,
                message=f"Trend break for {subject}: {change}",
                data={
                    'first_half_slope': first_slope,
                    'second_half_slope': second_slope,
                    'cagr': trend.cagr,
                },
                **reference,
            ))

        cv = trend.coefficient_of_variation
        if cv > self.volatility_cv:
            alerts.append(TrendAlert(
                type=AlertType.NEW_VOLATILITY,
                severity=AlertSeverity.WARNING,
                message=f"Increased volatility for {subject}: coefficient of variation {cv * 100:.1f}%",
                data={'coefficient_of_variation': cv},
                **reference,
            ))

        for anomaly in trend.anomalies:
            alerts.append(TrendAlert(
                type=AlertType.THRESHOLD_BREACH,
                severity=AlertSeverity.WARNING,
                message=(
                    f"Anomaly for {subject} in period {anomaly.period}: "
                    f"expected {anomaly.expected:.0f}, got {anomaly.actual:.0f}"
                ),
                data={
                    'period': anomaly.period,
                    'expected': anomaly.expected,
                    'actual': anomaly.actual,
                    'deviation': anomaly.deviation,
                },
                **reference,
            ))

        return alerts

    def _trend_break(self, values: List[float]):
        """Return the half slopes if they point in opposite directions."""
        middle = len(values) // 2
        first_slope = linear_regression(values[:middle]).slope
        second_slope = linear_regression(values[middle:]).slope
        if first_slope * second_slope < 0:
            return first_slope, second_slope
        return None

    def _portfolio_alerts(self, pnl_trend: PnlTrend) -> List[TrendAlert]:
        alerts = []

        if pnl_trend.revenue_cagr < 0 or pnl_trend.revenue_trend == TrendDirection.FALLING:
            severity = (AlertSeverity.CRITICAL if pnl_trend.revenue_cagr < self.revenue_critical_cagr
                        else AlertSeverity.WARNING)
            alerts.append(TrendAlert(
                type=AlertType.TREND_BREAK,
                severity=severity,
                message=f"Revenue decline: CAGR {pnl_trend.revenue_cagr * 100:.1f}%",
                data={
                    'revenue_cagr': pnl_trend.revenue_cagr,
                    'revenue_trend': pnl_trend.revenue_trend.value,
                },
            ))

        if pnl_trend.margin_trend == MarginTrend.DECLINING:
            first, last = pnl_trend.periods[0].margin, pnl_trend.periods[-1].margin
            alerts.append(TrendAlert(
                type=AlertType.DECELERATION,
                severity=AlertSeverity.WARNING,
                message=f"Profit margin declining from {first:.1f}% to {last:.1f}%",
                data={
                    'margin_trend': pnl_trend.margin_trend.value,
                    'first_margin': first,
                    'last_margin': last,
                },
            ))

        return alerts
