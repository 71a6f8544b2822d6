"""
Deviation engine for period-over-period comparison of ledger bookings.
"""

import logging
import numpy as np
import pandas as pd
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field

from config.settings import Settings
from data.models import Booking, TopBooking, bookings_to_frame, to_plain
from analysis.commentary import generate_comment
from analysis.evidence import (
    filter_bookings, find_missing_bookings, find_new_bookings, top_bookings
)
from utils.calculations import compute_delta, is_material


ACCOUNT_KEY = ['account', 'account_name']
COST_CENTER_KEY = 'cost_center'
DETAIL_KEY = ['account', 'account_name', 'cost_center']

GroupKey = Union[str, List[str]]


@dataclass
class AnalysisConfig:
    """Materiality thresholds, labels and evidence limits of one comparison."""
    materiality_absolute: float = 5000.0
    materiality_percent: float = 10.0
    previous_period_label: str = "Previous period"
    current_period_label: str = "Current period"
    top_bookings_limit: int = 10
    comment_bookings_limit: int = 3
    pattern_bookings_limit: int = 5
    detail_limit: int = 15
    cost_center_top_accounts: int = 3

    def __post_init__(self):
        if self.materiality_absolute < 0 or self.materiality_percent < 0:
            raise ValueError("Materiality thresholds must not be negative")
        for name in ('top_bookings_limit', 'comment_bookings_limit', 'pattern_bookings_limit',
                     'detail_limit', 'cost_center_top_accounts'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "AnalysisConfig":
        """Build a config from settings defaults, applying keyword overrides."""
        materiality = settings.get_materiality_thresholds()
        values = {
            'materiality_absolute': materiality['absolute'],
            'materiality_percent': materiality['percent'],
            'top_bookings_limit': settings.get_evidence_limit('top_bookings', 10),
            'comment_bookings_limit': settings.get_evidence_limit('comment_bookings', 3),
            'pattern_bookings_limit': settings.get_evidence_limit('pattern_bookings', 5),
            'detail_limit': settings.get_evidence_limit('detail_limit', 15),
            'cost_center_top_accounts': settings.get_evidence_limit('cost_center_top_accounts', 3),
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class AccountDeviation:
    """Material change of one account between the two periods."""
    account: int
    account_name: str
    amount_prev: float
    amount_curr: float
    delta_abs: float
    delta_pct: float
    comment: str
    bookings_count_prev: int
    bookings_count_curr: int
    top_bookings: List[TopBooking] = field(default_factory=list)
    top_bookings_prev: List[TopBooking] = field(default_factory=list)
    top_bookings_curr: List[TopBooking] = field(default_factory=list)
    new_bookings: List[TopBooking] = field(default_factory=list)
    missing_bookings: List[TopBooking] = field(default_factory=list)


@dataclass(frozen=True)
class AccountDelta:
    """Account drill-down entry inside a cost center."""
    account: int
    account_name: str
    delta_abs: float


@dataclass(frozen=True)
class CostCenterDeviation:
    """Material change of one cost center between the two periods."""
    cost_center: str
    amount_prev: float
    amount_curr: float
    delta_abs: float
    delta_pct: float
    bookings_count_prev: int
    bookings_count_curr: int
    top_accounts: List[AccountDelta] = field(default_factory=list)


@dataclass(frozen=True)
class DetailDeviation:
    """Material change of one account within one cost center."""
    account: int
    account_name: str
    cost_center: str
    amount_prev: float
    amount_curr: float
    delta_abs: float
    delta_pct: float
    comment: str


@dataclass(frozen=True)
class AnalysisMeta:
    period_prev: str
    period_curr: str
    total_prev: float
    total_curr: float
    bookings_prev: int
    bookings_curr: int
    materiality_absolute: float
    materiality_percent: float


@dataclass(frozen=True)
class AnalysisSummary:
    total_delta: float
    revenue_prev: float
    revenue_curr: float
    expenses_prev: float
    expenses_curr: float


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one pairwise comparison."""
    meta: AnalysisMeta
    summary: AnalysisSummary
    by_account: List[AccountDeviation]
    by_cost_center: List[CostCenterDeviation]
    by_detail: List[DetailDeviation]

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


def _plain_key(key: Any) -> Any:
    """Turn numpy scalars inside groupby keys into builtins."""
    if isinstance(key, tuple):
        return tuple(_plain_key(k) for k in key)
    if isinstance(key, np.generic):
        return key.item()
    return key


def _group_totals(frame: pd.DataFrame, by: GroupKey) -> Tuple[Dict[Any, float], Dict[Any, int]]:
    """Sum and count bookings per grouping key."""
    if frame.empty:
        return {}, {}
    grouped = frame.groupby(by, sort=True)['amount']
    sums = {_plain_key(k): float(v) for k, v in grouped.sum().items()}
    counts = {_plain_key(k): int(v) for k, v in grouped.size().items()}
    return sums, counts


def aggregate(bookings: Sequence[Booking], by: GroupKey) -> Dict[Any, float]:
    """
    Sum booking amounts per grouping key.

    Args:
        bookings: Bookings to aggregate
        by: Booking field name, or list of field names for a composite key

    Returns:
        Mapping of key (tuple for composite keys) to summed amount
    """
    sums, _ = _group_totals(bookings_to_frame(bookings), by)
    return sums


def _sort_key(key: Any) -> Tuple:
    return tuple(str(k) for k in key) if isinstance(key, tuple) else (str(key),)


class DeviationAnalyzer:
    """Pairwise period comparison with materiality filtering and evidence."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.classifier = self.settings.account_classifier
        self.logger = logging.getLogger(__name__)

    def analyze(self, previous: Sequence[Booking], current: Sequence[Booking],
                config: Optional[AnalysisConfig] = None) -> AnalysisResult:
        """
        Compare two booking snapshots.

        Args:
            previous: Bookings of the previous period
            current: Bookings of the current period
            config: Thresholds and labels, defaults from settings

        Returns:
            AnalysisResult with account, cost center and detail deviations
        """
        config = config or AnalysisConfig.from_settings(self.settings)
        self.logger.info(
            f"Starting deviation analysis: {config.previous_period_label} ({len(previous)} bookings) "
            f"vs {config.current_period_label} ({len(current)} bookings)"
        )

        prev_frame = bookings_to_frame(previous)
        curr_frame = bookings_to_frame(current)

        by_account = self._analyze_accounts(previous, current, prev_frame, curr_frame, config)
        by_cost_center = self._analyze_cost_centers(prev_frame, curr_frame, config)
        by_detail = self._analyze_details(current, prev_frame, curr_frame, config)

        result = AnalysisResult(
            meta=self._build_meta(previous, current, config),
            summary=self._build_summary(previous, current),
            by_account=by_account,
            by_cost_center=by_cost_center,
            by_detail=by_detail,
        )

        self.logger.info(
            f"Deviation analysis completed: {len(by_account)} accounts, "
            f"{len(by_cost_center)} cost centers, {len(by_detail)} details"
        )
        return result

    def _material_deltas(self, prev_frame: pd.DataFrame, curr_frame: pd.DataFrame,
                         by: GroupKey, config: AnalysisConfig) -> List[Dict[str, Any]]:
        """Per-key amounts and deltas that pass the materiality gate."""
        prev_sums, prev_counts = _group_totals(prev_frame, by)
        curr_sums, curr_counts = _group_totals(curr_frame, by)

        rows = []
        for key in sorted(set(prev_sums) | set(curr_sums), key=_sort_key):
            amount_prev = prev_sums.get(key, 0.0)
            amount_curr = curr_sums.get(key, 0.0)
            delta_abs, delta_pct = compute_delta(amount_prev, amount_curr)

            # An unchanged key is never a deviation, even with zero thresholds
            if delta_abs == 0:
                continue
            if not is_material(delta_abs, delta_pct,
                               config.materiality_absolute, config.materiality_percent):
                continue

            rows.append({
                'key': key,
                'amount_prev': amount_prev,
                'amount_curr': amount_curr,
                'delta_abs': delta_abs,
                'delta_pct': delta_pct,
                'count_prev': prev_counts.get(key, 0),
                'count_curr': curr_counts.get(key, 0),
            })

        # Keys are visited in sorted order, so the stable sort keeps ties deterministic
        rows.sort(key=lambda r: abs(r['delta_abs']), reverse=True)
        return rows

    def _analyze_accounts(self, previous: Sequence[Booking], current: Sequence[Booking],
                          prev_frame: pd.DataFrame, curr_frame: pd.DataFrame,
                          config: AnalysisConfig) -> List[AccountDeviation]:
        deviations = []
        for row in self._material_deltas(prev_frame, curr_frame, ACCOUNT_KEY, config):
            account, account_name = row['key']
            account = int(account)

            top_prev = top_bookings(filter_bookings(previous, account), config.top_bookings_limit)
            top_curr = top_bookings(filter_bookings(current, account), config.top_bookings_limit)
            drivers = top_curr[:config.comment_bookings_limit]

            deviations.append(AccountDeviation(
                account=account,
                account_name=account_name,
                amount_prev=row['amount_prev'],
                amount_curr=row['amount_curr'],
                delta_abs=row['delta_abs'],
                delta_pct=row['delta_pct'],
                comment=generate_comment(row['delta_abs'], row['delta_pct'], account, drivers,
                                         self.classifier, self.settings.currency),
                bookings_count_prev=row['count_prev'],
                bookings_count_curr=row['count_curr'],
                top_bookings=drivers,
                top_bookings_prev=top_prev,
                top_bookings_curr=top_curr,
                new_bookings=find_new_bookings(previous, current, account,
                                               config.pattern_bookings_limit),
                missing_bookings=find_missing_bookings(previous, current, account,
                                                       config.pattern_bookings_limit),
            ))
        return deviations

    def _analyze_cost_centers(self, prev_frame: pd.DataFrame, curr_frame: pd.DataFrame,
                              config: AnalysisConfig) -> List[CostCenterDeviation]:
        deviations = []
        for row in self._material_deltas(prev_frame, curr_frame, COST_CENTER_KEY, config):
            cost_center = row['key']
            deviations.append(CostCenterDeviation(
                cost_center=cost_center,
                amount_prev=row['amount_prev'],
                amount_curr=row['amount_curr'],
                delta_abs=row['delta_abs'],
                delta_pct=row['delta_pct'],
                bookings_count_prev=row['count_prev'],
                bookings_count_curr=row['count_curr'],
                top_accounts=self._top_accounts(prev_frame, curr_frame, cost_center,
                                                config.cost_center_top_accounts),
            ))
        return deviations

    def _top_accounts(self, prev_frame: pd.DataFrame, curr_frame: pd.DataFrame,
                      cost_center: str, n: int) -> List[AccountDelta]:
        """Accounts of a cost center ranked by absolute change."""
        prev_sums, _ = _group_totals(prev_frame[prev_frame['cost_center'] == cost_center], ACCOUNT_KEY)
        curr_sums, _ = _group_totals(curr_frame[curr_frame['cost_center'] == cost_center], ACCOUNT_KEY)

        deltas = []
        for key in sorted(set(prev_sums) | set(curr_sums), key=_sort_key):
            account, account_name = key
            deltas.append(AccountDelta(
                account=int(account),
                account_name=account_name,
                delta_abs=curr_sums.get(key, 0.0) - prev_sums.get(key, 0.0),
            ))

        deltas.sort(key=lambda d: abs(d.delta_abs), reverse=True)
        return deltas[:n]

    def _analyze_details(self, current: Sequence[Booking], prev_frame: pd.DataFrame,
                         curr_frame: pd.DataFrame, config: AnalysisConfig) -> List[DetailDeviation]:
        deviations = []
        rows = self._material_deltas(prev_frame, curr_frame, DETAIL_KEY, config)
        for row in rows[:config.detail_limit]:
            account, account_name, cost_center = row['key']
            account = int(account)
            drivers = top_bookings(filter_bookings(current, account, cost_center),
                                   config.comment_bookings_limit)

            deviations.append(DetailDeviation(
                account=account,
                account_name=account_name,
                cost_center=cost_center,
                amount_prev=row['amount_prev'],
                amount_curr=row['amount_curr'],
                delta_abs=row['delta_abs'],
                delta_pct=row['delta_pct'],
                comment=generate_comment(row['delta_abs'], row['delta_pct'], account, drivers,
                                         self.classifier, self.settings.currency),
            ))

        if len(rows) > config.detail_limit:
            self.logger.debug(f"Detail deviations truncated from {len(rows)} to {config.detail_limit}")
        return deviations

    def _build_meta(self, previous: Sequence[Booking], current: Sequence[Booking],
                    config: AnalysisConfig) -> AnalysisMeta:
        return AnalysisMeta(
            period_prev=config.previous_period_label,
            period_curr=config.current_period_label,
            total_prev=sum(b.amount for b in previous),
            total_curr=sum(b.amount for b in current),
            bookings_prev=len(previous),
            bookings_curr=len(current),
            materiality_absolute=config.materiality_absolute,
            materiality_percent=config.materiality_percent,
        )

    def _build_summary(self, previous: Sequence[Booking], current: Sequence[Booking]) -> AnalysisSummary:
        """Totals split by account class."""
        def class_total(bookings, predicate):
            return sum(b.amount for b in bookings if predicate(b.account))

        return AnalysisSummary(
            total_delta=sum(b.amount for b in current) - sum(b.amount for b in previous),
            revenue_prev=class_total(previous, self.classifier.is_revenue),
            revenue_curr=class_total(current, self.classifier.is_revenue),
            expenses_prev=class_total(previous, self.classifier.is_expense),
            expenses_curr=class_total(current, self.classifier.is_expense),
        )


def analyze(previous_bookings: Sequence[Booking], current_bookings: Sequence[Booking],
            config: Optional[AnalysisConfig] = None,
            settings: Optional[Settings] = None) -> AnalysisResult:
    """Compare two booking snapshots with a fresh DeviationAnalyzer."""
    return DeviationAnalyzer(settings).analyze(previous_bookings, current_bookings, config)
