"""
Data models for the ledger deviation and trend engines.
"""

import pandas as pd
from datetime import date
from typing import Dict, Any, Optional, Sequence, Union
from dataclasses import dataclass, asdict, fields, is_dataclass
from enum import Enum

from config.account_mapping import AccountClassifier


BOOKING_COLUMNS = [
    'posting_date', 'amount', 'account', 'account_name', 'cost_center',
    'profit_center', 'vendor', 'customer', 'document_no', 'text',
]


def _parse_date(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class Booking:
    """A single ledger entry as delivered by the ingestion layer."""
    posting_date: date
    amount: float
    account: int
    account_name: str
    cost_center: str = ""
    profit_center: str = ""
    vendor: Optional[str] = None
    customer: Optional[str] = None
    document_no: str = ""
    text: str = ""

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Booking":
        """
        Build a booking from a plain mapping.

        Args:
            row: Mapping with booking fields; posting_date may be an ISO string

        Returns:
            Booking instance
        """
        return cls(
            posting_date=_parse_date(row['posting_date']),
            amount=float(row.get('amount') or 0),
            account=int(row.get('account') or 0),
            account_name=str(row.get('account_name') or ''),
            cost_center=str(row.get('cost_center') or ''),
            profit_center=str(row.get('profit_center') or ''),
            vendor=row.get('vendor') or None,
            customer=row.get('customer') or None,
            document_no=str(row.get('document_no') or ''),
            text=str(row.get('text') or ''),
        )

    @property
    def month(self) -> str:
        """Posting month as YYYY-MM."""
        return self.posting_date.strftime("%Y-%m")


@dataclass(frozen=True)
class TopBooking:
    """Evidence projection of a booking."""
    date: date
    amount: float
    text: str
    vendor: Optional[str]
    customer: Optional[str]
    document_no: str

    @classmethod
    def from_booking(cls, booking: Booking) -> "TopBooking":
        return cls(
            date=booking.posting_date,
            amount=booking.amount,
            text=booking.text,
            vendor=booking.vendor,
            customer=booking.customer,
            document_no=booking.document_no,
        )

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


@dataclass(frozen=True)
class PeriodTotals:
    """Precomputed P&L totals of a period."""
    revenue: float
    expenses: float
    result: float


@dataclass(frozen=True)
class Period:
    """A labelled booking snapshot used by the trend engine."""
    label: str
    bookings: Sequence[Booking]
    totals: PeriodTotals

    @classmethod
    def from_bookings(cls, label: str, bookings: Sequence[Booking],
                      classifier: Optional[AccountClassifier] = None) -> "Period":
        """
        Prepare a period, computing revenue, expenses and result.

        Expenses keep their ledger sign, so result = revenue + expenses.

        Args:
            label: Period label such as "2023" or "Q1 2024"
            bookings: Bookings of the period
            classifier: Account classification table

        Returns:
            Period instance
        """
        classifier = classifier or AccountClassifier()
        revenue = sum(b.amount for b in bookings if classifier.is_revenue(b.account))
        expenses = sum(b.amount for b in bookings if classifier.is_expense(b.account))
        return cls(
            label=label,
            bookings=tuple(bookings),
            totals=PeriodTotals(revenue=revenue, expenses=expenses, result=revenue + expenses),
        )


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One point of a monthly time series."""
    period: str  # YYYY-MM
    value: float
    transaction_count: int = 0
    unique_accounts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


def bookings_to_frame(bookings: Sequence[Booking]) -> pd.DataFrame:
    """
    Convert bookings into a DataFrame with a fixed column set.

    Empty input still yields the full column set so that groupby and pivot
    calls downstream do not need special cases for missing columns.
    """
    if not bookings:
        frame = pd.DataFrame({col: pd.Series(dtype=object) for col in BOOKING_COLUMNS})
        frame['amount'] = frame['amount'].astype(float)
        return frame

    frame = pd.DataFrame([asdict(b) for b in bookings], columns=BOOKING_COLUMNS)
    frame['amount'] = frame['amount'].astype(float)
    frame['cost_center'] = frame['cost_center'].fillna('')
    frame['account_name'] = frame['account_name'].fillna('')
    return frame


def to_plain(value: Any) -> Any:
    """
    Convert result objects into JSON-ready builtins.

    Dataclasses become dicts, enums their values, dates ISO strings and
    tuples lists.
    """
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value
