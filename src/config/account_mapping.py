"""
Account number classification.

One table decides whether an account is revenue, expense or anything else.
The deviation, trend and rolling forecast engines all read it, so changing a
range here changes every engine at once.
"""

from typing import Dict, Iterable, List, Optional, Any
from dataclasses import dataclass


REVENUE = "revenue"
EXPENSE = "expense"
OTHER = "other"


@dataclass(frozen=True)
class AccountRange:
    """Inclusive account number range mapped to a class name."""
    name: str
    start: int
    end: int

    def contains(self, account: int) -> bool:
        return self.start <= account <= self.end


DEFAULT_ACCOUNT_RANGES = [
    AccountRange(REVENUE, 4000, 4999),
    AccountRange(EXPENSE, 5000, 8999),
]


class AccountClassifier:
    """Maps account numbers onto revenue / expense / other classes."""

    def __init__(self, ranges: Optional[Iterable[AccountRange]] = None):
        self.ranges = list(ranges) if ranges is not None else list(DEFAULT_ACCOUNT_RANGES)
        self._validate()

    @classmethod
    def from_config(cls, entries: List[Dict[str, Any]]) -> "AccountClassifier":
        """
        Build a classifier from configuration entries.

        Args:
            entries: List of mappings with 'name', 'start' and 'end' keys

        Returns:
            AccountClassifier instance
        """
        ranges = []
        for entry in entries:
            for key in ("name", "start", "end"):
                if key not in entry:
                    raise ValueError(f"Missing required account range key: {key} in {entry}")
            ranges.append(AccountRange(str(entry["name"]), int(entry["start"]), int(entry["end"])))
        return cls(ranges)

    def _validate(self):
        for account_range in self.ranges:
            if account_range.start > account_range.end:
                raise ValueError(f"Account range {account_range.name} starts after it ends")
        ordered = sorted(self.ranges, key=lambda r: r.start)
        for previous, current in zip(ordered, ordered[1:]):
            if current.start <= previous.end:
                raise ValueError(
                    f"Account ranges {previous.name} and {current.name} overlap"
                )

    def classify(self, account: int) -> str:
        """Return the class name for an account number."""
        for account_range in self.ranges:
            if account_range.contains(account):
                return account_range.name
        return OTHER

    def is_revenue(self, account: int) -> bool:
        return self.classify(account) == REVENUE

    def is_expense(self, account: int) -> bool:
        return self.classify(account) == EXPENSE

    def to_config(self) -> List[Dict[str, Any]]:
        """Serialize the table back into configuration entries."""
        return [{"name": r.name, "start": r.start, "end": r.end} for r in self.ranges]
