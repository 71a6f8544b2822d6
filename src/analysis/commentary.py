"""
Rule-based explanatory text for deviations.
"""

from typing import Sequence

from config.account_mapping import AccountClassifier, REVENUE, EXPENSE
from data.models import TopBooking


# (account class, delta > 0) -> wording. Expense amounts carry a negative
# ledger sign, so a rising expense balance means lower costs.
DIRECTION_LABELS = {
    (REVENUE, True): "Revenue increase",
    (REVENUE, False): "Revenue decrease",
    (EXPENSE, True): "Cost decrease",
    (EXPENSE, False): "Cost increase",
}


def format_currency(value: float, currency: str = "EUR") -> str:
    """Format an amount without decimals, e.g. '25,000 EUR'."""
    return f"{value:,.0f} {currency}"


def describe_direction(account: int, delta_abs: float, classifier: AccountClassifier) -> str:
    """Direction wording for an account's change."""
    account_class = classifier.classify(account)
    increased = delta_abs > 0
    return DIRECTION_LABELS.get(
        (account_class, increased), "Increase" if increased else "Decrease"
    )


def generate_comment(delta_abs: float, delta_pct: float, account: int,
                     drivers: Sequence[TopBooking], classifier: AccountClassifier,
                     currency: str = "EUR") -> str:
    """
    Build the comment for a deviation.

    Args:
        delta_abs: Absolute change
        delta_pct: Percentage change
        account: Account number
        drivers: Bookings listed as main drivers (already truncated)
        classifier: Account classification table
        currency: Currency code for amounts

    Returns:
        Multi-line comment text
    """
    direction = describe_direction(account, delta_abs, classifier)
    lines = [
        f"{direction} of {format_currency(abs(delta_abs), currency)} ({abs(delta_pct):.1f}%)."
    ]

    if drivers:
        lines.append("Main drivers:")
        for booking in drivers:
            entity = booking.vendor or booking.customer or ''
            amount = format_currency(booking.amount, currency)
            if entity:
                lines.append(f"  - {booking.text} ({entity}): {amount}")
            else:
                lines.append(f"  - {booking.text}: {amount}")

    return "\n".join(lines)
