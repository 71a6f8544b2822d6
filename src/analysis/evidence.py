"""
Evidence extraction for reported deviations.

The new/missing detection matches bookings on a coarse signature: the first
30 characters of the lower-cased text, the vendor and the amount rounded to
the nearest hundred. Small text or rounding differences therefore still
match, while any difference inside the text prefix makes a distinct pattern.
"""

from typing import Iterable, List, Optional, Sequence

from data.models import Booking, TopBooking
from utils.calculations import round_half_up


SIGNATURE_TEXT_LENGTH = 30
SIGNATURE_AMOUNT_STEP = 100


def booking_signature(booking: Booking) -> str:
    """Return the matching signature of a booking."""
    text = booking.text.lower()[:SIGNATURE_TEXT_LENGTH]
    vendor = booking.vendor or ''
    rounded = round_half_up(booking.amount / SIGNATURE_AMOUNT_STEP) * SIGNATURE_AMOUNT_STEP
    return f"{text}|{vendor}|{rounded}"


def filter_bookings(bookings: Iterable[Booking], account: int,
                    cost_center: Optional[str] = None) -> List[Booking]:
    """Bookings of one account, optionally narrowed to one cost center."""
    selected = [b for b in bookings if b.account == account]
    if cost_center is not None:
        selected = [b for b in selected if b.cost_center == cost_center]
    return selected


def top_bookings(bookings: Iterable[Booking], n: int = 10) -> List[TopBooking]:
    """
    Largest bookings by absolute amount.

    Args:
        bookings: Bookings to rank
        n: Number of bookings to keep

    Returns:
        Up to n bookings, largest magnitude first
    """
    ranked = sorted(bookings, key=lambda b: abs(b.amount), reverse=True)
    return [TopBooking.from_booking(b) for b in ranked[:n]]


def _unmatched(source: Sequence[Booking], reference: Sequence[Booking]) -> List[Booking]:
    reference_signatures = {booking_signature(b) for b in reference}
    return [b for b in source if booking_signature(b) not in reference_signatures]


def find_new_bookings(previous: Sequence[Booking], current: Sequence[Booking],
                      account: int, n: int = 5) -> List[TopBooking]:
    """
    Current-period bookings of an account with no matching previous booking.

    Args:
        previous: All previous-period bookings
        current: All current-period bookings
        account: Account number
        n: Number of bookings to keep

    Returns:
        Up to n unmatched current bookings, largest magnitude first
    """
    unmatched = _unmatched(filter_bookings(current, account), filter_bookings(previous, account))
    return top_bookings(unmatched, n)


def find_missing_bookings(previous: Sequence[Booking], current: Sequence[Booking],
                          account: int, n: int = 5) -> List[TopBooking]:
    """Previous-period bookings of an account that have no current match."""
    return find_new_bookings(current, previous, account, n)
