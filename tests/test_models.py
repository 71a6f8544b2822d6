"""
Unit tests for data models and logging setup.
"""

import logging
import pytest
import sys
from datetime import date
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from data.models import BOOKING_COLUMNS, Booking, Period, TopBooking, bookings_to_frame, to_plain
from analysis.trend_models import AlertSeverity
from utils.logging_config import ColoredFormatter, setup_logging


class TestBooking:
    """Test cases for Booking and related models."""

    @pytest.fixture
    def row(self):
        return {
            'posting_date': '2024-03-15T00:00:00',
            'amount': '1250.50',
            'account': '4000',
            'account_name': 'Revenue',
            'cost_center': None,
            'vendor': '',
            'customer': 'ACME',
            'text': 'Invoice 42',
        }

    def test_from_dict(self, row):
        booking = Booking.from_dict(row)

        assert booking.posting_date == date(2024, 3, 15)
        assert booking.amount == 1250.5
        assert booking.account == 4000
        assert booking.cost_center == ''
        assert booking.vendor is None
        assert booking.customer == 'ACME'
        assert booking.month == "2024-03"

    def test_top_booking_projection(self, row):
        top = TopBooking.from_booking(Booking.from_dict(row))
        assert top.to_dict() == {
            'date': '2024-03-15',
            'amount': 1250.5,
            'text': 'Invoice 42',
            'vendor': None,
            'customer': 'ACME',
            'document_no': '',
        }

    def test_period_totals(self):
        """Test revenue, expenses and result with ledger signs."""
        bookings = [
            Booking.from_dict({'posting_date': '2024-01-01', 'amount': 1000, 'account': 4000}),
            Booking.from_dict({'posting_date': '2024-01-01', 'amount': -400, 'account': 5000}),
            Booking.from_dict({'posting_date': '2024-01-01', 'amount': 9999, 'account': 1000}),
        ]
        period = Period.from_bookings("Q1", bookings)

        assert period.totals.revenue == 1000
        assert period.totals.expenses == -400
        assert period.totals.result == 600

    def test_empty_frame_has_columns(self):
        frame = bookings_to_frame([])
        assert list(frame.columns) == BOOKING_COLUMNS
        assert frame.empty

    def test_to_plain(self):
        assert to_plain({1: (AlertSeverity.CRITICAL, date(2024, 1, 2))}) == {'1': ['critical', '2024-01-02']}


class TestLoggingConfig:
    """Test cases for logging setup."""

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        setup_logging("DEBUG", str(log_file))

        logging.getLogger("analysis.test").info("engine started")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        for handler in root.handlers:
            handler.flush()
        content = log_file.read_text(encoding="utf-8")
        assert "engine started" in content
        assert "\x1b[" not in content

    def test_unknown_level_defaults_to_info(self):
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_colored_formatter(self):
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
        output = ColoredFormatter('%(levelname)s %(message)s').format(record)

        assert "WARNING" in output
        assert output.endswith("careful")
        assert record.levelname == "WARNING"
