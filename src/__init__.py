"""
Ledger Deviation & Trend Engine

Period-over-period deviation analysis, multi-period trend detection with
alerts, and rolling year-end forecasting over general-ledger bookings.
"""

__version__ = "1.0.0"
__author__ = "Your Organization"
