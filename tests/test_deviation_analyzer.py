"""
Unit tests for DeviationAnalyzer.
"""

import pytest
import sys
from datetime import date
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config.settings import Settings
from analysis.deviation_analyzer import (
    AnalysisConfig, AnalysisResult, DeviationAnalyzer, aggregate, analyze
)
from data.models import Booking


def booking(account, amount, account_name=None, cost_center="CC100", text="Posting",
            vendor=None, customer=None, posting_date=date(2024, 1, 15)):
    return Booking(
        posting_date=posting_date,
        amount=amount,
        account=account,
        account_name=account_name or f"Account {account}",
        cost_center=cost_center,
        vendor=vendor,
        customer=customer,
        text=text,
    )


class TestDeviationAnalyzer:
    """Test cases for DeviationAnalyzer."""

    @pytest.fixture
    def settings(self):
        """Create test settings."""
        return Settings()

    @pytest.fixture
    def analyzer(self, settings):
        """Create DeviationAnalyzer instance."""
        return DeviationAnalyzer(settings)

    @pytest.fixture
    def config(self):
        """Default thresholds: 5,000 absolute and 10 percent."""
        return AnalysisConfig(materiality_absolute=5000, materiality_percent=10)

    @pytest.fixture
    def previous_bookings(self):
        """Create previous period bookings."""
        return [
            booking(4000, 100000, "Revenue", "CC100", "Sales invoice", customer="ACME"),
            booking(5200, 30000, "Material", "CC200", "Steel delivery", vendor="Steelworks"),
            booking(5200, 20000, "Material", "CC300", "Copper delivery", vendor="Metals Inc"),
            booking(6000, -40000, "Rent", "CC100", "Office rent", vendor="Landlord"),
        ]

    @pytest.fixture
    def current_bookings(self):
        """Create current period bookings."""
        return [
            booking(4000, 105000, "Revenue", "CC100", "Sales invoice", customer="ACME"),
            booking(5200, 30000, "Material", "CC200", "Steel delivery", vendor="Steelworks"),
            booking(5200, 45000, "Material", "CC300", "Aluminium delivery", vendor="Alu GmbH"),
            booking(6000, -60000, "Rent", "CC100", "Office rent", vendor="Landlord"),
        ]

    def test_concrete_deviation(self, analyzer, config):
        """Test a single account moving from 50,000 to 75,000."""
        result = analyzer.analyze([booking(5200, 50000)], [booking(5200, 75000)], config)

        assert len(result.by_account) == 1
        deviation = result.by_account[0]
        assert deviation.account == 5200
        assert deviation.delta_abs == 25000
        assert deviation.delta_pct == pytest.approx(50.0)

    def test_percent_gate_excludes(self, analyzer, config):
        """Test that 100,000 -> 105,000 fails the percentage gate."""
        result = analyzer.analyze([booking(4000, 100000)], [booking(4000, 105000)], config)

        assert result.by_account == []
        assert result.by_cost_center == []
        assert result.by_detail == []

    def test_absolute_gate_excludes(self, analyzer, config):
        """Test that a large relative change on a small amount is filtered."""
        result = analyzer.analyze([booking(5200, 1000)], [booking(5200, 4000)], config)
        assert result.by_account == []

    def test_zero_previous(self, analyzer, config):
        """Test new activity on an account without previous bookings."""
        result = analyzer.analyze([], [booking(5200, 10000)], config)

        assert len(result.by_account) == 1
        assert result.by_account[0].delta_pct == 100.0
        assert result.by_account[0].amount_prev == 0.0

    def test_idempotence(self, analyzer, config, current_bookings):
        """Test that comparing a period with itself yields nothing."""
        result = analyzer.analyze(current_bookings, current_bookings, config)

        assert result.by_account == []
        assert result.by_cost_center == []
        assert result.by_detail == []

    def test_idempotence_with_zero_thresholds(self, analyzer, current_bookings):
        """Test that unchanged keys are skipped even without thresholds."""
        config = AnalysisConfig(materiality_absolute=0, materiality_percent=0)
        result = analyzer.analyze(current_bookings, current_bookings, config)
        assert result.by_account == []

    def test_accounts_sorted_by_absolute_delta(self, analyzer, config, previous_bookings, current_bookings):
        """Test that account deviations are ordered by magnitude."""
        result = analyzer.analyze(previous_bookings, current_bookings, config)

        magnitudes = [abs(d.delta_abs) for d in result.by_account]
        assert magnitudes == sorted(magnitudes, reverse=True)
        assert [d.account for d in result.by_account] == [5200, 6000]

    def test_expense_comment_direction(self, analyzer, config, previous_bookings, current_bookings):
        """Test comment wording for expense accounts under the ledger sign convention."""
        result = analyzer.analyze(previous_bookings, current_bookings, config)
        comments = {d.account: d.comment for d in result.by_account}

        assert comments[5200].startswith("Cost decrease of 25,000 EUR (50.0%).")
        assert comments[6000].startswith("Cost increase of 20,000 EUR (50.0%).")
        assert "Main drivers:" in comments[5200]
        assert "  - Aluminium delivery (Alu GmbH): 45,000 EUR" in comments[5200]

    def test_account_evidence(self, analyzer, config, previous_bookings, current_bookings):
        """Test top, new and missing bookings of a deviation."""
        result = analyzer.analyze(previous_bookings, current_bookings, config)
        material = next(d for d in result.by_account if d.account == 5200)

        assert material.bookings_count_prev == 2
        assert material.bookings_count_curr == 2
        assert [b.text for b in material.top_bookings] == ["Aluminium delivery", "Steel delivery"]
        assert [b.text for b in material.new_bookings] == ["Aluminium delivery"]
        assert [b.text for b in material.missing_bookings] == ["Copper delivery"]

    def test_cost_center_drill_down(self, analyzer, config, previous_bookings, current_bookings):
        """Test cost center deviations and their top accounts."""
        result = analyzer.analyze(previous_bookings, current_bookings, config)
        centers = {d.cost_center: d for d in result.by_cost_center}

        assert set(centers) == {"CC100", "CC300"}
        assert centers["CC300"].delta_abs == 25000
        assert centers["CC300"].top_accounts[0].account == 5200
        # CC100: revenue +5,000 and rent -20,000
        assert [a.account for a in centers["CC100"].top_accounts] == [6000, 4000]

    def test_detail_limit(self, analyzer, config):
        """Test that detail deviations are truncated."""
        previous = [booking(5000 + i, 10000, cost_center=f"CC{i}") for i in range(20)]
        current = [booking(5000 + i, 30000 + i * 1000, cost_center=f"CC{i}") for i in range(20)]

        result = analyzer.analyze(previous, current, config)

        assert len(result.by_account) == 20
        assert len(result.by_detail) == 15
        magnitudes = [abs(d.delta_abs) for d in result.by_detail]
        assert magnitudes == sorted(magnitudes, reverse=True)

    def test_ties_are_deterministic(self, analyzer, config):
        """Test that equal deltas keep a stable order across runs."""
        previous = [booking(5300, 10000), booking(5100, 10000)]
        current = [booking(5300, 20000), booking(5100, 20000)]

        first = analyzer.analyze(previous, current, config)
        second = analyzer.analyze(list(reversed(previous)), list(reversed(current)), config)

        assert [d.account for d in first.by_account] == [d.account for d in second.by_account]

    def test_summary_and_meta(self, analyzer, config, previous_bookings, current_bookings):
        """Test totals split by account class."""
        config.previous_period_label = "2023"
        config.current_period_label = "2024"
        result = analyzer.analyze(previous_bookings, current_bookings, config)

        assert result.meta.period_prev == "2023"
        assert result.meta.bookings_curr == 4
        assert result.meta.total_prev == 110000
        assert result.meta.total_curr == 120000
        assert result.summary.total_delta == 10000
        assert result.summary.revenue_curr == 105000
        assert result.summary.expenses_prev == 10000
        assert result.summary.expenses_curr == 15000

    def test_empty_inputs(self, analyzer, config):
        """Test that empty periods produce an empty result."""
        result = analyzer.analyze([], [], config)

        assert isinstance(result, AnalysisResult)
        assert result.by_account == []
        assert result.meta.total_prev == 0
        assert result.summary.total_delta == 0

    def test_to_dict(self, analyzer, config):
        """Test JSON-ready conversion."""
        result = analyzer.analyze([booking(5200, 50000)], [booking(5200, 75000)], config)
        data = result.to_dict()

        assert data['by_account'][0]['top_bookings'][0]['date'] == "2024-01-15"
        assert data['meta']['materiality_absolute'] == 5000


class TestAnalysisConfig:
    """Test cases for AnalysisConfig."""

    def test_defaults_from_settings(self):
        config = AnalysisConfig.from_settings(Settings())
        assert config.materiality_absolute == 5000
        assert config.materiality_percent == 10
        assert config.detail_limit == 15

    def test_overrides(self):
        config = AnalysisConfig.from_settings(Settings(), materiality_percent=25)
        assert config.materiality_percent == 25

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            AnalysisConfig(materiality_absolute=-1)


class TestAggregate:
    """Test cases for the aggregate helper."""

    def test_single_field(self):
        totals = aggregate([booking(4000, 10), booking(4000, 5), booking(5200, 7)], 'account')
        assert totals == {4000: 15.0, 5200: 7.0}

    def test_composite_key(self):
        totals = aggregate([booking(4000, 10, cost_center="A"), booking(4000, 5, cost_center="B")],
                           ['account', 'cost_center'])
        assert totals == {(4000, "A"): 10.0, (4000, "B"): 5.0}

    def test_module_level_analyze(self):
        result = analyze([booking(5200, 50000)], [booking(5200, 75000)])
        assert len(result.by_account) == 1
