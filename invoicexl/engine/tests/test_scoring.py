"""
Tests for the confidence scorer.
"""

from decimal import Decimal

import pytest

from invoicexl.engine.models import (
    Adjustment,
    AdjustmentCategory,
    InvoiceTotals,
    LineItem,
    ReconciliationCheck,
    ReconciliationOutcome,
    ReconciliationResult,
    ReconciliationState,
    Severity,
    TotalFinderResult,
)
from invoicexl.engine.scoring import ConfidenceScorer, get_confidence_scorer


def _item(total_cents: int, description: str = "WIDGET", validated: bool = True) -> LineItem:
    return LineItem(
        description=description,
        quantity=Decimal("1"),
        unit_price=Decimal(total_cents) / 100,
        line_total_cents=total_cents,
        math_validated=validated,
    )


def _outcome(items, subtotal=10000, total=10800, state=ReconciliationState.VALID, **kwargs) -> ReconciliationOutcome:
    totals = kwargs.pop("totals", None) or InvoiceTotals(subtotal_cents=subtotal, total_cents=total)
    return ReconciliationOutcome(
        state=state,
        line_items=items,
        line_item_checks=[],
        totals=totals,
        adjustments=[],
        result=kwargs.pop("result", None) or ReconciliationResult(),
        **kwargs,
    )


@pytest.fixture
def scorer():
    return ConfidenceScorer()


# =============================================================================
# Base Deductions
# =============================================================================

class TestDeductions:
    """Test one policy weight per detected problem."""

    def test_clean_invoice(self, scorer):
        report = scorer.score(_outcome([_item(10000)]))
        assert report.score == 100
        assert report.issues == []
        assert report.warnings == []
        assert report.is_valid

    def test_missing_total_and_subtotal(self, scorer):
        report = scorer.score(_outcome([_item(10000)], subtotal=0, total=0))
        assert report.score == 60
        assert report.issues == ["missing_total"]
        assert "missing_subtotal" in report.warnings
        assert not report.is_valid

    def test_items_over_subtotal(self, scorer):
        report = scorer.score(_outcome([_item(12000)]))
        assert report.score == 75
        assert report.issues == ["subtotal_mismatch_over"]
        assert "possible_included_group_subtotals" in report.warnings
        assert not report.is_valid

    def test_items_under_subtotal_does_not_block(self, scorer):
        report = scorer.score(_outcome([_item(9000)]))
        assert report.score == 85
        assert report.issues == ["subtotal_mismatch_under"]
        assert "likely_missed_line_items" in report.warnings
        assert report.is_valid

    def test_small_subtotal_gap_ignored(self, scorer):
        assert scorer.score(_outcome([_item(9950)])).score == 100

    def test_no_line_items(self, scorer):
        report = scorer.score(_outcome([]))
        assert report.score == 80
        assert report.warnings == ["no_line_items"]

    def test_group_subtotal_description(self, scorer):
        report = scorer.score(_outcome([_item(5000), _item(5000, "DAIRY GROUP TOTAL")]))
        assert "group_subtotal_items" in report.issues
        assert report.score == 80

    def test_unrepaired_items_capped(self, scorer):
        items = [_item(2000, validated=False) for _ in range(5)]
        report = scorer.score(_outcome(items))
        assert report.score == 80
        assert "unrepaired_line_items" in report.warnings

    def test_totals_equation_failure(self, scorer):
        result = ReconciliationResult()
        result.add_check(ReconciliationCheck("totals_equation", False, severity=Severity.ERROR))
        report = scorer.score(_outcome([_item(10000)], result=result))
        assert report.score == 85
        assert "totals_equation_mismatch" in report.issues

    def test_score_floor(self, scorer):
        items = [_item(2000, "SUBTOTAL", validated=False) for _ in range(10)]
        result = ReconciliationResult()
        result.add_check(ReconciliationCheck("totals_equation", False, severity=Severity.ERROR))
        result.add_check(ReconciliationCheck("unexplained_delta", False, severity=Severity.ERROR))
        report = scorer.score(_outcome(
            items,
            state=ReconciliationState.SALVAGE_FAILED,
            result=result,
            totals=InvoiceTotals(subtotal_cents=1000, total_cents=0),
        ))
        assert report.score == 0
        assert not report.is_valid


# =============================================================================
# Reconciliation Signals
# =============================================================================

class TestReconciliationSignals:
    """Test deductions driven by the reconciliation outcome."""

    def test_synthetic_adjustment(self, scorer):
        synthetic = Adjustment(AdjustmentCategory.FEE, "Unclassified Charge", 800, is_synthetic=True)
        report = scorer.score(_outcome([_item(10000)], synthetic_adjustment=synthetic))
        assert report.score == 95
        assert report.warnings == ["synthetic_adjustment"]

    def test_soft_unexplained_delta(self, scorer):
        result = ReconciliationResult()
        result.add_check(ReconciliationCheck("unexplained_delta", False, severity=Severity.WARNING))
        report = scorer.score(_outcome([_item(10000)], result=result))
        assert report.score == 100
        assert report.warnings == ["small_unexplained_delta"]

    def test_printed_total_replaced(self, scorer):
        report = scorer.score(_outcome([_item(10000)], printed_total_replaced=True))
        assert report.score == 95

    def test_salvaged_penalty(self, scorer):
        totals = InvoiceTotals(subtotal_cents=10000, total_cents=10800, salvaged=True)
        assert scorer.score(_outcome([_item(10000)], totals=totals)).score == 85
        assert get_confidence_scorer(salvage_penalty=5).score(
            _outcome([_item(10000)], totals=totals)
        ).score == 95

    def test_salvage_exhausted(self, scorer):
        report = scorer.score(_outcome([_item(10000)], state=ReconciliationState.SALVAGE_FAILED))
        assert report.issues == ["salvage_exhausted"]
        assert report.score == 90
        assert not report.is_valid

    def test_low_finder_confidence(self, scorer):
        finder = TotalFinderResult(found=True, total_cents=10800, confidence=20)
        report = scorer.score(_outcome([_item(10000)]), finder)
        assert report.score == 95
        assert report.warnings == ["low_total_confidence"]

    def test_very_small_total_warning_only(self, scorer):
        report = scorer.score(_outcome([_item(50)], subtotal=50, total=50))
        assert report.score == 100
        assert report.warnings == ["very_small_total"]
