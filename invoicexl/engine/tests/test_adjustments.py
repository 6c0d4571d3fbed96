"""
Tests for the adjustments extractor.
"""

import pytest

from invoicexl.engine.adjustments import (
    AdjustmentsExtractor,
    extract_adjustments,
    get_adjustments_extractor,
    summarize,
    validate_adjustments,
)
from invoicexl.engine.models import Adjustment, AdjustmentCategory, LayoutHints

INVOICE = (
    "SUBTOTAL 100.00\n"
    "SALES TAX 8.00\n"
    "FUEL SURCHARGE 3.50\n"
    "DISCOUNT 5.00\n"
    "INVOICE TOTAL 106.50"
)


@pytest.fixture
def extractor():
    return AdjustmentsExtractor()


# =============================================================================
# Extraction
# =============================================================================

class TestExtraction:
    """Test signed adjustment extraction."""

    def test_categories_and_signs(self, extractor):
        result = extractor.extract(INVOICE)
        by_category = {a.category: a.amount_cents for a in result.adjustments}
        assert by_category == {
            AdjustmentCategory.TAX: 800,
            AdjustmentCategory.FEE: 350,
            AdjustmentCategory.DISCOUNT: -500,
        }
        assert [a.line_number for a in result.adjustments] == [1, 2, 3]

    def test_summary(self, extractor):
        summary = extractor.extract(INVOICE).summary
        assert summary.tax_cents == 800
        assert summary.fees_cents == 350
        assert summary.discounts_cents == -500
        assert summary.total_positive_cents == 1150
        assert summary.total_negative_cents == -500
        assert summary.net_cents == 650

    def test_specific_rule_claims_value(self, extractor):
        """The generic TAX rule does not count a value already read as Sales Tax."""
        result = extractor.extract("SALES TAX 8.00")
        assert [(a.label, a.amount_cents) for a in result.adjustments] == [("Sales Tax", 800)]

    def test_credit_is_negative(self, extractor):
        result = extractor.extract("RETURN CREDIT 25.00")
        assert len(result.adjustments) == 1
        assert result.adjustments[0].category == AdjustmentCategory.CREDIT
        assert result.adjustments[0].amount_cents == -2500

    def test_trailing_minus_fee(self, extractor):
        result = extractor.extract("DELIVERY FEE 10.00-")
        assert result.adjustments[0].amount_cents == -1000

    def test_duplicates_collapsed(self, extractor):
        result = extractor.extract("FUEL SURCHARGE 3.50\nFUEL SURCHARGE 3.50")
        assert len(result.adjustments) == 1

    def test_total_lines_ignored(self, extractor):
        assert extractor.extract("SUBTOTAL 100.00\nINVOICE TOTAL 108.00").adjustments == []

    def test_layout_hints_limit_search(self, extractor):
        text = "SALES TAX 9.99\n" + "ITEM\n" * 20 + "SALES TAX 8.00"
        hints = LayoutHints(totals_start_line=21)
        result = extractor.extract(text, hints)
        assert [(a.amount_cents, a.line_number) for a in result.adjustments] == [(800, 21)]

    def test_value_on_next_line_ignored(self, extractor):
        text = "ITEM DESCRIPTION FREIGHT\n15.00 CASES DELIVERED"
        assert extractor.extract(text).adjustments == []

    def test_empty_text(self, extractor):
        assert extractor.extract("").adjustments == []

    def test_module_helpers(self):
        assert get_adjustments_extractor() is get_adjustments_extractor()
        assert extract_adjustments(INVOICE).summary.net_cents == 650


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    """Test subtotal + adjustments == total checks."""

    @pytest.fixture
    def adjustments(self):
        return AdjustmentsExtractor().extract(INVOICE).adjustments

    def test_reconciles(self, adjustments):
        result = validate_adjustments(adjustments, 10000, 10650)
        assert result.is_valid
        assert result.difference_cents == 0
        assert result.issues == []

    def test_large_difference_is_issue(self, adjustments):
        result = validate_adjustments(adjustments, 10000, 12000)
        assert not result.is_valid
        assert result.difference_cents == 1350
        assert len(result.issues) == 1

    def test_small_difference_is_warning(self, adjustments):
        result = validate_adjustments(adjustments, 10000, 10700)
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_high_tax_warning(self):
        adjs = [Adjustment(AdjustmentCategory.TAX, "Tax", 2000)]
        result = validate_adjustments(adjs, 10000, 12000)
        assert result.is_valid
        assert any("15%" in w for w in result.warnings)

    def test_summarize_empty(self):
        assert summarize([]).net_cents == 0
