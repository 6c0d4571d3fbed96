"""
Tests for the pattern-table candidate extractors.
"""

from invoicexl.engine.candidates import (
    LineIndex,
    TotalQualifier,
    extract_fee_candidates,
    extract_subtotal_candidates,
    extract_tax_candidates,
    extract_total_candidates,
    find_reconcilable_total,
    non_group,
    preceding_qualifier,
    validate_totals_equation,
    with_score,
)
from invoicexl.engine.models import Candidate, CandidateKind, LayoutHints

INVOICE = (
    "LINE A 10.00\n"
    "SUBTOTAL 100.00\n"
    "SALES TAX 8.00\n"
    "INVOICE TOTAL 108.00"
)


def _candidate(value_cents: int, score: int) -> Candidate:
    return Candidate(label="TOTAL", value_cents=value_cents, score=score, kind=CandidateKind.TOTAL)


# =============================================================================
# Total Candidates
# =============================================================================

class TestTotalCandidates:
    """Test total candidate extraction and scoring."""

    def test_labeled_total_ranked_first(self):
        candidates = extract_total_candidates(INVOICE)
        assert candidates[0].label == "INVOICE TOTAL"
        assert candidates[0].value_cents == 10800
        assert candidates[0].score == 100
        assert candidates[0].line_number == 3

    def test_subtotal_not_a_total(self):
        values = [c.value_cents for c in extract_total_candidates(INVOICE)]
        assert 10000 not in values

    def test_split_subtotal_label(self):
        """A 'SUB TOTAL' label is not read as a bare TOTAL."""
        assert extract_total_candidates("SUB TOTAL 50.00") == []

    def test_group_totals_flagged(self):
        candidates = extract_total_candidates("GROUP TOTAL 40.00")
        assert candidates
        assert all(c.is_group_total for c in candidates)
        assert non_group(candidates) == []

    def test_multi_line_total(self):
        candidates = extract_total_candidates("INVOICE TOTAL\n$1,234.56")
        assert len(candidates) == 1
        assert candidates[0].label == "INVOICE TOTAL (multi-line)"
        assert candidates[0].value_cents == 123456

    def test_layout_hint_bonus(self):
        plain = extract_total_candidates("NET TOTAL 50.00")
        hinted = extract_total_candidates("NET TOTAL 50.00", LayoutHints(totals_start_line=0))
        assert plain[0].score == 80
        assert hinted[0].score == 95

    def test_empty_text(self):
        assert extract_total_candidates("") == []


class TestOtherCandidates:
    """Test subtotal, tax and fee extractors."""

    def test_subtotal(self):
        candidates = extract_subtotal_candidates(INVOICE)
        assert candidates[0].label == "SUBTOTAL"
        assert candidates[0].value_cents == 10000

    def test_tax(self):
        candidates = extract_tax_candidates(INVOICE)
        assert candidates[0].label == "SALES TAX"
        assert candidates[0].value_cents == 800

    def test_fee(self):
        candidates = extract_fee_candidates("FUEL SURCHARGE 3.50")
        assert candidates[0].value_cents == 350
        assert candidates[0].kind == CandidateKind.FEE

    def test_header_label_does_not_read_next_line(self):
        """A column header ending in TAX or TOTAL has no value of its own."""
        text = "QTY ITEM DESCRIPTION PRICE TAX\n3 CS WIDGET 12345 5.00 15.00"
        assert extract_tax_candidates(text) == []
        assert extract_total_candidates("QTY ITEM TOTAL\n3 CS WIDGET 12345 5.00 15.00") == []

    def test_value_on_same_line_after_tab(self):
        candidates = extract_tax_candidates("SALES TAX\t\t$8.00")
        assert candidates[0].value_cents == 800


# =============================================================================
# Qualifier Window
# =============================================================================

class TestPrecedingQualifier:
    """Test the short same-line window before a total label."""

    def test_group_word(self):
        text = "DEPT 12 TOTAL 5.00"
        assert preceding_qualifier(text, text.index("TOTAL"), "TOTAL") == TotalQualifier.GROUP

    def test_distant_word_ignored(self):
        text = "SECTION A SUPPLIES ORDERED BY CUSTOMER TOTAL 5.00"
        assert preceding_qualifier(text, text.index("TOTAL"), "TOTAL") == TotalQualifier.NONE

    def test_previous_line_ignored(self):
        text = "GROUP A\nTOTAL 5.00"
        assert preceding_qualifier(text, text.index("TOTAL"), "TOTAL") == TotalQualifier.NONE

    def test_subtotal_prefix(self):
        text = "SUB TOTAL 5.00"
        assert preceding_qualifier(text, text.index("TOTAL"), "TOTAL") == TotalQualifier.SUBTOTAL

    def test_final_label_wins(self):
        text = "SUB INVOICE TOTAL 5.00"
        start = text.index("INVOICE")
        assert preceding_qualifier(text, start, "INVOICE TOTAL") == TotalQualifier.NONE


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:
    """Test reconciliation helpers over candidate lists."""

    def test_line_index(self):
        index = LineIndex("a\nb\nc")
        assert index.line_count == 3
        assert index.line_of(2) == 1
        assert index.line_of(4) == 2
        assert index.position(2) == 1.0

    def test_reconcilable_total_prefers_match(self):
        found = find_reconcilable_total([_candidate(10800, 100), _candidate(9000, 90)], 9000)
        assert found.candidate.value_cents == 9000
        assert found.within_tolerance

    def test_reconcilable_total_fallback(self):
        found = find_reconcilable_total([_candidate(10800, 100)], 5000)
        assert found.candidate.value_cents == 10800
        assert not found.within_tolerance
        assert found.difference_cents == 5800

    def test_reconcilable_total_empty(self):
        assert find_reconcilable_total([], 5000) is None

    def test_totals_equation(self):
        assert validate_totals_equation(10000, 800, 10805).is_valid
        result = validate_totals_equation(10000, 800, 10900)
        assert not result.is_valid
        assert result.difference_cents == 100

    def test_with_score_clamps(self):
        assert with_score(_candidate(100, 50), 150).score == 100
        assert with_score(_candidate(100, 50), -5).score == 0
