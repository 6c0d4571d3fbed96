"""
Tests for the multi-strategy Total Finder.

Covers:
- Election by best maximum score, then total score, then agreement
- Agreement bonus on confidence
- Group totals only elected as a capped last resort
- Individual strategies on small invoices
- Deterministic results
"""

import pytest

from invoicexl.engine.models import FinderStrategy, StrategyProposal
from invoicexl.engine.total_finder import FinderPolicy, TotalFinder, find_total

INVOICE = (
    "LINE A 10.00\n"
    "SUBTOTAL 100.00\n"
    "SALES TAX 8.00\n"
    "INVOICE TOTAL 108.00"
)


@pytest.fixture
def finder():
    return TotalFinder()


# =============================================================================
# Election
# =============================================================================

class TestElection:
    """Test grouping and ranking of strategy votes."""

    def test_labeled_invoice_total(self, finder):
        result = finder.find(INVOICE)
        assert result.found
        assert result.total_cents == 10800
        assert result.confidence == 100
        assert FinderStrategy.LABEL_ADJACENCY in result.strategies
        assert FinderStrategy.SUBTOTAL_TAX_ARITHMETIC in result.strategies
        assert not result.used_group_fallback

    def test_agreement_bonus(self, finder):
        """A single bare TOTAL line scores 70 but many strategies agree."""
        result = finder.find("TOTAL 77.77")
        assert result.total_cents == 7777
        assert result.confidence == 85
        assert len(result.strategies) >= 3

    def test_tie_broken_by_total_score(self, finder):
        groups = finder.elect([
            StrategyProposal(FinderStrategy.LABEL_ADJACENCY, 500, 90),
            StrategyProposal(FinderStrategy.BOTTOM_SCAN, 500, 60),
            StrategyProposal(FinderStrategy.LARGEST_VALUE, 700, 90),
        ])
        assert [g.value_cents for g in groups] == [500, 700]
        assert groups[0].total_score == 150
        assert groups[0].unique_strategies == [FinderStrategy.LABEL_ADJACENCY, FinderStrategy.BOTTOM_SCAN]

    def test_max_score_beats_votes(self, finder):
        groups = finder.elect([
            StrategyProposal(FinderStrategy.LABEL_ADJACENCY, 500, 40),
            StrategyProposal(FinderStrategy.BOTTOM_SCAN, 500, 40),
            StrategyProposal(FinderStrategy.END_POSITION, 500, 40),
            StrategyProposal(FinderStrategy.PATTERN_BATTERY, 900, 95),
        ])
        assert groups[0].value_cents == 900

    def test_empty_text(self, finder):
        assert not finder.find("").found
        assert not finder.find("   \n  ").found

    def test_no_amounts(self, finder):
        assert not finder.find("THANK YOU FOR YOUR BUSINESS").found

    def test_deterministic(self):
        first = find_total(INVOICE)
        second = find_total(INVOICE)
        assert first.total_cents == second.total_cents
        assert first.confidence == second.confidence
        assert first.strategies == second.strategies
        assert [g.value_cents for g in first.top_groups] == [g.value_cents for g in second.top_groups]


class TestGroupFallback:
    """Test that group totals are only a capped last resort."""

    def test_group_only_text(self, finder):
        result = finder.find("GROUP TOTAL 40.00")
        assert result.found
        assert result.total_cents == 4000
        assert result.used_group_fallback
        assert result.confidence == 20

    def test_custom_cap(self):
        result = TotalFinder(FinderPolicy(group_fallback_cap=10)).find("GROUP TOTAL 40.00")
        assert result.confidence == 10

    def test_group_total_never_beats_real_total(self, finder):
        result = finder.find("GROUP TOTAL 900.00\nINVOICE TOTAL 120.00")
        assert result.total_cents == 12000
        assert not result.used_group_fallback


# =============================================================================
# Strategies
# =============================================================================

class TestStrategies:
    """Test individual strategies in isolation."""

    def test_last_page(self, finder):
        text = (
            "PAGE 1 OF 2\n"
            "foo 10.00\n"
            "PAGE 2 OF 2\n"
            "BAR 20.00\n"
            "INVOICE TOTAL 55.00"
        )
        proposals = finder.last_page(text)
        assert [(p.value_cents, p.score) for p in proposals] == [(5500, 100)]
        assert proposals[0].strategy == FinderStrategy.LAST_PAGE

    def test_last_page_without_marker(self, finder):
        assert finder.last_page("INVOICE TOTAL 55.00") == []

    def test_arithmetic(self, finder):
        text = "SUBTOTAL 100.00\nSALES TAX 8.00\nAMOUNT DUE 108.00"
        assert [p.value_cents for p in finder.subtotal_tax_arithmetic(text)] == [10800]

    def test_arithmetic_counts_equal_fees(self, finder):
        """Two different fees with the same amount are both added."""
        text = "SUBTOTAL 100.00\nFUEL SURCHARGE 5.00\nDELIVERY FEE 5.00\nAMOUNT DUE 110.00"
        proposals = finder.subtotal_tax_arithmetic(text)
        assert [p.value_cents for p in proposals] == [11000]
        assert proposals[0].strategy == FinderStrategy.SUBTOTAL_TAX_ARITHMETIC

    def test_arithmetic_needs_tax_or_fee(self, finder):
        assert finder.subtotal_tax_arithmetic("SUBTOTAL 100.00\nINVOICE TOTAL 100.00") == []

    def test_line_item_sum(self, finder):
        text = "WIDGETS 50.00\nGADGETS 58.00\nTOTAL 108.00"
        proposals = finder.line_item_sum(text, 10800, None)
        assert [(p.value_cents, p.score) for p in proposals] == [(10800, 80)]

    def test_line_item_sum_without_items(self, finder):
        assert finder.line_item_sum("TOTAL 108.00", None, None) == []
        assert finder.line_item_sum("TOTAL 108.00", 0, None) == []

    def test_footer_value_below_label(self, finder):
        proposals = finder.footer_values(["INVOICE TOTAL", "137.31"])
        assert [(p.value_cents, p.score) for p in proposals] == [(13731, 95)]

    def test_excluded_lines(self, finder):
        lines = ["SALES TAX TOTAL 8.00", "PREVIOUS BALANCE 500.00"]
        assert finder.label_adjacency(lines) == []
        assert finder.keyword_proximity(lines) == []
        assert finder.bottom_scan(lines) == []

    def test_ranked_candidates_skip_groups(self, finder):
        proposals = finder.ranked_candidates("GROUP TOTAL 40.00\nINVOICE TOTAL 120.00")
        assert {p.value_cents for p in proposals} == {12000}
