"""
Confidence scorer.

Starts from 100 and applies one policy weight per detected problem. Every
deduction is recorded as an issue (blocks validity) or a warning (does not).
"""

import re
from dataclasses import dataclass
from typing import List, Optional

import structlog

from invoicexl.engine.models import (
    ConfidenceReport,
    LineItem,
    ReconciliationOutcome,
    ReconciliationState,
    Severity,
    TotalFinderResult,
)

logger = structlog.get_logger(__name__)

GROUP_SUBTOTAL_DESCRIPTION = re.compile(
    r"\b(GROUP|CATEGORY|DEPT|DEPARTMENT|SECTION)\s*(SUB[\s-]?)?TOTAL\b|\bSUB[\s-]?TOTAL\b",
    re.IGNORECASE,
)

# Issue that does not block validity on its own
NON_BLOCKING_ISSUES = frozenset({"subtotal_mismatch_under"})


@dataclass(frozen=True)
class ConfidencePolicy:
    """Fixed weight table for confidence scoring."""
    missing_total: int = 30
    missing_subtotal: int = 10
    subtotal_over: int = 25
    subtotal_under: int = 15
    subtotal_mismatch_min_cents: int = 100
    subtotal_mismatch_pct: float = 0.01
    no_line_items: int = 20
    totals_equation: int = 15
    group_subtotal_items: int = 20
    unrepaired_item: int = 5
    unrepaired_items_cap: int = 20
    synthetic_adjustment: int = 5
    unexplained_delta: int = 20
    printed_total_replaced: int = 5
    salvaged: int = 15
    salvage_exhausted: int = 10
    low_finder_confidence: int = 5
    low_finder_threshold: int = 40
    small_total_cents: int = 100
    large_total_cents: int = 10_000_000
    many_items: int = 500
    valid_threshold: int = 60


class ConfidenceScorer:

    def __init__(self, policy: Optional[ConfidencePolicy] = None):
        self.policy = policy or ConfidencePolicy()

    def score(
        self,
        outcome: ReconciliationOutcome,
        finder: Optional[TotalFinderResult] = None,
    ) -> ConfidenceReport:
        p = self.policy
        totals = outcome.totals
        items: List[LineItem] = outcome.line_items
        items_sum = sum(item.line_total_cents for item in items)

        score = 100
        issues: List[str] = []
        warnings: List[str] = []

        if totals.total_cents <= 0:
            score -= p.missing_total
            issues.append("missing_total")

        if totals.subtotal_cents <= 0:
            score -= p.missing_subtotal
            warnings.append("missing_subtotal")
        elif items:
            diff = items_sum - totals.subtotal_cents
            threshold = max(p.subtotal_mismatch_min_cents, totals.subtotal_cents * p.subtotal_mismatch_pct)
            if diff > threshold:
                score -= p.subtotal_over
                issues.append("subtotal_mismatch_over")
                warnings.append("possible_included_group_subtotals")
            elif -diff > threshold:
                score -= p.subtotal_under
                issues.append("subtotal_mismatch_under")
                warnings.append("likely_missed_line_items")

        if not items:
            score -= p.no_line_items
            warnings.append("no_line_items")

        equation = outcome.result.get("totals_equation")
        if equation is not None and not equation.is_valid:
            score -= p.totals_equation
            issues.append("totals_equation_mismatch")

        if any(GROUP_SUBTOTAL_DESCRIPTION.search(item.description) for item in items):
            score -= p.group_subtotal_items
            issues.append("group_subtotal_items")

        unrepaired = sum(1 for item in items if not item.math_validated)
        if unrepaired:
            score -= min(p.unrepaired_items_cap, p.unrepaired_item * unrepaired)
            warnings.append("unrepaired_line_items")

        if outcome.synthetic_adjustment is not None:
            score -= p.synthetic_adjustment
            warnings.append("synthetic_adjustment")

        delta_check = outcome.result.get("unexplained_delta")
        if delta_check is not None and not delta_check.is_valid:
            if delta_check.severity == Severity.ERROR:
                score -= p.unexplained_delta
                issues.append("unexplained_delta")
            else:
                warnings.append("small_unexplained_delta")

        if outcome.printed_total_replaced:
            score -= p.printed_total_replaced
            warnings.append("printed_total_replaced")

        if totals.salvaged:
            score -= p.salvaged
            warnings.append("salvaged")

        if outcome.state == ReconciliationState.SALVAGE_FAILED:
            score -= p.salvage_exhausted
            issues.append("salvage_exhausted")

        if finder is not None and finder.found and finder.confidence < p.low_finder_threshold:
            score -= p.low_finder_confidence
            warnings.append("low_total_confidence")

        if 0 < totals.total_cents < p.small_total_cents:
            warnings.append("very_small_total")
        if totals.total_cents > p.large_total_cents:
            warnings.append("very_large_total")
        if len(items) > p.many_items:
            warnings.append("many_line_items")

        score = max(0, min(100, score))
        blocking = [issue for issue in issues if issue not in NON_BLOCKING_ISSUES]
        report = ConfidenceReport(
            score=score,
            issues=issues,
            warnings=warnings,
            is_valid=score >= p.valid_threshold and not blocking,
        )
        logger.info("Confidence scored", score=score, issues=issues, warnings=len(warnings))
        return report


def get_confidence_scorer(salvage_penalty: Optional[int] = None) -> ConfidenceScorer:
    """Create a ConfidenceScorer, optionally overriding the salvage penalty."""
    if salvage_penalty is None:
        return ConfidenceScorer()
    return ConfidenceScorer(ConfidencePolicy(salvaged=salvage_penalty))
