"""
Salvage search.

When reconciliation fails, totals are re-derived from scratch: total and
subtotal candidates, adjustments and Total Finder votes are extracted again
and searched in three stages, loosest evidence last.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

from invoicexl.engine.adjustments import extract_adjustments
from invoicexl.engine.candidates import extract_subtotal_candidates, extract_total_candidates, non_group
from invoicexl.engine.models import InvoiceTotals, LayoutHints, SalvageOutcome, ValueSource
from invoicexl.engine.tolerances import Tolerances
from invoicexl.engine.total_finder import TotalFinder

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SalvageCandidate:
    value_cents: int
    score: int
    position: float = 0.0


def _pct(diff: int, base: int) -> float:
    return abs(diff) / base if base > 0 else 1.0


class SalvageSearch:
    """Three-stage search for totals consistent with the line items."""

    def __init__(self, tolerances: Optional[Tolerances] = None, finder: Optional[TotalFinder] = None):
        self.tolerances = tolerances or Tolerances()
        self.finder = finder or TotalFinder()

    def attempt(
        self,
        text: str,
        items_sum_cents: int,
        original: InvoiceTotals,
        layout_hints: Optional[LayoutHints] = None,
    ) -> SalvageOutcome:
        tol = self.tolerances
        extraction = extract_adjustments(text, layout_hints)
        adjustments_net = extraction.summary.net_cents
        tax_cents = extraction.summary.tax_cents

        totals = self._total_candidates(text, items_sum_cents, adjustments_net, layout_hints)
        subtotals = non_group(extract_subtotal_candidates(text, layout_hints))
        considered = len(totals) + len(subtotals)

        def outcome(stage: int, total: int, subtotal: int, subtotal_source: ValueSource, reason: str) -> SalvageOutcome:
            logger.info("Salvage succeeded", stage=stage, total_cents=total, subtotal_cents=subtotal)
            return SalvageOutcome(
                succeeded=True,
                stage=stage,
                totals=InvoiceTotals(
                    subtotal_cents=subtotal,
                    tax_cents=tax_cents,
                    total_cents=total,
                    adjustments_net_cents=adjustments_net,
                    printed_total_cents=original.printed_total_cents,
                    computed_total_cents=items_sum_cents + adjustments_net,
                    total_source=ValueSource.SALVAGED,
                    subtotal_source=subtotal_source,
                    tax_source=ValueSource.ADJUSTMENTS if tax_cents else ValueSource.NONE,
                    salvaged=True,
                ),
                reason=reason,
                candidates_considered=considered,
            )

        matching_subtotal = next(
            (s for s in subtotals if _pct(s.value_cents - items_sum_cents, items_sum_cents) <= tol.sum_vs_subtotal_pct),
            None,
        )

        # Stage 1: a total that equals items + adjustments
        expected = items_sum_cents + adjustments_net
        for candidate in totals:
            if _pct(candidate.value_cents - expected, expected) <= tol.salvage_match_pct:
                if matching_subtotal is not None:
                    subtotal, source = matching_subtotal.value_cents, ValueSource.CANDIDATES
                else:
                    subtotal, source = items_sum_cents, ValueSource.COMPUTED
                return outcome(1, candidate.value_cents, subtotal, source, "Total matches line items plus adjustments")

        # Stage 2: subtotal agrees with items and total agrees with subtotal + adjustments
        for subtotal in subtotals:
            if _pct(subtotal.value_cents - items_sum_cents, items_sum_cents) > tol.sum_vs_subtotal_pct:
                continue
            target = subtotal.value_cents + adjustments_net
            for candidate in totals:
                if _pct(candidate.value_cents - target, target) <= tol.totals_equation_pct:
                    return outcome(
                        2, candidate.value_cents, subtotal.value_cents, ValueSource.CANDIDATES,
                        "Subtotal and total reconcile with adjustments",
                    )

        # Stage 3: original total is grossly wrong, take anything closer
        original_error = abs(original.total_cents - items_sum_cents)
        if items_sum_cents > 0 and _pct(original_error, items_sum_cents) > tol.salvage_gross_error_pct:
            closer = [c for c in totals if abs(c.value_cents - items_sum_cents) < original_error]
            if closer:
                best = min(closer, key=lambda c: abs(c.value_cents - items_sum_cents))
                subtotal = matching_subtotal.value_cents if matching_subtotal else items_sum_cents
                source = ValueSource.CANDIDATES if matching_subtotal else ValueSource.COMPUTED
                return outcome(3, best.value_cents, subtotal, source, "Closest total to line items")

        logger.warning(
            "Salvage exhausted",
            items_sum_cents=items_sum_cents,
            original_total_cents=original.total_cents,
            candidates=considered,
        )
        return SalvageOutcome(
            succeeded=False,
            reason="No candidate reconciles with the line items",
            candidates_considered=considered,
        )

    def _total_candidates(
        self,
        text: str,
        items_sum_cents: int,
        adjustments_net: int,
        layout_hints: Optional[LayoutHints],
    ) -> List[SalvageCandidate]:
        pool = {}
        for c in non_group(extract_total_candidates(text, layout_hints)):
            pool.setdefault(c.value_cents, SalvageCandidate(c.value_cents, c.score, c.position))
        for p in self.finder.collect_proposals(text, items_sum_cents, adjustments_net, layout_hints):
            current = pool.get(p.value_cents)
            if current is None or p.score > current.score:
                pool[p.value_cents] = SalvageCandidate(
                    p.value_cents, p.score, current.position if current else 0.0,
                )
        return sorted(pool.values(), key=lambda c: (-c.score, -c.position))
