"""
Orchestrator for the InvoiceXL Engine.

Main entry point that coordinates the multi-pass pipeline:
Pass 1: Normalize text
Pass 2: Line items (supplied, or parsed with the number classifier)
Pass 3: Adjustments
Pass 4: Subtotal and tax selection
Pass 5: Total Finder election
Pass 6: Reconciliation (repair, checks, synthetic adjustment, salvage)
Pass 7: Confidence scoring
"""

import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from invoicexl.engine.adjustments import get_adjustments_extractor
from invoicexl.engine.candidates import extract_subtotal_candidates, extract_tax_candidates, non_group
from invoicexl.engine.line_items import summarize_line_items
from invoicexl.engine.models import (
    Adjustment,
    AdjustmentCategory,
    Candidate,
    InvoiceExtraction,
    InvoiceTotals,
    LayoutHints,
    LineItem,
    ValueSource,
    to_jsonable,
)
from invoicexl.engine.number_classifier import get_number_classifier
from invoicexl.engine.reconciliation import ReconciliationEngine, confidence_adjustment
from invoicexl.engine.scoring import get_confidence_scorer
from invoicexl.engine.tolerances import Tolerances
from invoicexl.engine.total_finder import TotalFinder

logger = structlog.get_logger(__name__)

TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)


@dataclass
class ExtractionOptions:
    """Configuration options for one extraction run."""
    # Tolerances (None reads them from settings)
    tolerances: Optional[Tolerances] = None
    # Repairs
    auto_repair_line_items: bool = True
    enable_synthetic_adjustments: bool = True
    enable_salvage: bool = True
    # Output
    include_debug: bool = False
    verbose: bool = False


def normalize_text(text: str) -> str:
    """Unify line endings and drop trailing whitespace."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", "  ")
    return TRAILING_SPACE.sub("", text)


def select_candidate_tax(
    candidates: List[Candidate],
    subtotal_cents: int,
    total_cents: int,
    adjustments_net_cents: int,
    tolerance_pct: float,
) -> Optional[Candidate]:
    """
    Pick the best tax candidate that closes subtotal + adjustments + tax = total.

    Without both a subtotal and a total there is nothing to reconcile against
    and the best-scored candidate is taken as is.
    """
    if not candidates:
        return None
    if subtotal_cents <= 0 or total_cents <= 0:
        return candidates[0]
    for candidate in candidates:
        computed = subtotal_cents + adjustments_net_cents + candidate.value_cents
        if abs(total_cents - computed) <= total_cents * tolerance_pct:
            return candidate
    return None


def extract_invoice(
    text: str,
    line_items: Optional[List[LineItem]] = None,
    layout_hints: Optional[LayoutHints] = None,
    options: Optional[ExtractionOptions] = None,
) -> InvoiceExtraction:
    """
    Main entry point for the InvoiceXL Engine.

    Args:
        text: Raw invoice text.
        line_items: Line items from an upstream parser; parsed from the text when None.
        layout_hints: Optional totals-section location.
        options: Engine configuration options.

    Returns:
        InvoiceExtraction with line items, totals, adjustments and confidence.
    """
    run_id = str(uuid.uuid4())
    options = options or ExtractionOptions()
    tolerances = options.tolerances or Tolerances.from_settings()

    logger.info(
        "Starting InvoiceXL Engine",
        run_id=run_id,
        chars=len(text or ""),
        supplied_line_items=line_items is not None,
        layout_hints=layout_hints is not None,
    )

    # =================================================================
    # Pass 1: NORMALIZE
    # =================================================================
    text = normalize_text(text or "")

    # =================================================================
    # Pass 2: LINE ITEMS
    # =================================================================
    if line_items is None:
        items = get_number_classifier().parse_line_items(text)
    else:
        items = list(line_items)
    items_summary = summarize_line_items(items)
    logger.info("Pass 2: Line items", run_id=run_id, count=items_summary.count, sum_cents=items_summary.total_cents)

    # =================================================================
    # Pass 3: ADJUSTMENTS
    # =================================================================
    adjustments = get_adjustments_extractor().extract(text, layout_hints)
    logger.info(
        "Pass 3: Adjustments",
        run_id=run_id,
        count=len(adjustments.adjustments),
        net_cents=adjustments.summary.net_cents,
    )

    # =================================================================
    # Pass 4: SUBTOTAL AND TAX
    # =================================================================
    subtotals = non_group(extract_subtotal_candidates(text, layout_hints))
    subtotal_cents = subtotals[0].value_cents if subtotals else 0
    subtotal_source = ValueSource.PRINTED if subtotals else ValueSource.NONE

    tax_cents = adjustments.summary.tax_cents
    tax_source = ValueSource.ADJUSTMENTS if tax_cents else ValueSource.NONE
    tax_candidates = [] if tax_cents else extract_tax_candidates(text, layout_hints)
    logger.info(
        "Pass 4: Subtotal and tax",
        run_id=run_id,
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        tax_candidates=len(tax_candidates),
    )

    # =================================================================
    # Pass 5: TOTAL FINDER
    # =================================================================
    finder = TotalFinder().find(
        text,
        line_items_sum_cents=items_summary.total_cents or None,
        adjustments_net_cents=adjustments.summary.net_cents,
        layout_hints=layout_hints,
    )
    logger.info(
        "Pass 5: Total Finder",
        run_id=run_id,
        found=finder.found,
        total_cents=finder.total_cents,
        confidence=finder.confidence,
        group_fallback=finder.used_group_fallback,
    )

    known_adjustments = list(adjustments.adjustments)
    if tax_candidates:
        tax = select_candidate_tax(
            tax_candidates,
            subtotal_cents,
            finder.total_cents,
            adjustments.summary.net_cents,
            tolerances.totals_equation_pct,
        )
        if tax is not None:
            tax_cents = tax.value_cents
            tax_source = ValueSource.CANDIDATES
            known_adjustments.append(Adjustment(
                category=AdjustmentCategory.TAX,
                label=tax.label.title(),
                amount_cents=tax.value_cents,
                line_number=tax.line_number,
                evidence=tax.evidence,
            ))
        else:
            logger.warning(
                "Tax candidates rejected",
                run_id=run_id,
                values=[c.value_cents for c in tax_candidates],
                subtotal_cents=subtotal_cents,
                total_cents=finder.total_cents,
            )

    totals = InvoiceTotals(
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        total_cents=finder.total_cents,
        adjustments_net_cents=sum(a.amount_cents for a in known_adjustments),
        printed_total_cents=finder.total_cents,
        total_source=ValueSource.PRINTED if finder.found else ValueSource.NONE,
        subtotal_source=subtotal_source,
        tax_source=tax_source,
    )

    # =================================================================
    # Pass 6: RECONCILIATION
    # =================================================================
    engine = ReconciliationEngine(
        tolerances=tolerances,
        auto_repair_line_items=options.auto_repair_line_items,
        enable_synthetic_adjustments=options.enable_synthetic_adjustments,
        enable_salvage=options.enable_salvage,
    )
    outcome = engine.reconcile(text, items, totals, known_adjustments, layout_hints)
    logger.info(
        "Pass 6: Reconciliation",
        run_id=run_id,
        state=outcome.state.value,
        total_cents=outcome.totals.total_cents,
        total_source=outcome.totals.total_source.value,
        critical_failures=outcome.result.critical_failures,
        synthetic=outcome.synthetic_adjustment is not None,
    )

    # =================================================================
    # Pass 7: CONFIDENCE
    # =================================================================
    report = get_confidence_scorer(tolerances.salvage_penalty).score(outcome, finder)

    debug: Dict[str, Any] = {}
    if options.include_debug:
        debug = {
            "run_id": run_id,
            "state_history": [s.value for s in outcome.state_history],
            "checks": to_jsonable(outcome.result.checks),
            "line_item_checks": to_jsonable(outcome.line_item_checks),
            "total_finder": to_jsonable(finder),
            "salvage": to_jsonable(outcome.salvage) if outcome.salvage else None,
            "reconciliation_adjustment": confidence_adjustment(outcome.result),
        }

    logger.info(
        "InvoiceXL Engine complete",
        run_id=run_id,
        state=outcome.state.value,
        total_cents=outcome.totals.total_cents,
        confidence=report.score,
        needs_review=outcome.needs_review or not report.is_valid,
    )

    return InvoiceExtraction(
        line_items=outcome.line_items,
        totals=outcome.totals,
        adjustments=outcome.adjustments,
        confidence=report,
        state=outcome.state,
        needs_review=outcome.needs_review,
        debug=debug,
    )
