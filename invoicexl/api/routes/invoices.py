"""
Invoice API routes.

Thin adapter over the engine: validates payloads, converts them to engine
records and returns JSON-friendly results.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter

from invoicexl.config import get_settings
from invoicexl.engine import ExtractionOptions, extract_invoice
from invoicexl.engine.models import LayoutHints
from invoicexl.engine.money import get_money_parser
from invoicexl.engine.tolerances import Tolerances
from invoicexl.engine.total_finder import TotalFinder
from invoicexl.exceptions import EmptyInvoiceTextError, InvoiceTooLargeError
from invoicexl.schemas.invoice import (
    ExtractInvoiceRequest,
    FindTotalRequest,
    FindTotalResponse,
    LayoutHintsInput,
    ParseAmountsRequest,
    ParseAmountsResponse,
    ParsedAmountResponse,
    ProposalGroupResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


def _check_text(text: str) -> None:
    if not text or not text.strip():
        raise EmptyInvoiceTextError()
    max_chars = get_settings().max_text_chars
    if len(text) > max_chars:
        raise InvoiceTooLargeError(size=len(text), max_size=max_chars)


def _hints(layout_hints: Optional[LayoutHintsInput]) -> Optional[LayoutHints]:
    return layout_hints.to_layout_hints() if layout_hints else None


# =============================================================================
# Extraction
# =============================================================================

@router.post("/invoices/extract")
async def extract(request: ExtractInvoiceRequest) -> Dict[str, Any]:
    """
    Extract line items, adjustments and totals from invoice text.

    Returns the full extraction record with confidence report.
    """
    _check_text(request.text)

    opts = request.options
    options = ExtractionOptions(tolerances=Tolerances.from_settings())
    if opts is not None:
        options.auto_repair_line_items = opts.auto_repair_line_items
        options.enable_synthetic_adjustments = opts.enable_synthetic_adjustments
        options.enable_salvage = opts.enable_salvage
        options.include_debug = opts.include_debug

    line_items = None
    if request.line_items is not None:
        line_items = [item.to_line_item() for item in request.line_items]

    result = extract_invoice(
        request.text,
        line_items=line_items,
        layout_hints=_hints(request.layout_hints),
        options=options,
    )
    logger.info(
        "Invoice extracted",
        total_cents=result.totals.total_cents,
        confidence=result.confidence.score,
        state=result.state.value,
    )
    return result.to_dict()


@router.post("/invoices/total", response_model=FindTotalResponse)
async def find_total(request: FindTotalRequest) -> FindTotalResponse:
    """Run the multi-strategy Total Finder alone."""
    _check_text(request.text)

    result = TotalFinder().find(
        request.text,
        line_items_sum_cents=request.line_items_sum_cents,
        adjustments_net_cents=request.adjustments_net_cents,
        layout_hints=_hints(request.layout_hints),
    )
    return FindTotalResponse(
        found=result.found,
        total_cents=result.total_cents,
        confidence=result.confidence,
        strategies=[s.value for s in result.strategies],
        used_group_fallback=result.used_group_fallback,
        candidate_count=result.candidate_count,
        top_groups=[
            ProposalGroupResponse(
                value_cents=g.value_cents,
                max_score=g.max_score,
                total_score=g.total_score,
                strategies=[s.value for s in g.unique_strategies],
            )
            for g in result.top_groups
        ],
    )


# =============================================================================
# Amounts
# =============================================================================

@router.post("/amounts/parse", response_model=ParseAmountsResponse, tags=["Amounts"])
async def parse_amounts(request: ParseAmountsRequest) -> ParseAmountsResponse:
    """Parse printed money tokens into signed cents."""
    parser = get_money_parser()
    results = []
    for value in request.values:
        parsed = parser.parse(value)
        results.append(ParsedAmountResponse(
            raw=None if value is None else str(value),
            cents=parsed.to_cents(),
            is_negative=parsed.is_negative,
            is_valid=parsed.is_valid,
        ))
    return ParseAmountsResponse(results=results, total=len(results))
