"""
InvoiceXL Engine - evidence combination and reconciliation for invoice text.

Turns noisy invoice text into a structured record of line items, adjustments
and totals, each backed by scored evidence and a confidence report.

Key Principles:
1. Many weak signals, one vote - independent strategies propose, values elect
2. Reconcile before trusting - totals must agree with line items and adjustments
3. Never raise on bad evidence - degrade confidence and flag for review instead
4. Deterministic - identical text yields an identical result
"""

from invoicexl.engine.orchestrator import extract_invoice, ExtractionOptions
from invoicexl.engine.models import (
    InvoiceExtraction,
    LayoutHints,
    LineItem,
    ReconciliationState,
)

__version__ = "1.0.0"
__all__ = [
    "extract_invoice",
    "ExtractionOptions",
    "InvoiceExtraction",
    "LayoutHints",
    "LineItem",
    "ReconciliationState",
]
