"""
Pydantic schemas for invoice API endpoints.

Defines request and response models for extraction, total finding and
amount parsing.
"""
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from invoicexl.engine.models import LayoutHints, LineItem


class LineItemInput(BaseModel):
    """A line item supplied by an upstream parser."""

    description: str = Field(..., description="Item description")
    quantity: Decimal = Field(Decimal("1"), description="Billed quantity")
    unit_price: Decimal = Field(..., description="Unit price in dollars (up to 4 decimals)")
    line_total_cents: int = Field(..., description="Printed line total in cents")
    sku: Optional[str] = Field(None, description="Item code")
    weight: Optional[Decimal] = Field(None, description="Measured catch weight", gt=0)
    category: str = Field("item", description="Item category")

    def to_line_item(self) -> LineItem:
        return LineItem(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_total_cents=self.line_total_cents,
            sku=self.sku,
            weight=self.weight,
            category=self.category,
        )


class LayoutHintsInput(BaseModel):
    """Approximate totals-section line range."""

    totals_start_line: Optional[int] = Field(None, description="First line of the totals section", ge=0)
    totals_end_line: Optional[int] = Field(None, description="Last line of the totals section", ge=0)

    def to_layout_hints(self) -> LayoutHints:
        return LayoutHints(
            totals_start_line=self.totals_start_line,
            totals_end_line=self.totals_end_line,
        )


class ExtractionOptionsInput(BaseModel):
    """Per-request engine switches."""

    auto_repair_line_items: bool = Field(True, description="Repair line items whose math does not reconcile")
    enable_synthetic_adjustments: bool = Field(True, description="Balance small deltas with one synthetic adjustment")
    enable_salvage: bool = Field(True, description="Search for alternative totals when reconciliation fails")
    include_debug: bool = Field(False, description="Include checks and Total Finder votes in the response")


class ExtractInvoiceRequest(BaseModel):
    """Request model for invoice extraction."""

    text: str = Field(..., description="Raw invoice text")
    line_items: Optional[List[LineItemInput]] = Field(None, description="Pre-parsed line items")
    layout_hints: Optional[LayoutHintsInput] = Field(None, description="Totals-section location")
    options: Optional[ExtractionOptionsInput] = Field(None, description="Engine options")


class FindTotalRequest(BaseModel):
    """Request model for the Total Finder."""

    text: str = Field(..., description="Raw invoice text")
    line_items_sum_cents: Optional[int] = Field(None, description="Sum of line items in cents", ge=0)
    adjustments_net_cents: Optional[int] = Field(None, description="Net adjustments in cents")
    layout_hints: Optional[LayoutHintsInput] = Field(None, description="Totals-section location")


class ProposalGroupResponse(BaseModel):
    """All votes for one candidate value."""

    value_cents: int = Field(..., description="Candidate total in cents")
    max_score: int = Field(..., description="Best single vote")
    total_score: int = Field(..., description="Sum of all votes")
    strategies: List[str] = Field(default_factory=list, description="Distinct agreeing strategies")


class FindTotalResponse(BaseModel):
    """Response model for the Total Finder."""

    found: bool = Field(..., description="Whether any total was elected")
    total_cents: int = Field(0, description="Elected total in cents")
    confidence: int = Field(0, description="Election confidence (0-100)")
    strategies: List[str] = Field(default_factory=list, description="Strategies that voted for the total")
    used_group_fallback: bool = Field(False, description="Total taken from a group total as last resort")
    candidate_count: int = Field(0, description="Number of votes cast")
    top_groups: List[ProposalGroupResponse] = Field(default_factory=list, description="Best-ranked values")


class ParseAmountsRequest(BaseModel):
    """Request model for money token parsing."""

    values: List[Union[str, int, float, None]] = Field(
        ..., description="Money tokens to parse", min_length=1, max_length=1000,
    )


class ParsedAmountResponse(BaseModel):
    """One parsed money token."""

    raw: Optional[str] = Field(None, description="Input as received")
    cents: int = Field(..., description="Signed value in cents")
    is_negative: bool = Field(False, description="Whether the token was negative")
    is_valid: bool = Field(True, description="Whether the token parsed cleanly")


class ParseAmountsResponse(BaseModel):
    """Response model for money token parsing."""

    results: List[ParsedAmountResponse] = Field(..., description="Parsed amounts in input order")
    total: int = Field(..., description="Number of tokens parsed")
