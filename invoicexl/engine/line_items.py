"""
Line-item math validation and repair.

Checks quantity x unit_price against the printed line total under every
vendor rounding convention, and repairs items whose numbers were misread:
catch-weight items first, then a corrected quantity, then a corrected unit
price.
"""

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

import structlog

from invoicexl.engine.models import LineItem, LineItemCheck, LineItemRepair, RoundingMode
from invoicexl.engine.money import line_total_cents

logger = structlog.get_logger(__name__)

UNIT_PRICE_PLACES = Decimal("0.0001")
MAX_REPAIRED_QUANTITY = 999


class LineItemValidator:
    """Validates and repairs line items one at a time."""

    def __init__(self, tolerance_cents: int = 5, auto_repair: bool = True):
        self.tolerance_cents = tolerance_cents
        self.auto_repair = auto_repair

    def matching_mode(self, quantity: Decimal, unit_price: Decimal, actual_cents: int) -> Tuple[Optional[RoundingMode], int]:
        """First rounding mode reproducing the line total, and the best computed value."""
        best_computed = line_total_cents(quantity, unit_price)
        best_delta = abs(best_computed - actual_cents)
        for mode in RoundingMode:
            computed = line_total_cents(quantity, unit_price, mode)
            delta = abs(computed - actual_cents)
            if delta <= self.tolerance_cents:
                return mode, computed
            if delta < best_delta:
                best_computed, best_delta = computed, delta
        return None, best_computed

    def validate(self, item: LineItem, index: int = 0) -> Tuple[LineItem, LineItemCheck]:
        """
        Validate one item, repairing it when possible.

        Returns:
            Tuple of (possibly repaired item, check record).
        """
        actual = item.line_total_cents
        mode, computed = self.matching_mode(item.quantity, item.unit_price, actual)
        if mode is not None:
            validated = replace(item, math_validated=True, rounding_mode=mode)
            return validated, LineItemCheck(
                index=index,
                is_valid=True,
                computed_cents=computed,
                actual_cents=actual,
                delta_cents=actual - computed,
                rounding_mode=mode,
                message="Line total matches quantity x unit price",
            )

        if self.auto_repair and actual > 0:
            for repair in (self._repair_catch_weight, self._repair_quantity, self._repair_unit_price):
                repaired = repair(item)
                if repaired is None:
                    continue
                repaired_mode, repaired_computed = self.matching_mode(
                    repaired.quantity, repaired.unit_price, actual,
                )
                if repaired_mode is None:
                    continue
                repaired = replace(repaired, math_validated=True, rounding_mode=repaired_mode)
                logger.info(
                    "Line item repaired",
                    index=index,
                    repair=repaired.correction_applied.value,
                    quantity=str(repaired.quantity),
                    unit_price=str(repaired.unit_price),
                )
                return repaired, LineItemCheck(
                    index=index,
                    is_valid=True,
                    repair=repaired.correction_applied,
                    computed_cents=repaired_computed,
                    actual_cents=actual,
                    delta_cents=actual - repaired_computed,
                    rounding_mode=repaired_mode,
                    message=f"Repaired by {repaired.correction_applied.value}",
                )

        logger.debug("Line item math mismatch", index=index, computed_cents=computed, actual_cents=actual)
        return replace(item, math_validated=False), LineItemCheck(
            index=index,
            is_valid=False,
            computed_cents=computed,
            actual_cents=actual,
            delta_cents=actual - computed,
            message=f"{item.quantity} x {item.unit_price} = {computed} cents, printed {actual}",
        )

    def validate_all(self, items: List[LineItem]) -> Tuple[List[LineItem], List[LineItemCheck]]:
        validated: List[LineItem] = []
        checks: List[LineItemCheck] = []
        for i, item in enumerate(items):
            new_item, check = self.validate(item, i)
            validated.append(new_item)
            checks.append(check)
        return validated, checks

    # -------------------------------------------------------------------------
    # Repairs
    # -------------------------------------------------------------------------

    def _repair_catch_weight(self, item: LineItem) -> Optional[LineItem]:
        if item.weight is None or item.weight <= 0:
            return None

        # Priced per pound: the printed unit price already is the per-weight price
        weighed = line_total_cents(item.weight, item.unit_price)
        if abs(weighed - item.line_total_cents) <= self.tolerance_cents:
            return replace(
                item,
                quantity=item.weight,
                original_quantity=item.quantity,
                is_catch_weight=True,
                correction_applied=LineItemRepair.CATCH_WEIGHT,
            )

        per_weight = _divide(Decimal(item.line_total_cents) / 100, item.weight)
        if per_weight is None:
            return None
        return replace(
            item,
            quantity=item.weight,
            unit_price=per_weight,
            original_quantity=item.quantity,
            original_unit_price=item.unit_price,
            is_catch_weight=True,
            correction_applied=LineItemRepair.CATCH_WEIGHT,
        )

    def _repair_quantity(self, item: LineItem) -> Optional[LineItem]:
        if item.unit_price <= 0:
            return None
        implied = _divide(Decimal(item.line_total_cents) / 100, item.unit_price)
        if implied is None:
            return None
        rounded = implied.to_integral_value(rounding=ROUND_HALF_UP)
        if not 1 <= rounded <= MAX_REPAIRED_QUANTITY or abs(implied - rounded) >= Decimal("0.01"):
            return None
        if rounded == item.quantity:
            return None
        return replace(
            item,
            quantity=rounded,
            original_quantity=item.quantity,
            correction_applied=LineItemRepair.QUANTITY,
        )

    def _repair_unit_price(self, item: LineItem) -> Optional[LineItem]:
        if item.quantity <= 0:
            return None
        corrected = _divide(Decimal(item.line_total_cents) / 100, item.quantity)
        if corrected is None:
            return None
        return replace(
            item,
            unit_price=corrected,
            original_unit_price=item.unit_price,
            correction_applied=LineItemRepair.UNIT_PRICE,
        )


def _divide(numerator: Decimal, denominator: Decimal) -> Optional[Decimal]:
    try:
        return (numerator / denominator).quantize(UNIT_PRICE_PLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ZeroDivisionError):
        return None


@dataclass
class LineItemSummary:
    count: int = 0
    total_cents: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    validated: int = 0
    repaired: int = 0


def summarize_line_items(items: List[LineItem]) -> LineItemSummary:
    """Count, sum and per-category totals for a list of line items."""
    summary = LineItemSummary()
    for item in items:
        summary.count += 1
        summary.total_cents += item.line_total_cents
        summary.by_category[item.category] = summary.by_category.get(item.category, 0) + item.line_total_cents
        if item.math_validated:
            summary.validated += 1
        if item.correction_applied != LineItemRepair.NONE:
            summary.repaired += 1
    return summary


def apply_rounding(value_cents: Decimal, mode: RoundingMode) -> int:
    """Round a fractional cents amount the way a vendor would."""
    return line_total_cents(Decimal(1), value_cents / 100, mode)
