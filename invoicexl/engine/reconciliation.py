"""
Reconciliation engine for the InvoiceXL Engine.

Drives one invoice through the reconciliation lifecycle:

    UNVALIDATED -> LINE_ITEM_CHECKED -> TOTALS_CHECKED
        -> VALID
        -> SALVAGE_ATTEMPTED -> SALVAGE_SUCCEEDED | SALVAGE_FAILED

Line items are validated and repaired, the printed total is weighed against
the computed one, the totals equations are checked, and any residual delta is
either explained by one synthetic adjustment or reported. Failures hand over
to the salvage search.
"""

from dataclasses import replace
from typing import List, Optional

import structlog

from invoicexl.engine.line_items import LineItemValidator
from invoicexl.engine.models import (
    Adjustment,
    AdjustmentCategory,
    CheckScope,
    InvoiceTotals,
    LayoutHints,
    LineItem,
    LineItemCheck,
    ReconciliationCheck,
    ReconciliationOutcome,
    ReconciliationResult,
    ReconciliationState,
    Severity,
    ValueSource,
)
from invoicexl.engine.salvage import SalvageSearch
from invoicexl.engine.tolerances import Tolerances

logger = structlog.get_logger(__name__)

SYNTHETIC_CHARGE_LABEL = "Unclassified Charge"
SYNTHETIC_CREDIT_LABEL = "Unclassified Credit"


def _amount(adjustment: Optional[Adjustment]) -> int:
    return adjustment.amount_cents if adjustment is not None else 0


def _variance(actual: int, expected: int) -> float:
    if expected == 0:
        return 0.0 if actual == 0 else 1.0
    return abs(actual - expected) / abs(expected)


class ReconciliationEngine:
    """
    Reconciles line items, adjustments and totals for one invoice.

    Never raises on bad evidence: every mismatch is recorded as a
    ReconciliationCheck with a severity.
    """

    def __init__(
        self,
        tolerances: Optional[Tolerances] = None,
        auto_repair_line_items: bool = True,
        enable_synthetic_adjustments: bool = True,
        enable_salvage: bool = True,
        salvage: Optional[SalvageSearch] = None,
    ):
        self.tolerances = tolerances or Tolerances()
        self.validator = LineItemValidator(self.tolerances.line_item_cents, auto_repair_line_items)
        self.enable_synthetic_adjustments = enable_synthetic_adjustments
        self.enable_salvage = enable_salvage
        self.salvage = salvage or SalvageSearch(self.tolerances)

    def reconcile(
        self,
        text: str,
        line_items: List[LineItem],
        totals: InvoiceTotals,
        adjustments: List[Adjustment],
        layout_hints: Optional[LayoutHints] = None,
    ) -> ReconciliationOutcome:
        """
        Run the full reconciliation lifecycle.

        Args:
            text: Invoice text, used again by the salvage search.
            line_items: Parsed or caller-supplied line items.
            totals: Totals as extracted (printed total, subtotal, tax).
            adjustments: Extracted adjustments.
            layout_hints: Optional totals-section location.

        Returns:
            ReconciliationOutcome with the final state and every check.
        """
        history = [ReconciliationState.UNVALIDATED]
        known = [a for a in adjustments if not a.is_synthetic]
        known_net = sum(a.amount_cents for a in known)

        # Line items
        items, item_checks = self.validator.validate_all(line_items)
        items_sum = sum(item.line_total_cents for item in items)
        history.append(ReconciliationState.LINE_ITEM_CHECKED)

        result = ReconciliationResult()
        self._add_line_item_checks(result, item_checks)

        # Printed total priority
        totals, replaced = self._authoritative_total(totals, items_sum, known_net, result)

        # Totals, with any synthetic balancing entry counted as a known adjustment
        synthetic, unexplained = self._explain_delta(result, totals, items_sum, known_net)
        self._check_totals(result, totals, items_sum, known_net, _amount(synthetic))
        history.append(ReconciliationState.TOTALS_CHECKED)

        outcome = ReconciliationOutcome(
            state=ReconciliationState.TOTALS_CHECKED,
            line_items=items,
            line_item_checks=item_checks,
            totals=replace(totals, adjustments_net_cents=known_net + _amount(synthetic)),
            adjustments=known + ([synthetic] if synthetic else []),
            result=result,
            synthetic_adjustment=synthetic,
            printed_total_replaced=replaced,
            unexplained_delta_cents=unexplained,
            state_history=history,
        )

        if not self._needs_salvage(result):
            outcome.state = ReconciliationState.VALID
            history.append(outcome.state)
            logger.info("Reconciliation valid", total_cents=totals.total_cents, items_sum_cents=items_sum)
            return outcome

        if not self.enable_salvage:
            outcome.needs_review = True
            logger.warning("Reconciliation failed, salvage disabled", total_cents=totals.total_cents)
            return outcome

        history.append(ReconciliationState.SALVAGE_ATTEMPTED)
        salvage = self.salvage.attempt(text, items_sum, totals, layout_hints)
        outcome.salvage = salvage

        if not salvage.succeeded:
            outcome.state = ReconciliationState.SALVAGE_FAILED
            outcome.needs_review = True
            history.append(outcome.state)
            return outcome

        # Re-run the totals checks and delta explanation on salvaged totals
        salvaged_result = ReconciliationResult()
        self._add_line_item_checks(salvaged_result, item_checks)
        salvaged_result.add_check(ReconciliationCheck(
            check_name="salvage",
            is_valid=True,
            expected_value=totals.total_cents,
            actual_value=salvage.totals.total_cents,
            message=f"Stage {salvage.stage}: {salvage.reason}",
        ))
        new_totals = replace(salvage.totals, computed_total_cents=items_sum + known_net)
        synthetic, unexplained = self._explain_delta(salvaged_result, new_totals, items_sum, known_net)
        self._check_totals(salvaged_result, new_totals, items_sum, known_net, _amount(synthetic))

        outcome.state = ReconciliationState.SALVAGE_SUCCEEDED
        outcome.totals = replace(new_totals, adjustments_net_cents=known_net + _amount(synthetic))
        outcome.result = salvaged_result
        outcome.synthetic_adjustment = synthetic
        outcome.unexplained_delta_cents = unexplained
        outcome.adjustments = known + ([synthetic] if synthetic else [])
        outcome.needs_review = salvaged_result.has_totals_failure
        history.append(outcome.state)
        return outcome

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _add_line_item_checks(self, result: ReconciliationResult, checks: List[LineItemCheck]):
        for check in checks:
            result.add_check(ReconciliationCheck(
                check_name=f"line_item_{check.index}",
                is_valid=check.is_valid,
                scope=CheckScope.LINE_ITEM,
                expected_value=check.computed_cents,
                actual_value=check.actual_cents,
                delta=check.delta_cents,
                severity=Severity.INFO if check.is_valid else Severity.WARNING,
                message=check.message,
            ))

    def _authoritative_total(
        self,
        totals: InvoiceTotals,
        items_sum: int,
        known_net: int,
        result: ReconciliationResult,
    ):
        """Decide between the printed and the computed total."""
        tol = self.tolerances
        printed = totals.printed_total_cents or totals.total_cents
        computed = items_sum + known_net
        base = replace(totals, printed_total_cents=printed, computed_total_cents=computed)

        if printed <= 0:
            if computed > 0 and items_sum > 0:
                result.add_check(ReconciliationCheck(
                    check_name="missing_printed_total",
                    is_valid=False,
                    expected_value=computed,
                    severity=Severity.WARNING,
                    message="No printed total; using line items plus adjustments",
                ))
                return replace(base, total_cents=computed, total_source=ValueSource.COMPUTED), False
            return replace(base, total_cents=0, total_source=ValueSource.NONE), False

        implausible = computed > 0 and items_sum > 0 and (
            printed < tol.printed_total_floor_cents or printed < computed * tol.printed_total_min_ratio
        )
        if implausible:
            logger.warning("Printed total replaced by computed total", printed_cents=printed, computed_cents=computed)
            result.add_check(ReconciliationCheck(
                check_name="printed_total_priority",
                is_valid=False,
                expected_value=computed,
                actual_value=printed,
                delta=printed - computed,
                delta_percent=round(_variance(printed, computed) * 100, 2),
                severity=Severity.WARNING,
                message=f"Printed total {printed} is implausible against computed {computed}",
            ))
            return replace(base, total_cents=computed, total_source=ValueSource.COMPUTED), True

        return replace(base, total_cents=printed, total_source=ValueSource.PRINTED), False

    def _check_totals(
        self,
        result: ReconciliationResult,
        totals: InvoiceTotals,
        items_sum: int,
        known_net: int,
        synthetic_cents: int = 0,
    ):
        """
        Add the subtotal, equation and sum-vs-total checks.

        The equation holds with or without the synthetic balancing entry: the
        entry either is an unprinted charge on top of the subtotal or covers a
        gap between the line items and the subtotal.
        """
        tol = self.tolerances
        subtotal = totals.subtotal_cents
        total = totals.total_cents

        if subtotal > 0 and items_sum > 0:
            variance = _variance(items_sum, subtotal)
            result.add_check(ReconciliationCheck(
                check_name="sum_vs_subtotal",
                is_valid=variance <= tol.sum_vs_subtotal_pct,
                expected_value=subtotal,
                actual_value=items_sum,
                delta=items_sum - subtotal,
                delta_percent=round(variance * 100, 2),
                severity=Severity.WARNING,
                message=f"Line items sum {items_sum} vs subtotal {subtotal}",
            ))

        if subtotal > 0 and total > 0:
            net = min(
                {known_net, known_net + synthetic_cents},
                key=lambda n: (_variance(total, subtotal + n), n != known_net),
            )
            computed = subtotal + net
            variance = _variance(total, computed)
            result.add_check(ReconciliationCheck(
                check_name="totals_equation",
                is_valid=variance <= tol.totals_equation_pct,
                expected_value=computed,
                actual_value=total,
                delta=total - computed,
                delta_percent=round(variance * 100, 2),
                severity=Severity.ERROR,
                message=f"Subtotal {subtotal} + adjustments {net} vs total {total}",
            ))
        elif total > 0 and items_sum > 0:
            computed = items_sum + known_net + synthetic_cents
            variance = _variance(total, computed)
            result.add_check(ReconciliationCheck(
                check_name="sum_vs_total",
                is_valid=variance <= tol.sum_vs_subtotal_pct,
                expected_value=computed,
                actual_value=total,
                delta=total - computed,
                delta_percent=round(variance * 100, 2),
                severity=Severity.WARNING,
                message=f"Line items {items_sum} + adjustments {known_net} vs total {total}",
            ))

    def _explain_delta(self, result: ReconciliationResult, totals: InvoiceTotals, items_sum: int, known_net: int):
        """
        Account for total - (items + adjustments).

        Returns:
            Tuple of (synthetic adjustment or None, unexplained delta cents).
        """
        tol = self.tolerances
        total = totals.total_cents
        if total <= 0 or items_sum <= 0:
            return None, 0

        delta = total - (items_sum + known_net)
        if abs(delta) <= tol.synthetic_min_delta_cents:
            return None, 0

        ratio = abs(delta) / total
        if ratio < tol.synthetic_max_pct:
            if not self.enable_synthetic_adjustments:
                result.add_check(ReconciliationCheck(
                    check_name="unexplained_delta",
                    is_valid=False,
                    expected_value=items_sum + known_net,
                    actual_value=total,
                    delta=delta,
                    delta_percent=round(ratio * 100, 2),
                    severity=Severity.WARNING,
                    message="Small delta left unexplained",
                ))
                return None, delta

            synthetic = Adjustment(
                category=AdjustmentCategory.FEE if delta > 0 else AdjustmentCategory.CREDIT,
                label=SYNTHETIC_CHARGE_LABEL if delta > 0 else SYNTHETIC_CREDIT_LABEL,
                amount_cents=delta,
                is_synthetic=True,
                evidence=f"total {total} - line items {items_sum} - adjustments {known_net}",
            )
            result.add_check(ReconciliationCheck(
                check_name="synthetic_adjustment",
                is_valid=True,
                expected_value=items_sum + known_net,
                actual_value=total,
                delta=delta,
                delta_percent=round(ratio * 100, 2),
                message=f"{synthetic.label} of {delta} cents balances the invoice",
            ))
            logger.info("Synthetic adjustment created", amount_cents=delta, category=synthetic.category.value)
            return synthetic, 0

        result.add_check(ReconciliationCheck(
            check_name="unexplained_delta",
            is_valid=False,
            expected_value=items_sum + known_net,
            actual_value=total,
            delta=delta,
            delta_percent=round(ratio * 100, 2),
            severity=Severity.ERROR,
            message=f"Delta of {delta} cents is {ratio:.0%} of the total",
        ))
        return None, delta

    def _needs_salvage(self, result: ReconciliationResult) -> bool:
        if result.has_totals_failure:
            return True
        check = result.get("sum_vs_subtotal")
        return (
            check is not None
            and check.delta_percent is not None
            and check.delta_percent / 100 > self.tolerances.salvage_trigger_pct
        )


def confidence_adjustment(result: ReconciliationResult) -> int:
    """Confidence points earned or lost by reconciliation, within -50..+30."""
    adjustment = 0
    if result.all_passed and not result.warnings:
        adjustment += 20
    adjustment += 10 if result.line_items_valid else -20
    adjustment += 10 if result.totals_valid else -15
    adjustment -= min(15, 5 * result.warnings)
    return max(-50, min(30, adjustment))


# Factory
def get_reconciliation_engine(tolerances: Optional[Tolerances] = None, **kwargs) -> ReconciliationEngine:
    """Create a ReconciliationEngine with the given tolerances."""
    return ReconciliationEngine(tolerances=tolerances or Tolerances.from_settings(), **kwargs)
