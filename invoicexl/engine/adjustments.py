"""
Adjustments extractor.

Finds invoice-level amounts that sit between the line items and the total:
taxes, fees, shipping, discounts, credits, deposits and allowances. Each
adjustment carries a signed amount in minor units so that

    subtotal + sum(adjustments) == total
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import structlog

from invoicexl.engine.models import (
    Adjustment,
    AdjustmentCategory,
    AdjustmentExtraction,
    AdjustmentSummary,
    AdjustmentValidation,
    LayoutHints,
)
from invoicexl.engine.money import parse_amount

logger = structlog.get_logger(__name__)

# Optional minus, currency sign, amount, optional trailing CR or minus
_VALUE = r"[:\t ]*(-?[ \t]*\$?[ \t]*-?[\d,]+\.\d{2}(?:[ \t]*CR\b|-)?)"

NEGATIVE_MARKER = re.compile(r"-\s*\$|\bCR\b|\bCREDIT\b|\bLESS\b|\bMINUS\b", re.IGNORECASE)


@dataclass(frozen=True)
class AdjustmentRule:
    category: AdjustmentCategory
    pattern: "re.Pattern[str]"
    label: str


def _rule(category: AdjustmentCategory, regex: str, label: str) -> AdjustmentRule:
    return AdjustmentRule(category, re.compile(regex + _VALUE, re.IGNORECASE), label)


_T = AdjustmentCategory

# Specific rules come before generic ones within each category
ADJUSTMENT_RULES: Tuple[AdjustmentRule, ...] = (
    _rule(_T.TAX, r"SALES\s*TAX", "Sales Tax"),
    _rule(_T.TAX, r"STATE\s*TAX", "State Tax"),
    _rule(_T.TAX, r"LOCAL\s*TAX", "Local Tax"),
    _rule(_T.TAX, r"COUNTY\s*TAX", "County Tax"),
    _rule(_T.TAX, r"\bTAX(?:\s*(?:AMOUNT|AMT|TOTAL))?", "Tax"),
    _rule(_T.TAX, r"\bVAT\b", "VAT"),
    _rule(_T.TAX, r"\bGST\b", "GST"),
    _rule(_T.TAX, r"\bHST\b", "HST"),

    _rule(_T.FEE, r"FUEL\s*(?:SUR)?CHARGE", "Fuel Surcharge"),
    _rule(_T.FEE, r"DELIVERY\s*(?:FEE|CHARGE)", "Delivery Fee"),
    _rule(_T.FEE, r"SERVICE\s*(?:FEE|CHARGE)", "Service Fee"),
    _rule(_T.FEE, r"HANDLING\s*(?:FEE|CHARGE)", "Handling Fee"),
    _rule(_T.FEE, r"PROCESSING\s*(?:FEE|CHARGE)?", "Processing Fee"),
    _rule(_T.FEE, r"ENVIRONMENTAL\s*(?:FEE|CHARGE)?", "Environmental Fee"),
    _rule(_T.FEE, r"RESTOCKING\s*(?:FEE|CHARGE)?", "Restocking Fee"),
    _rule(_T.FEE, r"LATE\s*(?:FEE|CHARGE)", "Late Fee"),
    _rule(_T.FEE, r"RUSH\s*(?:FEE|CHARGE)?", "Rush Fee"),

    _rule(_T.SHIPPING, r"SHIPPING\s*(?:&|AND)\s*HANDLING", "Shipping & Handling"),
    _rule(_T.SHIPPING, r"SHIPPING", "Shipping"),
    _rule(_T.SHIPPING, r"FREIGHT", "Freight"),
    _rule(_T.SHIPPING, r"\bS\s*&\s*H\b", "S&H"),
    _rule(_T.SHIPPING, r"POSTAGE", "Postage"),

    _rule(_T.DISCOUNT, r"VOLUME\s*DISCOUNT", "Volume Discount"),
    _rule(_T.DISCOUNT, r"EARLY\s*PAY(?:MENT)?\s*DISCOUNT", "Early Pay Discount"),
    _rule(_T.DISCOUNT, r"TRADE\s*DISCOUNT", "Trade Discount"),
    _rule(_T.DISCOUNT, r"LOYALTY\s*(?:DISCOUNT|REWARD)?", "Loyalty Discount"),
    _rule(_T.DISCOUNT, r"PROMO(?:TION(?:AL)?)?\s*(?:DISCOUNT)?", "Promotional Discount"),
    _rule(_T.DISCOUNT, r"COUPON", "Coupon"),
    _rule(_T.DISCOUNT, r"SAVINGS", "Savings"),
    _rule(_T.DISCOUNT, r"DISCOUNT", "Discount"),

    _rule(_T.CREDIT, r"RETURN\s*CREDIT", "Return Credit"),
    _rule(_T.CREDIT, r"\bCREDIT(?:\s*MEMO)?", "Credit"),
    _rule(_T.CREDIT, r"REFUND", "Refund"),
    _rule(_T.CREDIT, r"ADJUSTMENT", "Adjustment"),

    _rule(_T.DEPOSIT, r"ADVANCE\s*PAYMENT", "Advance Payment"),
    _rule(_T.DEPOSIT, r"PREPAID", "Prepaid"),
    _rule(_T.DEPOSIT, r"DEPOSIT", "Deposit"),

    _rule(_T.ALLOWANCE, r"ALLOWANCE", "Allowance"),
    _rule(_T.ALLOWANCE, r"REBATE", "Rebate"),
)

# Lines that merely mention a category word inside a totals label
TOTAL_LINE = re.compile(r"\b(SUB[\s-]?TOTAL|INVOICE\s*TOTAL|GRAND\s*TOTAL|TOTAL\s*DUE|AMOUNT\s*DUE)\b", re.IGNORECASE)

LAYOUT_LOOKBACK_LINES = 10


class AdjustmentsExtractor:
    """
    Pattern-table extractor for invoice adjustments.

    A value already claimed by an earlier, more specific rule is not counted
    again by a later generic rule.
    """

    def __init__(self, rules: Tuple[AdjustmentRule, ...] = ADJUSTMENT_RULES):
        self.rules = rules

    def extract(self, text: str, layout_hints: Optional[LayoutHints] = None) -> AdjustmentExtraction:
        if not text:
            return AdjustmentExtraction()

        offset = 0
        if layout_hints is not None and layout_hints.has_totals_section:
            first_line = max(0, layout_hints.totals_start_line - LAYOUT_LOOKBACK_LINES)
            offset = self._line_offset(text, first_line)
        search_text = text[offset:]
        first_line_number = text.count("\n", 0, offset)

        adjustments: List[Adjustment] = []
        claimed: Set[int] = set()
        seen: Set[Tuple[AdjustmentCategory, int, str]] = set()

        for rule in self.rules:
            for match in rule.pattern.finditer(search_text):
                if match.start(1) in claimed:
                    continue
                line_start = search_text.rfind("\n", 0, match.start()) + 1
                line_end = search_text.find("\n", match.start())
                line = search_text[line_start:line_end if line_end >= 0 else len(search_text)]
                if TOTAL_LINE.search(line):
                    continue

                raw = match.group(1)
                parsed = parse_amount(raw.replace(" ", ""))
                magnitude = abs(parsed)
                if magnitude == 0:
                    continue

                negative = (
                    rule.category.default_sign < 0
                    or parsed < 0
                    or bool(NEGATIVE_MARKER.search(line))
                )
                key = (rule.category, magnitude, rule.label)
                claimed.add(match.start(1))
                if key in seen:
                    continue
                seen.add(key)

                adjustments.append(Adjustment(
                    category=rule.category,
                    label=rule.label,
                    amount_cents=-magnitude if negative else magnitude,
                    line_number=first_line_number + search_text.count("\n", 0, match.start()),
                    evidence=line.strip()[:100],
                ))

        adjustments.sort(key=lambda a: a.line_number)
        summary = summarize(adjustments)
        logger.debug(
            "Adjustments extracted",
            count=len(adjustments),
            net_cents=summary.net_cents,
            categories=sorted({a.category.value for a in adjustments}),
        )
        return AdjustmentExtraction(adjustments=adjustments, summary=summary)

    @staticmethod
    def _line_offset(text: str, line_number: int) -> int:
        offset = 0
        for _ in range(line_number):
            next_break = text.find("\n", offset)
            if next_break < 0:
                return offset
            offset = next_break + 1
        return offset


_CATEGORY_FIELDS: Dict[AdjustmentCategory, str] = {
    AdjustmentCategory.TAX: "tax_cents",
    AdjustmentCategory.FEE: "fees_cents",
    AdjustmentCategory.SHIPPING: "shipping_cents",
    AdjustmentCategory.DISCOUNT: "discounts_cents",
    AdjustmentCategory.CREDIT: "credits_cents",
    AdjustmentCategory.DEPOSIT: "deposits_cents",
    AdjustmentCategory.ALLOWANCE: "allowances_cents",
}


def summarize(adjustments: List[Adjustment]) -> AdjustmentSummary:
    """Per-category sums plus net, positive and negative totals."""
    summary = AdjustmentSummary()
    for adj in adjustments:
        name = _CATEGORY_FIELDS[adj.category]
        setattr(summary, name, getattr(summary, name) + adj.amount_cents)
        if adj.amount_cents >= 0:
            summary.total_positive_cents += adj.amount_cents
        else:
            summary.total_negative_cents += adj.amount_cents
    summary.net_cents = summary.total_positive_cents + summary.total_negative_cents
    return summary


def validate_adjustments(
    adjustments: List[Adjustment],
    subtotal_cents: int,
    total_cents: int,
    tolerance_cents: int = 10,
    issue_pct: float = 0.05,
) -> AdjustmentValidation:
    """
    Check that subtotal + adjustments reproduces the printed total.

    A discrepancy above issue_pct is an issue; a smaller one above the cent
    tolerance is a warning. Unusually high tax or discounts are warnings.
    """
    summary = summarize(adjustments)
    computed = subtotal_cents + summary.net_cents
    difference = total_cents - computed

    issues: List[str] = []
    warnings: List[str] = []

    if abs(difference) > tolerance_cents:
        pct = abs(difference) / total_cents if total_cents > 0 else 1.0
        message = (
            f"Adjustments do not reconcile: subtotal {subtotal_cents} + adjustments "
            f"{summary.net_cents} = {computed}, printed total {total_cents}"
        )
        if pct > issue_pct:
            issues.append(message)
        else:
            warnings.append(message)

    if subtotal_cents > 0:
        if summary.tax_cents > subtotal_cents * 0.15:
            warnings.append(f"Tax {summary.tax_cents} exceeds 15% of subtotal")
        if abs(summary.discounts_cents) > subtotal_cents * 0.5:
            warnings.append(f"Discounts {abs(summary.discounts_cents)} exceed 50% of subtotal")

    return AdjustmentValidation(
        is_valid=not issues,
        computed_total_cents=computed,
        printed_total_cents=total_cents,
        difference_cents=difference,
        issues=issues,
        warnings=warnings,
    )


# Singleton instance
_extractor_instance: Optional[AdjustmentsExtractor] = None


def get_adjustments_extractor() -> AdjustmentsExtractor:
    """Get singleton AdjustmentsExtractor instance."""
    global _extractor_instance
    if _extractor_instance is None:
        _extractor_instance = AdjustmentsExtractor()
    return _extractor_instance


def extract_adjustments(text: str, layout_hints: Optional[LayoutHints] = None) -> AdjustmentExtraction:
    return get_adjustments_extractor().extract(text, layout_hints)
