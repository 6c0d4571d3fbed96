"""
Number classifier for invoice line text.

Identical numeric tokens mean different things depending on where they sit and
which words surround them: "12" may be a quantity, a pack size or part of a
price. Each token is classified as price, quantity, sku, weight, pack size or
unknown with a confidence score, so later passes can revise the reading.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import structlog

from invoicexl.engine.models import ClassifiedNumber, LineItem, NumberType
from invoicexl.engine.money import parse_amount, parse_amount_decimal

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClassifierPolicy:
    """Fixed weight table for number classification."""

    weight_confidence: int = 80
    weight_max_position: float = 0.5

    price_base: int = 90
    price_three_decimals_bonus: int = 5
    price_per_unit_bonus: int = 5
    price_end_of_line_bonus: int = 5
    price_end_of_line_position: float = 0.7
    price_range_bonus: int = 5

    sku_base: int = 85
    sku_min_digits: int = 5
    sku_max_digits: int = 12
    sku_mid_line_bonus: int = 5
    sku_large_value_bonus: int = 10
    sku_large_value: int = 10000

    quantity_base: int = 70
    quantity_max: int = 999
    quantity_leading_bonus: int = 15
    quantity_leading_position: float = 0.3
    quantity_unit_word_bonus: int = 10
    quantity_small_bonus: int = 5
    quantity_small_max: int = 10

    pack_size_confidence: int = 75
    unknown_confidence: int = 30

    context_chars: int = 20


DEFAULT_POLICY = ClassifierPolicy()

PRICE_2_DECIMALS = re.compile(r"^\$?[\d,]+\.\d{2}$")
PRICE_3_DECIMALS = re.compile(r"^\$?[\d,]+\.\d{3}$")
WEIGHT_CONTEXT = re.compile(r"\b(LB|LBS|OZ|KG|POUND|OUNCE)\b", re.IGNORECASE)
PER_UNIT_CONTEXT = re.compile(r"/(LB|OZ|EA|EACH|UNIT)\b", re.IGNORECASE)
UNIT_WORDS = re.compile(
    r"\b(CS|CASE|EA|EACH|PK|PACK|BOX|LB|GAL|OZ|CT|DOZ|PC|PCS|UNIT|UNITS)\b",
    re.IGNORECASE,
)
PACK_SIZE_CONTEXT = re.compile(r"\d+\s*(LB|LBS|OZ|GAL|GALLON|QT|PT|ML|L|KG|G)\b", re.IGNORECASE)
NUMBER_TOKEN = re.compile(r"\$?[\d,]+\.?\d*")

# Catch-weight continuation, e.g. "84.000 T/WT= 84.000"
CATCH_WEIGHT_LINE = re.compile(r"^\s*([\d.]+)\s*T/WT=\s*([\d.]+)", re.IGNORECASE)

# Lines that carry totals or adjustments rather than billed goods
NON_ITEM_LINE = re.compile(
    r"\b(SUB[\s-]?TOTAL|TOTAL|AMOUNT DUE|BALANCE|TAX|FREIGHT|SHIPPING|DISCOUNT|"
    r"CREDIT|DEPOSIT|SURCHARGE|PAGE)\b",
    re.IGNORECASE,
)


class NumberClassifier:
    """
    Classifies numeric tokens by value shape, surrounding words and position.

    Priority order: weight, price, sku, quantity, pack size, unknown.
    """

    def __init__(self, policy: ClassifierPolicy = DEFAULT_POLICY):
        self.policy = policy

    def classify(self, token: str, context: str = "", position: float = 0.5) -> ClassifiedNumber:
        """
        Classify one numeric token.

        Args:
            token: The numeric text as printed (may carry $ and commas).
            context: Surrounding text used for unit and pricing clues.
            position: Relative position in the line (0 = start, 1 = end).

        Returns:
            ClassifiedNumber with type, confidence and reasons.
        """
        p = self.policy
        raw = str(token).strip()
        try:
            value = Decimal(raw.replace(",", "").replace("$", ""))
        except InvalidOperation:
            return ClassifiedNumber(value=Decimal("0"), raw=raw, confidence=0)

        result = ClassifiedNumber(value=value, raw=raw, relative_position=position)

        is_two_decimals = bool(PRICE_2_DECIMALS.match(raw))
        is_three_decimals = bool(PRICE_3_DECIMALS.match(raw))
        is_whole = value == value.to_integral_value()
        digit_count = sum(ch.isdigit() for ch in raw)

        # Weight (catch-weight items print the weight before the prices)
        if (
            not is_whole
            and WEIGHT_CONTEXT.search(context)
            and 0 < value < 1000
            and position < p.weight_max_position
        ):
            result.type = NumberType.WEIGHT
            result.confidence = p.weight_confidence
            result.reasons += [
                "Decimal number with weight unit context",
                "Located before prices",
            ]
            return result

        # Price
        if is_two_decimals or is_three_decimals:
            result.type = NumberType.PRICE
            result.confidence = p.price_base
            result.decimals = 3 if is_three_decimals else 2
            if is_three_decimals:
                result.confidence += p.price_three_decimals_bonus
                result.reasons.append("Three decimal places (per-unit pricing)")
            else:
                result.reasons.append("Two decimal places")
            if PER_UNIT_CONTEXT.search(context):
                result.confidence += p.price_per_unit_bonus
                result.reasons.append("Per-unit pricing context")
            if position > p.price_end_of_line_position:
                result.confidence += p.price_end_of_line_bonus
                result.reasons.append("Located at end of line")
            if Decimal("0.001") <= value <= Decimal("99999.999"):
                result.confidence += p.price_range_bonus
                result.reasons.append("In reasonable price range")
            return result

        # SKU / item code
        if is_whole and p.sku_min_digits <= digit_count <= p.sku_max_digits:
            result.type = NumberType.SKU
            result.confidence = p.sku_base
            result.reasons.append(f"{digit_count}-digit whole number")
            if 0.3 < position < 0.9:
                result.confidence += p.sku_mid_line_bonus
                result.reasons.append("Located mid-line")
            if value > p.sku_large_value:
                result.confidence += p.sku_large_value_bonus
                result.reasons.append("Too large to be a quantity")
            return result

        # Quantity
        if is_whole and 1 <= value <= p.quantity_max:
            result.type = NumberType.QUANTITY
            result.confidence = p.quantity_base
            result.reasons.append(f"Small whole number (1-{p.quantity_max})")
            if position < p.quantity_leading_position:
                result.confidence += p.quantity_leading_bonus
                result.reasons.append("Located at start of line")
            if UNIT_WORDS.search(context):
                result.confidence += p.quantity_unit_word_bonus
                result.reasons.append("Unit indicator nearby")
            if value <= p.quantity_small_max:
                result.confidence += p.quantity_small_bonus
                result.reasons.append("Common quantity range")
            return result

        # Pack size
        if is_whole and 1 <= value <= 1000 and PACK_SIZE_CONTEXT.search(context):
            result.type = NumberType.PACK_SIZE
            result.confidence = p.pack_size_confidence
            result.reasons.append("Number followed by weight/volume unit")
            return result

        result.type = NumberType.UNKNOWN
        result.confidence = p.unknown_confidence
        result.reasons.append("Could not determine type")
        return result

    def classify_line(self, line: str) -> List[ClassifiedNumber]:
        """Extract and classify every numeric token in a line."""
        if not line:
            return []

        results = []
        length = len(line)
        window = self.policy.context_chars

        for match in NUMBER_TOKEN.finditer(line):
            raw = match.group(0)
            if not any(ch.isdigit() for ch in raw):
                continue
            start = match.start()
            context = line[max(0, start - window):min(length, match.end() + window)]
            classified = self.classify(raw, context, start / length)
            classified.start = start
            classified.end = match.end()
            results.append(classified)

        return results

    def analyze_line(self, line: str) -> Optional[LineItem]:
        """
        Build a line item from one invoice line using number classification.

        The last price is the line total, the one before it the unit price.
        Returns None when the line does not look like a billed item.
        """
        if not line or len(line.strip()) < 10:
            return None

        trimmed = line.strip()
        numbers = self.classify_line(trimmed)
        if len(numbers) < 2:
            return None

        prices = [n for n in numbers if n.type == NumberType.PRICE]
        quantities = sorted(
            (n for n in numbers if n.type == NumberType.QUANTITY),
            key=lambda n: -n.confidence,
        )
        skus = sorted(
            (n for n in numbers if n.type == NumberType.SKU),
            key=lambda n: -n.confidence,
        )
        if not prices:
            return None

        line_total = prices[-1]
        unit_price = prices[-2] if len(prices) >= 2 else line_total
        quantity = quantities[0].value if quantities else Decimal("1")
        sku = str(int(skus[0].value)) if skus else None

        cluster_start = min(
            [line_total.start, unit_price.start] + ([skus[-1].start] if skus else [])
        )
        description = re.sub(r"\s+", " ", trimmed[:cluster_start]).rstrip("|").strip()
        # Leading quantity and unit words are not part of the description
        if quantities and quantities[0].start == 0:
            description = re.sub(r"^\d+\s*", "", description)
            description = UNIT_WORDS.sub("", description, count=1).strip()
        if len(description) < 3:
            return None

        return LineItem(
            description=description,
            quantity=quantity,
            unit_price=parse_amount_decimal(unit_price.raw, places=3),
            line_total_cents=parse_amount(line_total.raw),
            sku=sku,
            confidence=min(line_total.confidence, quantities[0].confidence if quantities else 50),
        )

    def parse_line_items(self, text: str) -> List[LineItem]:
        """
        Analyze every line of an invoice into line items.

        A catch-weight continuation line ("<n> T/WT= <weight>") attaches its
        measured total weight to the item above it.
        """
        items: List[LineItem] = []
        for line in text.split("\n"):
            weight_match = CATCH_WEIGHT_LINE.match(line)
            if weight_match:
                if items:
                    weight = parse_amount_decimal(weight_match.group(2), places=3)
                    if weight > 0:
                        items[-1].weight = weight
                continue
            if NON_ITEM_LINE.search(line):
                continue
            item = self.analyze_line(line)
            if item is not None:
                items.append(item)

        logger.debug("Line items analyzed", items=len(items))
        return items


def is_likely_misclassified_item_code(quantity: Decimal, unit_price_cents: int, line_total_cents: int) -> bool:
    """True when a parsed quantity is probably an item code."""
    if quantity > 1000:
        return True
    if quantity == quantity.to_integral_value() and len(str(int(quantity))) >= 5:
        return True
    if unit_price_cents > 0 and line_total_cents > 0:
        ratio = (quantity * unit_price_cents) / line_total_cents
        if ratio > 100 or ratio < Decimal("0.01"):
            return True
    return False


# Singleton instance
_classifier_instance: Optional[NumberClassifier] = None


def get_number_classifier() -> NumberClassifier:
    """Get singleton NumberClassifier instance."""
    global _classifier_instance
    if _classifier_instance is None:
        _classifier_instance = NumberClassifier()
    return _classifier_instance
