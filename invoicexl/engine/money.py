"""
Money token parser for invoice amounts.

Handles parsing of monetary values in the forms vendor invoices print them:
- Currency: $1,234.56, €1234.56
- Negative: (123.45), -123.45, 123.45-, 123.45CR
- Extraction artifacts: "1 748.85", "4207 .02", "1748. 85"

All amounts are returned as integer minor units (cents). A high-precision
Decimal variant keeps up to three decimal digits for per-unit pricing.
"""
import re
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Union

import structlog

from invoicexl.engine.models import MonetaryToken, RoundingMode

logger = structlog.get_logger(__name__)

AmountInput = Union[str, int, float, Decimal, None]

CENT = Decimal("1")
ROUNDING = {
    RoundingMode.STANDARD: ROUND_HALF_UP,
    RoundingMode.BANKERS: ROUND_HALF_EVEN,
    RoundingMode.FLOOR: ROUND_FLOOR,
    RoundingMode.CEIL: ROUND_CEILING,
}


class AmountStyle(str, Enum):
    """Printed forms an amount can take."""
    PLAIN = "plain"                  # 1234.56 / -1234.56
    CURRENCY = "currency"            # $1,234.56 / -$1,234.56
    PARENTHETICAL = "parenthetical"  # $1,234.56 / ($1,234.56)
    TRAILING_MINUS = "trailing_minus"  # 1,234.56 / 1,234.56-
    CREDIT = "credit"                # 1,234.56 / 1,234.56CR


@dataclass(frozen=True)
class ParsedAmount:
    """Result of parsing a money string."""

    value: Decimal
    raw_value: str
    is_negative: bool = False
    is_valid: bool = True

    def to_cents(self) -> int:
        return int((self.value * 100).quantize(CENT, rounding=ROUND_HALF_UP))


class MoneyParser:
    """
    Parser for invoice money tokens.

    Never raises: empty, non-numeric or malformed input parses to zero and is
    reported with is_valid=False.
    """

    # Embedded whitespace left behind by text extraction
    SPACE_BETWEEN_DIGITS = re.compile(r"(\d)\s+(?=\d)")
    SPACE_BEFORE_POINT = re.compile(r"(\d)\s+\.(?=\d)")
    SPACE_AFTER_POINT = re.compile(r"\.\s+(?=\d)")
    SPACE_AFTER_COMMA = re.compile(r",\s+(?=\d)")

    CREDIT_SUFFIX = re.compile(r"CR$", re.IGNORECASE)
    STRIP_CHARS = re.compile(r"[$€£¥,\s()]")
    NUMBER_PATTERN = re.compile(r"^\d*\.?\d+$|^\d+\.$")

    def normalize(self, value_str: str) -> str:
        """Collapse whitespace artifacts inside a money token."""
        s = value_str.replace("\r", "").strip()
        s = self.SPACE_BETWEEN_DIGITS.sub(r"\1", s)
        s = self.SPACE_BEFORE_POINT.sub(r"\1.", s)
        s = self.SPACE_AFTER_POINT.sub(".", s)
        s = self.SPACE_AFTER_COMMA.sub(",", s)
        return s

    def parse(self, value: AmountInput, places: Optional[int] = None) -> ParsedAmount:
        """
        Parse a money value.

        Args:
            value: String or number to parse.
            places: Decimal places to keep (None keeps everything).

        Returns:
            ParsedAmount with the signed Decimal value in dollars.
        """
        if value is None:
            return ParsedAmount(value=Decimal("0"), raw_value="", is_valid=False)

        if isinstance(value, bool):
            return ParsedAmount(value=Decimal("0"), raw_value=str(value), is_valid=False)

        if isinstance(value, (int, float, Decimal)):
            try:
                number = Decimal(str(value))
            except InvalidOperation:
                return ParsedAmount(value=Decimal("0"), raw_value=str(value), is_valid=False)
            if not number.is_finite():
                return ParsedAmount(value=Decimal("0"), raw_value=str(value), is_valid=False)
            return ParsedAmount(
                value=self._quantize(number, places),
                raw_value=str(value),
                is_negative=number < 0,
            )

        original = str(value)
        s = self.normalize(original)
        if not s:
            return ParsedAmount(value=Decimal("0"), raw_value=original, is_valid=False)

        is_negative = (
            (s.startswith("(") and s.endswith(")"))
            or s.startswith("-")
            or s.endswith("-")
            or bool(self.CREDIT_SUFFIX.search(s))
        )

        cleaned = self.STRIP_CHARS.sub("", s)
        cleaned = cleaned.strip("-")
        cleaned = self.CREDIT_SUFFIX.sub("", cleaned)

        if not cleaned or not self.NUMBER_PATTERN.match(cleaned):
            logger.warning("Malformed money token", value=original)
            return ParsedAmount(value=Decimal("0"), raw_value=original, is_valid=False)

        number = self._quantize(Decimal(cleaned), places)
        return ParsedAmount(
            value=-number if is_negative else number,
            raw_value=original,
            is_negative=is_negative,
        )

    def _quantize(self, number: Decimal, places: Optional[int]) -> Decimal:
        if places is None:
            return number
        return number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)

    def parse_batch(self, values: List[AmountInput]) -> List[ParsedAmount]:
        return [self.parse(v) for v in values]


# Singleton instance
_parser_instance: Optional[MoneyParser] = None


def get_money_parser() -> MoneyParser:
    """Get singleton MoneyParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = MoneyParser()
    return _parser_instance


def parse_amount(value: AmountInput) -> int:
    """Parse a money token into signed minor units (0 when unparsable)."""
    return get_money_parser().parse(value).to_cents()


def parse_amount_decimal(value: AmountInput, places: int = 3) -> Decimal:
    """Parse a money token into dollars, keeping `places` decimal digits."""
    return get_money_parser().parse(value, places=places).value


def round_cents(value: Decimal, mode: RoundingMode = RoundingMode.STANDARD) -> int:
    """Round a cents amount held as Decimal using a vendor rounding mode."""
    return int(value.quantize(CENT, rounding=ROUNDING[mode]))


def line_total_cents(
    quantity: Union[int, Decimal],
    unit_price: Decimal,
    mode: RoundingMode = RoundingMode.STANDARD,
) -> int:
    """quantity x unit_price (dollars) at full precision, rounded once to cents."""
    return round_cents(Decimal(quantity) * Decimal(unit_price) * 100, mode)


def nearly_equal(a: int, b: int, tol_abs: int = 100, tol_pct: float = 0.01) -> bool:
    """True when two cent amounts agree within an absolute or relative tolerance."""
    diff = abs(a - b)
    if diff <= tol_abs:
        return True
    base = max(abs(a), abs(b))
    return base > 0 and diff / base <= tol_pct


def format_amount(cents: int, style: AmountStyle = AmountStyle.CURRENCY) -> str:
    """Render minor units in one of the printed invoice forms."""
    negative = cents < 0
    whole, frac = divmod(abs(cents), 100)
    plain = f"{whole}.{frac:02d}"
    grouped = f"{whole:,}.{frac:02d}"

    if style == AmountStyle.PLAIN:
        return f"-{plain}" if negative else plain
    if style == AmountStyle.CURRENCY:
        return f"-${grouped}" if negative else f"${grouped}"
    if style == AmountStyle.PARENTHETICAL:
        return f"(${grouped})" if negative else f"${grouped}"
    if style == AmountStyle.TRAILING_MINUS:
        return f"{grouped}-" if negative else grouped
    return f"{grouped}CR" if negative else grouped


# =============================================================================
# Document-wide scanning
# =============================================================================

MONEY_TOKEN_PATTERN = re.compile(r"\$?\s*([\d,]+\.?\d{0,3})\b")
DATE_PREFIX_PATTERN = re.compile(r"[/\-]\s*$")

MIN_TOKEN_CENTS = 100
MAX_TOKEN_CENTS = 1_000_000_000


def extract_monetary_tokens(text: str, base_offset: int = 0) -> List[MonetaryToken]:
    """
    Find every plausible money value in a block of text.

    Skips values under $1 or over $10M, bare years, long bare integers
    (account and order numbers) and numbers directly after '/' or '-'
    (dates and ranges).
    """
    tokens: List[MonetaryToken] = []
    parser = get_money_parser()

    for match in MONEY_TOKEN_PATTERN.finditer(text):
        raw = match.group(1)
        cleaned = raw.replace(",", "")
        if not cleaned or cleaned == ".":
            continue

        parsed = parser.parse(cleaned)
        if not parsed.is_valid:
            continue
        cents = parsed.to_cents()
        if cents < MIN_TOKEN_CENTS or cents > MAX_TOKEN_CENTS:
            continue

        has_point = "." in raw
        if not has_point and 1900 <= parsed.value <= 2099:
            continue
        if not has_point and len(cleaned) >= 7:
            continue

        before = text[max(0, match.start() - 5):match.start()]
        if DATE_PREFIX_PATTERN.search(before):
            continue

        tokens.append(MonetaryToken(
            value_cents=cents,
            raw_text=match.group(0),
            source_offset=base_offset + match.start(),
        ))

    return tokens
