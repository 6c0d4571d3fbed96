"""
Evidence model and data structures for the InvoiceXL Engine.

Implements the records passed between engine passes:
- MonetaryToken and ClassifiedNumber for token-level evidence
- Candidate records produced by the pattern-table extractors
- Adjustment records (tax, fees, credits, synthetic balancing entries)
- LineItem records and per-item math checks
- InvoiceTotals, reconciliation checks and the final InvoiceExtraction
"""

from dataclasses import asdict, dataclass, field, is_dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class NumberType(str, Enum):
    """Semantic type of a numeric token on an invoice line."""
    PRICE = "price"
    QUANTITY = "quantity"
    SKU = "sku"
    WEIGHT = "weight"
    PACK_SIZE = "pack_size"
    UNKNOWN = "unknown"


class AdjustmentCategory(str, Enum):
    """Kinds of non-line-item amounts that move the invoice total."""
    TAX = "tax"
    FEE = "fee"
    SHIPPING = "shipping"
    DISCOUNT = "discount"
    CREDIT = "credit"
    DEPOSIT = "deposit"
    ALLOWANCE = "allowance"

    @property
    def default_sign(self) -> int:
        if self in (AdjustmentCategory.TAX, AdjustmentCategory.FEE, AdjustmentCategory.SHIPPING):
            return 1
        return -1


class CandidateKind(str, Enum):
    """What a candidate extractor was looking for."""
    TOTAL = "total"
    SUBTOTAL = "subtotal"
    TAX = "tax"
    FEE = "fee"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CheckScope(str, Enum):
    LINE_ITEM = "line_item"
    TOTALS = "totals"


class ReconciliationState(str, Enum):
    """Lifecycle of one reconciliation run."""
    UNVALIDATED = "unvalidated"
    LINE_ITEM_CHECKED = "line_item_checked"
    TOTALS_CHECKED = "totals_checked"
    VALID = "valid"
    SALVAGE_ATTEMPTED = "salvage_attempted"
    SALVAGE_SUCCEEDED = "salvage_succeeded"
    SALVAGE_FAILED = "salvage_failed"


class ValueSource(str, Enum):
    """Where a totals field came from."""
    PRINTED = "printed"
    COMPUTED = "computed"
    SALVAGED = "salvaged"
    ADJUSTMENTS = "adjustments"
    CANDIDATES = "candidates"
    NONE = "none"


class RoundingMode(str, Enum):
    """Vendor rounding conventions for quantity x unit price."""
    STANDARD = "standard"  # half up
    BANKERS = "bankers"    # half to even
    FLOOR = "floor"
    CEIL = "ceil"


class LineItemRepair(str, Enum):
    NONE = "none"
    QUANTITY = "quantity"
    UNIT_PRICE = "unit_price"
    CATCH_WEIGHT = "catch_weight"


class FinderStrategy(str, Enum):
    """Independent total-detection strategies run by the Total Finder."""
    LABEL_ADJACENCY = "label_adjacency"
    BOTTOM_SCAN = "bottom_scan"
    FOOTER_VALUE = "footer_value"
    KEYWORD_PROXIMITY = "keyword_proximity"
    LARGEST_VALUE = "largest_value"
    LAST_PAGE = "last_page"
    PATTERN_BATTERY = "pattern_battery"
    SUBTOTAL_TAX_ARITHMETIC = "subtotal_tax_arithmetic"
    END_POSITION = "end_position"
    LINE_ITEM_SUM = "line_item_sum"
    RANKED_CANDIDATES = "ranked_candidates"


# =============================================================================
# Token Level Evidence
# =============================================================================

@dataclass(frozen=True)
class MonetaryToken:
    """A money value found in the text, in minor units."""
    value_cents: int
    raw_text: str
    source_offset: int

    @property
    def dollars(self) -> Decimal:
        return Decimal(self.value_cents) / 100


@dataclass
class ClassifiedNumber:
    """A numeric token with its inferred meaning."""
    value: Decimal
    raw: str
    type: NumberType = NumberType.UNKNOWN
    confidence: int = 0
    reasons: List[str] = field(default_factory=list)
    start: int = 0
    end: int = 0
    relative_position: float = 0.0
    decimals: int = 0


@dataclass(frozen=True)
class LayoutHints:
    """Approximate totals-section line range from an external layout analyzer."""
    totals_start_line: Optional[int] = None
    totals_end_line: Optional[int] = None

    @property
    def has_totals_section(self) -> bool:
        return self.totals_start_line is not None

    def in_totals_section(self, line_number: int) -> bool:
        if self.totals_start_line is None:
            return False
        end = self.totals_end_line if self.totals_end_line is not None else line_number
        return self.totals_start_line <= line_number <= end


# =============================================================================
# Candidates and Adjustments
# =============================================================================

@dataclass(frozen=True)
class Candidate:
    """A scored, provisional extraction prior to final selection."""
    label: str
    value_cents: int
    score: int
    kind: CandidateKind
    is_group_total: bool = False
    position: float = 0.0  # 0 = top of document, 1 = bottom
    line_number: int = 0
    evidence: str = ""


@dataclass
class Adjustment:
    """A signed amount outside the line items (tax, fee, discount, ...)."""
    category: AdjustmentCategory
    label: str
    amount_cents: int
    is_synthetic: bool = False
    line_number: int = -1
    evidence: str = ""

    @property
    def is_negative(self) -> bool:
        return self.amount_cents < 0


@dataclass
class AdjustmentSummary:
    """Per-category sums of extracted adjustments."""
    tax_cents: int = 0
    fees_cents: int = 0
    shipping_cents: int = 0
    discounts_cents: int = 0
    credits_cents: int = 0
    deposits_cents: int = 0
    allowances_cents: int = 0
    total_positive_cents: int = 0
    total_negative_cents: int = 0
    net_cents: int = 0


@dataclass
class AdjustmentExtraction:
    adjustments: List[Adjustment] = field(default_factory=list)
    summary: AdjustmentSummary = field(default_factory=AdjustmentSummary)


@dataclass
class AdjustmentValidation:
    """Outcome of checking adjustments against subtotal and total."""
    is_valid: bool
    computed_total_cents: int
    printed_total_cents: int
    difference_cents: int
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Line Items
# =============================================================================

@dataclass
class LineItem:
    """
    One billed line.

    unit_price is kept in dollars with up to four decimal places so that
    per-pound pricing is multiplied at full precision and rounded once.
    """
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total_cents: int
    sku: Optional[str] = None
    weight: Optional[Decimal] = None
    category: str = "item"
    math_validated: bool = False
    correction_applied: LineItemRepair = LineItemRepair.NONE
    is_catch_weight: bool = False
    original_quantity: Optional[Decimal] = None
    original_unit_price: Optional[Decimal] = None
    rounding_mode: Optional[RoundingMode] = None
    confidence: int = 0

    @property
    def unit_price_cents(self) -> int:
        return int((self.unit_price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class LineItemCheck:
    """Result of validating (and possibly repairing) one line item."""
    index: int
    is_valid: bool
    repair: LineItemRepair = LineItemRepair.NONE
    computed_cents: int = 0
    actual_cents: int = 0
    delta_cents: int = 0
    rounding_mode: Optional[RoundingMode] = None
    message: str = ""


# =============================================================================
# Totals and Reconciliation
# =============================================================================

@dataclass
class InvoiceTotals:
    """Invoice-level amounts in minor units."""
    subtotal_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    adjustments_net_cents: int = 0
    printed_total_cents: int = 0
    computed_total_cents: int = 0
    total_source: ValueSource = ValueSource.NONE
    subtotal_source: ValueSource = ValueSource.NONE
    tax_source: ValueSource = ValueSource.NONE
    salvaged: bool = False


@dataclass
class ReconciliationCheck:
    """A single reconciliation check result."""
    check_name: str  # e.g., "sum_vs_subtotal"
    is_valid: bool
    scope: CheckScope = CheckScope.TOTALS
    expected_value: Optional[int] = None
    actual_value: Optional[int] = None
    delta: Optional[int] = None
    delta_percent: Optional[float] = None
    severity: Severity = Severity.INFO
    message: str = ""


@dataclass
class ReconciliationResult:
    """Results of all reconciliation checks."""
    checks: List[ReconciliationCheck] = field(default_factory=list)
    all_passed: bool = True
    critical_failures: int = 0
    warnings: int = 0

    def add_check(self, check: ReconciliationCheck):
        self.checks.append(check)
        if not check.is_valid:
            if check.severity == Severity.ERROR:
                self.critical_failures += 1
                self.all_passed = False
            elif check.severity == Severity.WARNING:
                self.warnings += 1

    def failed(self, scope: Optional[CheckScope] = None) -> List[ReconciliationCheck]:
        return [
            c for c in self.checks
            if not c.is_valid and (scope is None or c.scope == scope)
        ]

    @property
    def has_totals_failure(self) -> bool:
        return any(c.severity == Severity.ERROR for c in self.failed(CheckScope.TOTALS))

    @property
    def line_items_valid(self) -> bool:
        return not self.failed(CheckScope.LINE_ITEM)

    @property
    def totals_valid(self) -> bool:
        return not self.has_totals_failure

    def get(self, check_name: str) -> Optional[ReconciliationCheck]:
        for check in self.checks:
            if check.check_name == check_name:
                return check
        return None


@dataclass
class SalvageOutcome:
    """Result of the secondary reconciliation pass."""
    succeeded: bool
    stage: int = 0  # 1-3 on success, 0 when exhausted
    totals: Optional[InvoiceTotals] = None
    reason: str = ""
    candidates_considered: int = 0


@dataclass
class ReconciliationOutcome:
    """Everything the Reconciliation Engine decided for one invoice."""
    state: ReconciliationState
    line_items: List[LineItem]
    line_item_checks: List[LineItemCheck]
    totals: InvoiceTotals
    adjustments: List[Adjustment]
    result: ReconciliationResult
    synthetic_adjustment: Optional[Adjustment] = None
    printed_total_replaced: bool = False
    unexplained_delta_cents: int = 0
    salvage: Optional[SalvageOutcome] = None
    needs_review: bool = False
    state_history: List[ReconciliationState] = field(default_factory=list)


# =============================================================================
# Total Finder
# =============================================================================

@dataclass(frozen=True)
class StrategyProposal:
    """A (value, score) vote cast by one Total Finder strategy."""
    strategy: FinderStrategy
    value_cents: int
    score: int
    evidence: str = ""


@dataclass
class ProposalGroup:
    """All proposals for one exact value."""
    value_cents: int
    max_score: int = 0
    total_score: int = 0
    strategies: List[FinderStrategy] = field(default_factory=list)

    @property
    def unique_strategies(self) -> List[FinderStrategy]:
        seen: List[FinderStrategy] = []
        for strategy in self.strategies:
            if strategy not in seen:
                seen.append(strategy)
        return seen


@dataclass
class TotalFinderResult:
    found: bool
    total_cents: int = 0
    confidence: int = 0
    strategies: List[FinderStrategy] = field(default_factory=list)
    used_group_fallback: bool = False
    candidate_count: int = 0
    top_groups: List[ProposalGroup] = field(default_factory=list)


# =============================================================================
# Confidence and Final Result
# =============================================================================

@dataclass
class ConfidenceReport:
    score: int
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    is_valid: bool = False


@dataclass
class InvoiceExtraction:
    """Structured record produced for one invoice text."""
    line_items: List[LineItem]
    totals: InvoiceTotals
    adjustments: List[Adjustment]
    confidence: ConfidenceReport
    state: ReconciliationState
    needs_review: bool = False
    debug: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return _jsonable(asdict(self))


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def to_jsonable(value: Any) -> Any:
    """Convert dataclass trees (enums, Decimals) into JSON-friendly values."""
    return _jsonable(value)
