"""
Candidate extractors for invoice totals, subtotals, taxes and fees.

Each extractor is an immutable table of PatternRule entries interpreted by one
shared matching engine. Candidates carry a score built from the rule priority,
position in the document, group/section context and optional layout hints.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from invoicexl.engine.models import Candidate, CandidateKind, LayoutHints
from invoicexl.engine.money import parse_amount

logger = structlog.get_logger(__name__)

# Amount following a label on the same line
VALUE = r"[:\t *]*\$?[ \t]*([\d,]+\.?\d*)"


@dataclass(frozen=True)
class PatternRule:
    """One (pattern, label, priority) entry of an extractor table."""
    pattern: "re.Pattern[str]"
    label: str
    priority: int
    kind: CandidateKind
    is_group_total: bool = False


def _rule(regex: str, label: str, priority: int, kind: CandidateKind, group: bool = False) -> PatternRule:
    return PatternRule(
        pattern=re.compile(regex + VALUE, re.IGNORECASE | re.MULTILINE),
        label=label,
        priority=priority,
        kind=kind,
        is_group_total=group,
    )


TOTAL_RULES: Tuple[PatternRule, ...] = (
    _rule(r"INVOICE[\s_]*TOTAL", "INVOICE TOTAL", 100, CandidateKind.TOTAL),
    _rule(r"GRAND[\s_]*TOTAL", "GRAND TOTAL", 95, CandidateKind.TOTAL),
    _rule(r"AMOUNT[\s_]*DUE", "AMOUNT DUE", 90, CandidateKind.TOTAL),
    _rule(r"BALANCE[\s_]*DUE", "BALANCE DUE", 90, CandidateKind.TOTAL),
    _rule(r"TOTAL[\s_]*DUE", "TOTAL DUE", 88, CandidateKind.TOTAL),
    _rule(r"TOTAL[\s_]*AMOUNT", "TOTAL AMOUNT", 85, CandidateKind.TOTAL),
    _rule(r"NET[\s_]*TOTAL", "NET TOTAL", 80, CandidateKind.TOTAL),
    _rule(r"(?:^|(?<=\s))TOTAL(?:\s*USD)?", "TOTAL", 70, CandidateKind.TOTAL),
    _rule(r"GROUP\s*TOTAL", "GROUP TOTAL", 10, CandidateKind.TOTAL, group=True),
    _rule(r"CATEGORY\s*TOTAL", "CATEGORY TOTAL", 10, CandidateKind.TOTAL, group=True),
    _rule(r"SECTION\s*TOTAL", "SECTION TOTAL", 10, CandidateKind.TOTAL, group=True),
    _rule(r"DEPT(?:ARTMENT)?\.?\s*TOTAL", "DEPARTMENT TOTAL", 10, CandidateKind.TOTAL, group=True),
)

SUBTOTAL_RULES: Tuple[PatternRule, ...] = (
    _rule(r"SUB[-\s]?TOTAL", "SUBTOTAL", 40, CandidateKind.SUBTOTAL),
    _rule(r"MERCHANDISE\s*TOTAL", "MERCHANDISE TOTAL", 45, CandidateKind.SUBTOTAL),
    _rule(r"PRODUCT\s*TOTAL", "PRODUCT TOTAL", 40, CandidateKind.SUBTOTAL),
    _rule(r"ITEMS\s*TOTAL", "ITEMS TOTAL", 40, CandidateKind.SUBTOTAL),
)

TAX_RULES: Tuple[PatternRule, ...] = (
    _rule(r"SALES\s*TAX", "SALES TAX", 90, CandidateKind.TAX),
    _rule(r"(?:STATE|LOCAL|COUNTY)\s*TAX", "LOCAL TAX", 85, CandidateKind.TAX),
    _rule(r"\b(?:VAT|GST|HST)", "VAT", 85, CandidateKind.TAX),
    _rule(r"(?:^|(?<=\s))TAX", "TAX", 70, CandidateKind.TAX),
)

FEE_RULES: Tuple[PatternRule, ...] = (
    _rule(r"FUEL\s*(?:SUR)?CHARGE", "FUEL SURCHARGE", 85, CandidateKind.FEE),
    _rule(r"DELIVERY\s*(?:FEE|CHARGE)", "DELIVERY FEE", 85, CandidateKind.FEE),
    _rule(r"SERVICE\s*(?:FEE|CHARGE)", "SERVICE FEE", 80, CandidateKind.FEE),
    _rule(r"(?:FREIGHT|SHIPPING)", "FREIGHT", 75, CandidateKind.FEE),
)

# Multi-line totals: label alone on one line, value alone on the next
LABEL_ONLY_LINE = re.compile(r"^\s*(INVOICE\s+TOTAL|TOTAL)\s*:?\s*$", re.IGNORECASE)
VALUE_ONLY_LINE = re.compile(r"^\s*\$?\s*([\d,]+\.\d{2})\s*$")


class TotalQualifier(str, Enum):
    """What the words right before a total label say about it."""
    NONE = "none"
    SUBTOTAL = "subtotal"
    GROUP = "group"


GROUP_MARKER = re.compile(r"\b(GROUP|CATEGORY|SECTION|DEPT|DEPARTMENT)\b", re.IGNORECASE)
SUBTOTAL_MARKER = re.compile(
    r"SUB[\s\-]?TOTAL|\bSUB[\s\-]*$|MERCHANDISE\s+TOTAL|PRODUCT\s+TOTAL|ITEMS\s+TOTAL|LINE\s+ITEMS",
    re.IGNORECASE,
)
FINAL_TOTAL_MARKER = re.compile(r"INVOICE\s*TOTAL|GRAND\s*TOTAL", re.IGNORECASE)

QUALIFIER_WINDOW = 20


def preceding_qualifier(text: str, start: int, label: str = "", window: int = QUALIFIER_WINDOW) -> TotalQualifier:
    """
    Classify a total-like match by the short same-line window before it.

    Only the characters immediately preceding the match are inspected, so an
    unrelated word earlier on the line does not disqualify a real total.
    """
    line_start = text.rfind("\n", 0, start) + 1
    before = text[max(line_start, start - window):start]
    if FINAL_TOTAL_MARKER.search(label):
        return TotalQualifier.NONE
    labeled = before + label
    if GROUP_MARKER.search(labeled):
        return TotalQualifier.GROUP
    if SUBTOTAL_MARKER.search(before) or SUBTOTAL_MARKER.search(labeled):
        return TotalQualifier.SUBTOTAL
    return TotalQualifier.NONE


@dataclass(frozen=True)
class CandidatePolicy:
    """Fixed weight table for candidate scoring."""
    bottom_third_bonus: int = 20
    middle_third_bonus: int = 10
    group_context_penalty: int = 40
    layout_hint_bonus: int = 15
    min_value_cents: int = 1
    max_value_cents: int = 100_000_000
    max_score: int = 100


DEFAULT_POLICY = CandidatePolicy()


class LineIndex:
    """Maps character offsets to line numbers."""

    def __init__(self, text: str):
        self.starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self.starts.append(i + 1)

    @property
    def line_count(self) -> int:
        return len(self.starts)

    def line_of(self, offset: int) -> int:
        lo, hi = 0, len(self.starts) - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self.starts[mid] <= offset:
                lo = mid
            else:
                hi = mid - 1
        return lo

    def position(self, line_number: int) -> float:
        if self.line_count <= 1:
            return 0.0
        return line_number / (self.line_count - 1)


class CandidateExtractor:
    """
    Shared matching engine for pattern-table extractors.

    Never raises; an empty or unmatched text yields an empty list.
    """

    def __init__(
        self,
        rules: Sequence[PatternRule],
        kind: CandidateKind,
        policy: CandidatePolicy = DEFAULT_POLICY,
    ):
        self.rules = tuple(rules)
        self.kind = kind
        self.policy = policy

    def extract(self, text: str, layout_hints: Optional[LayoutHints] = None) -> List[Candidate]:
        if not text:
            return []

        hints = layout_hints or LayoutHints()
        index = LineIndex(text)
        lines = text.split("\n")
        seen: Dict[Tuple[int, str], Candidate] = {}

        if self.kind == CandidateKind.TOTAL:
            for candidate in self._multi_line_totals(lines, index, hints):
                seen.setdefault((candidate.value_cents, candidate.label), candidate)

        for rule in self.rules:
            for match in rule.pattern.finditer(text):
                value_cents = parse_amount(match.group(1))
                if not self.policy.min_value_cents <= value_cents <= self.policy.max_value_cents:
                    continue

                qualifier = preceding_qualifier(text, match.start(), match.group(0))
                if self.kind == CandidateKind.TOTAL and not rule.is_group_total:
                    if qualifier == TotalQualifier.SUBTOTAL:
                        continue
                is_group = rule.is_group_total or qualifier == TotalQualifier.GROUP

                line_number = index.line_of(match.start())
                position = index.position(line_number)
                score = self._score(rule.priority, position, is_group, line_number, hints)

                key = (value_cents, rule.label)
                if key in seen:
                    continue
                seen[key] = Candidate(
                    label=rule.label,
                    value_cents=value_cents,
                    score=score,
                    kind=rule.kind,
                    is_group_total=is_group,
                    position=round(position, 4),
                    line_number=line_number,
                    evidence=lines[line_number].strip()[:100],
                )

        candidates = sorted(seen.values(), key=lambda c: (-c.score, -c.position))
        logger.debug(
            "Candidates extracted",
            kind=self.kind.value,
            found=len(candidates),
            group_totals=sum(1 for c in candidates if c.is_group_total),
        )
        return candidates

    def _score(
        self,
        priority: int,
        position: float,
        is_group: bool,
        line_number: int,
        hints: LayoutHints,
    ) -> int:
        p = self.policy
        score = priority
        if position >= 0.66:
            score += p.bottom_third_bonus
        elif position >= 0.33:
            score += p.middle_third_bonus
        if is_group:
            score -= p.group_context_penalty
        if hints.in_totals_section(line_number):
            score += p.layout_hint_bonus
        return max(0, min(p.max_score, score))

    def _multi_line_totals(self, lines: List[str], index: LineIndex, hints: LayoutHints) -> List[Candidate]:
        found = []
        for i in range(len(lines) - 1):
            label_match = LABEL_ONLY_LINE.match(lines[i])
            if not label_match or GROUP_MARKER.search(lines[i]):
                continue
            value_match = VALUE_ONLY_LINE.match(lines[i + 1])
            if not value_match:
                continue
            value_cents = parse_amount(value_match.group(1))
            if not self.policy.min_value_cents <= value_cents <= self.policy.max_value_cents:
                continue

            is_invoice_total = "INVOICE" in label_match.group(1).upper()
            label = "INVOICE TOTAL (multi-line)" if is_invoice_total else "TOTAL (multi-line)"
            position = index.position(i)
            found.append(Candidate(
                label=label,
                value_cents=value_cents,
                score=self._score(100 if is_invoice_total else 70, position, False, i, hints),
                kind=CandidateKind.TOTAL,
                position=round(position, 4),
                line_number=i,
                evidence=f"{lines[i].strip()} | {lines[i + 1].strip()}",
            ))
        return found


def extract_total_candidates(text: str, layout_hints: Optional[LayoutHints] = None) -> List[Candidate]:
    return CandidateExtractor(TOTAL_RULES, CandidateKind.TOTAL).extract(text, layout_hints)


def extract_subtotal_candidates(text: str, layout_hints: Optional[LayoutHints] = None) -> List[Candidate]:
    return CandidateExtractor(SUBTOTAL_RULES, CandidateKind.SUBTOTAL).extract(text, layout_hints)


def extract_tax_candidates(text: str, layout_hints: Optional[LayoutHints] = None) -> List[Candidate]:
    return CandidateExtractor(TAX_RULES, CandidateKind.TAX).extract(text, layout_hints)


def extract_fee_candidates(text: str, layout_hints: Optional[LayoutHints] = None) -> List[Candidate]:
    return CandidateExtractor(FEE_RULES, CandidateKind.FEE).extract(text, layout_hints)


def non_group(candidates: Sequence[Candidate]) -> List[Candidate]:
    return [c for c in candidates if not c.is_group_total]


@dataclass
class ReconcilableTotal:
    candidate: Candidate
    expected_cents: int
    difference_cents: int
    variance_pct: float
    within_tolerance: bool


def find_reconcilable_total(
    candidates: Sequence[Candidate],
    items_sum_cents: int,
    adjustments_cents: int = 0,
    tolerance_pct: float = 0.02,
) -> Optional[ReconcilableTotal]:
    """
    First candidate (in ranked order) equal to items + adjustments within
    tolerance; otherwise the top candidate, marked out of tolerance.
    """
    if not candidates:
        return None

    expected = items_sum_cents + adjustments_cents
    for candidate in candidates:
        diff = abs(candidate.value_cents - expected)
        pct = diff / expected if expected > 0 else 1.0
        if pct <= tolerance_pct:
            return ReconcilableTotal(candidate, expected, diff, pct, True)

    best = candidates[0]
    diff = abs(best.value_cents - expected)
    return ReconcilableTotal(best, expected, diff, diff / expected if expected > 0 else 1.0, False)


@dataclass
class TotalsEquation:
    is_valid: bool
    computed_total_cents: int
    printed_total_cents: int
    difference_cents: int


def validate_totals_equation(
    subtotal_cents: int,
    adjustments_cents: int,
    total_cents: int,
    tolerance_cents: int = 10,
) -> TotalsEquation:
    """Check subtotal + adjustments == total within an absolute tolerance."""
    computed = subtotal_cents + adjustments_cents
    diff = abs(computed - total_cents)
    return TotalsEquation(diff <= tolerance_cents, computed, total_cents, diff)


def with_score(candidate: Candidate, score: int) -> Candidate:
    return replace(candidate, score=max(0, min(100, score)))
