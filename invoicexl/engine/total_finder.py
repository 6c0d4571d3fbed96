"""
Multi-strategy total finder.

Eleven independent strategies each propose (value, score) votes for the
invoice total. Votes are grouped by exact value and the group with the best
maximum score wins, with ties broken by total score and then by how many
distinct strategies agree. Agreement raises confidence.

Group, category and department totals are excluded by every strategy and are
only elected when nothing else was proposed at all.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from invoicexl.engine.candidates import (
    TotalQualifier,
    extract_fee_candidates,
    extract_subtotal_candidates,
    extract_tax_candidates,
    extract_total_candidates,
    non_group,
    preceding_qualifier,
)
from invoicexl.engine.models import (
    FinderStrategy,
    LayoutHints,
    ProposalGroup,
    StrategyProposal,
    TotalFinderResult,
)
from invoicexl.engine.money import extract_monetary_tokens, parse_amount

logger = structlog.get_logger(__name__)

# Two-decimal amounts as printed in totals sections
AMOUNT = re.compile(r"\$?\s*((?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2})(?!\d)")
STANDALONE_AMOUNT = re.compile(r"^\s*\$?\s*([\d,]+\.\d{2})\s*$")

EXCLUDE_LINE = re.compile(
    r"TAX\s*TOTAL|SALES\s*TAX|TAX\s*AMT|DISCOUNT|CREDIT|PREVIOUS\s*BALANCE|LAST\s*PAYMENT|"
    r"(?:ACCOUNT|CUSTOMER|INVOICE|ORDER|PO)\s*(?:NUMBER|NO\.?|#)|PHONE|FAX|\bZIP\b|"
    r"\bCASES\b|\bSPLIT\b|\bPAGE\b|DRIVER",
    re.IGNORECASE,
)
QUALIFIABLE_WORD = re.compile(r"TOTAL", re.IGNORECASE)
TOTAL_WORD = re.compile(r"\bTOTAL\b", re.IGNORECASE)
INVOICE_WORD = re.compile(r"\bINVOICE\b", re.IGNORECASE)
INVOICE_TOTAL = re.compile(r"INVOICE\s*TOTAL", re.IGNORECASE)
END_KEYWORD = re.compile(r"\b(TOTAL|DUE|BALANCE|PAY)\b", re.IGNORECASE)
TAX_LINE = re.compile(r"\bTAX\b", re.IGNORECASE)

LAST_PAGE_MARKER = re.compile(r"(?:PAGE|PG\.?)\s*(\d+)\s*(?:OF|/)\s*(\d+)", re.IGNORECASE)
LAST_PAGE_WORDS = re.compile(r"LAST\s+PAGE", re.IGNORECASE)

# Label adjacency table, strongest first
TOTAL_LABELS: Tuple[Tuple["re.Pattern[str]", int], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), score)
    for pattern, score in (
        (r"INVOICE\s*TOTAL", 100),
        (r"INV\.?\s*TOTAL", 95),
        (r"GRAND\s*TOTAL", 95),
        (r"TOTAL\s*DUE", 90),
        (r"AMOUNT\s*DUE", 90),
        (r"BALANCE\s*DUE", 85),
        (r"PAY\s*THIS\s*AMOUNT", 85),
        (r"TOTAL\s*AMOUNT", 80),
        (r"TOTAL\s*USD", 80),
        (r"NET\s*TOTAL", 75),
        (r"ORDER\s*TOTAL", 75),
        (r"\bTOTAL\b", 50),
        (r"\bAMOUNT\b", 40),
        (r"\bDUE\b", 30),
    )
)

# Keyword proximity: (pattern, max distance in chars, score)
PROXIMITY_KEYWORDS: Tuple[Tuple["re.Pattern[str]", int, int], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), distance, score)
    for pattern, distance, score in (
        (r"INVOICE\s*TOTAL", 50, 100),
        (r"GRAND\s*TOTAL", 50, 95),
        (r"TOTAL\s*DUE", 40, 90),
        (r"AMOUNT\s*DUE", 40, 85),
        (r"BALANCE\s*DUE", 40, 85),
        (r"PAYABLE", 30, 70),
        (r"\bTOTAL\b", 30, 50),
    )
)

_V = r"\$?\s*([\d,]+\.\d{2})"

# Exhaustive battery: (pattern, score)
PATTERN_BATTERY: Tuple[Tuple["re.Pattern[str]", int], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE | re.MULTILINE), score)
    for pattern, score in (
        (r"INVOICE[ \t]*TOTAL[:\t ]*" + _V, 100),
        (r"INV\.?[ \t]*TOTAL[:\t ]*" + _V, 95),
        (r"GRAND[ \t]*TOTAL[:\t ]*" + _V, 95),
        (r"TOTAL[ \t]*DUE[:\t ]*" + _V, 90),
        (r"AMOUNT[ \t]*DUE[:\t ]*" + _V, 90),
        (r"BALANCE[ \t]*DUE[:\t ]*" + _V, 85),
        (r"PAY(?:[ \t]*THIS)?[ \t]*AMOUNT[:\t ]*" + _V, 85),
        (r"PLEASE[ \t]*PAY[:\t ]*" + _V, 80),
        (r"NET[ \t]*(?:TOTAL|DUE|AMOUNT)[:\t ]*" + _V, 80),
        (r"\bTOTAL(?:[ \t]*(?:AMOUNT|AMT))?[:\t ]*" + _V, 50),
        (r"^[ \t]*INVOICE[ \t]*\n[ \t]*TOTAL[ \t]*\n" + _V, 95),
        (r"^[ \t]*TOTAL[ \t]*:?[ \t]*\n" + _V, 45),
        (_V + r"[ \t]*(?:TOTAL|DUE|AMOUNT)\b", 60),
        (r"\bTOTAL[ \t]*[:=][ \t]*" + _V + r"[ \t]*$", 70),
        (r"^[ \t]*" + _V + r"[ \t]*$", 20),
        (r"\b(?:TOTAL|DUE|AMOUNT)[ \t]*(?:USD)?[ \t]*" + _V, 70),
    )
)


@dataclass(frozen=True)
class FinderPolicy:
    """Fixed weight table for the Total Finder."""

    bottom_scan_lines: int = 40
    bottom_scan_min_cents: int = 100
    bottom_scan_base: int = 30
    bottom_scan_total: int = 60
    bottom_scan_invoice_total: int = 85

    footer_min_cents: int = 101
    footer_base: int = 25
    footer_total: int = 50
    footer_invoice_total: int = 80
    footer_bottom_third_bonus: int = 15
    footer_context_before: int = 5
    footer_context_after: int = 2

    largest_top_n: int = 5
    largest_base: int = 35
    largest_step: int = 5
    largest_total_bonus: int = 20
    largest_invoice_bonus: int = 20
    largest_range_bonus: int = 10
    largest_min_score: int = 5

    last_page_bonus: int = 15

    arithmetic_score: int = 85
    arithmetic_tolerance_cents: int = 1

    end_base: int = 10
    end_bottom_quarter_bonus: int = 40
    end_bottom_tenth_bonus: int = 20
    end_after_tax_bonus: int = 15
    end_top_quarter_penalty: int = 30
    end_min_score: int = 5
    end_max_score: int = 85

    item_sum_exact: int = 80
    item_sum_close: int = 75
    item_sum_only: int = 60
    item_sum_pct: float = 0.01

    two_strategy_bonus: int = 10
    three_strategy_bonus: int = 15
    group_fallback_cap: int = 20


DEFAULT_POLICY = FinderPolicy()


def _amounts(line: str) -> List[Tuple[int, int]]:
    """(value_cents, offset) for every two-decimal amount in a line."""
    found = []
    for match in AMOUNT.finditer(line):
        value = parse_amount(match.group(1))
        if value > 0:
            found.append((value, match.start(1)))
    return found


def _is_qualified(line: str, start: int = 0, label: str = "") -> bool:
    return preceding_qualifier(line, start, label) != TotalQualifier.NONE


def _line_qualified(line: str) -> bool:
    """True when any TOTAL on the line is a subtotal or group total."""
    for match in QUALIFIABLE_WORD.finditer(line):
        if _is_qualified(line, match.start(), match.group(0)):
            return True
    return False


def _skip_line(line: str) -> bool:
    return bool(EXCLUDE_LINE.search(line)) or _line_qualified(line)


class TotalFinder:
    """
    Elects the invoice total from independent strategy votes.

    Pure function of its inputs: identical text yields an identical result.
    """

    def __init__(self, policy: FinderPolicy = DEFAULT_POLICY):
        self.policy = policy

    def find(
        self,
        text: str,
        line_items_sum_cents: Optional[int] = None,
        adjustments_net_cents: Optional[int] = None,
        layout_hints: Optional[LayoutHints] = None,
    ) -> TotalFinderResult:
        if not text or not text.strip():
            return TotalFinderResult(found=False)

        proposals = self.collect_proposals(text, line_items_sum_cents, adjustments_net_cents, layout_hints)
        if not proposals:
            return self._group_fallback(text, layout_hints)

        groups = self.elect(proposals)
        best = groups[0]
        confidence = min(100, best.max_score)
        agreeing = len(best.unique_strategies)
        if agreeing >= 3:
            confidence += self.policy.three_strategy_bonus
        elif agreeing >= 2:
            confidence += self.policy.two_strategy_bonus
        confidence = min(100, confidence)

        logger.info(
            "Total elected",
            total_cents=best.value_cents,
            confidence=confidence,
            strategies=[s.value for s in best.unique_strategies],
            proposals=len(proposals),
            distinct_values=len(groups),
        )
        return TotalFinderResult(
            found=True,
            total_cents=best.value_cents,
            confidence=confidence,
            strategies=best.unique_strategies,
            candidate_count=len(proposals),
            top_groups=groups[:5],
        )

    def collect_proposals(
        self,
        text: str,
        line_items_sum_cents: Optional[int] = None,
        adjustments_net_cents: Optional[int] = None,
        layout_hints: Optional[LayoutHints] = None,
    ) -> List[StrategyProposal]:
        """Run every strategy and return their votes in strategy order."""
        lines = text.split("\n")
        proposals: List[StrategyProposal] = []
        proposals += self.label_adjacency(lines)
        proposals += self.bottom_scan(lines)
        proposals += self.footer_values(lines)
        proposals += self.keyword_proximity(lines)
        proposals += self.largest_values(lines)
        proposals += self.last_page(text)
        proposals += self.pattern_battery(text)
        proposals += self.subtotal_tax_arithmetic(text, layout_hints)
        proposals += self.end_position(lines)
        proposals += self.line_item_sum(text, line_items_sum_cents, adjustments_net_cents)
        proposals += self.ranked_candidates(text, layout_hints)
        return proposals

    def elect(self, proposals: Sequence[StrategyProposal]) -> List[ProposalGroup]:
        """Group votes by exact value and rank the groups."""
        groups: Dict[int, ProposalGroup] = {}
        for proposal in proposals:
            group = groups.get(proposal.value_cents)
            if group is None:
                group = groups[proposal.value_cents] = ProposalGroup(value_cents=proposal.value_cents)
            group.max_score = max(group.max_score, proposal.score)
            group.total_score += proposal.score
            group.strategies.append(proposal.strategy)

        return sorted(
            groups.values(),
            key=lambda g: (-g.max_score, -g.total_score, -len(g.unique_strategies)),
        )

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def label_adjacency(self, lines: List[str]) -> List[StrategyProposal]:
        """Strongest unqualified total label on each line, value beside or below it."""
        found = []
        for i, line in enumerate(lines):
            if EXCLUDE_LINE.search(line):
                continue
            hit = self._first_label(line)
            if hit is None:
                continue
            start, end, score = hit

            values = [v for v, _ in _amounts(line[end:])]
            if not values and i + 1 < len(lines):
                values = [v for v, _ in _amounts(lines[i + 1])]
            if not values:
                values = [v for v, _ in _amounts(line[:start])]
            if values:
                found.append(StrategyProposal(
                    FinderStrategy.LABEL_ADJACENCY, max(values), score, line.strip()[:80],
                ))
        return found

    def _first_label(self, line: str) -> Optional[Tuple[int, int, int]]:
        for pattern, score in TOTAL_LABELS:
            for match in pattern.finditer(line):
                if not _is_qualified(line, match.start(), match.group(0)):
                    return match.start(), match.end(), score
        return None

    def bottom_scan(self, lines: List[str], bonus: int = 0, strategy: FinderStrategy = FinderStrategy.BOTTOM_SCAN) -> List[StrategyProposal]:
        """Walk up from the bottom, voting each time a larger value appears."""
        p = self.policy
        found = []
        largest = 0
        for line in reversed(lines[-p.bottom_scan_lines:]):
            if _skip_line(line):
                continue
            for value, _ in _amounts(line):
                if value < p.bottom_scan_min_cents or value <= largest:
                    continue
                largest = value
                if INVOICE_WORD.search(line) and TOTAL_WORD.search(line):
                    score = p.bottom_scan_invoice_total
                elif TOTAL_WORD.search(line):
                    score = p.bottom_scan_total
                else:
                    score = p.bottom_scan_base
                found.append(StrategyProposal(strategy, value, min(100, score + bonus), line.strip()[:80]))
        return found

    def footer_values(self, lines: List[str]) -> List[StrategyProposal]:
        """Amounts standing alone on a line, scored by the labels around them."""
        p = self.policy
        found = []
        count = len(lines)
        for i, line in enumerate(lines):
            match = STANDALONE_AMOUNT.match(line)
            if not match:
                continue
            value = parse_amount(match.group(1))
            if value < p.footer_min_cents:
                continue
            previous = next((lines[j] for j in range(i - 1, -1, -1) if lines[j].strip()), "")
            if _line_qualified(previous):
                continue

            context = " ".join(lines[max(0, i - p.footer_context_before):i + p.footer_context_after + 1])
            if INVOICE_TOTAL.search(context):
                score = p.footer_invoice_total
            elif TOTAL_WORD.search(context):
                score = p.footer_total
            else:
                score = p.footer_base
            if count > 1 and i / (count - 1) >= 0.66:
                score += p.footer_bottom_third_bonus
            found.append(StrategyProposal(FinderStrategy.FOOTER_VALUE, value, min(100, score), line.strip()))
        return found

    def keyword_proximity(self, lines: List[str]) -> List[StrategyProposal]:
        """First amount within a keyword-specific distance after the keyword."""
        found = []
        for line in lines:
            if EXCLUDE_LINE.search(line):
                continue
            for pattern, distance, score in PROXIMITY_KEYWORDS:
                for match in pattern.finditer(line):
                    if _is_qualified(line, match.start(), match.group(0)):
                        continue
                    window = line[match.end():match.end() + distance]
                    amounts = _amounts(window)
                    if not amounts:
                        continue
                    value, gap = amounts[0]
                    found.append(StrategyProposal(
                        FinderStrategy.KEYWORD_PROXIMITY,
                        value,
                        max(0, score - min(20, gap // 5)),
                        line.strip()[:80],
                    ))
        return found

    def largest_values(self, lines: List[str]) -> List[StrategyProposal]:
        """The few largest distinct amounts, boosted by nearby total words."""
        p = self.policy
        seen: Dict[int, Tuple[int, str]] = {}
        offset = 0
        for line in lines:
            if not _skip_line(line):
                for value, at in _amounts(line):
                    if value not in seen:
                        seen[value] = (offset + at, line)
            offset += len(line) + 1

        ranked = sorted(seen.items(), key=lambda kv: (-kv[0], kv[1][0]))[:p.largest_top_n]
        found = []
        for i, (value, (_, line)) in enumerate(ranked):
            score = p.largest_base - p.largest_step * i
            if TOTAL_WORD.search(line):
                score += p.largest_total_bonus
            if INVOICE_WORD.search(line):
                score += p.largest_invoice_bonus
            if 1000 <= value <= 1_000_000:
                score += p.largest_range_bonus
            found.append(StrategyProposal(
                FinderStrategy.LARGEST_VALUE, value, max(p.largest_min_score, score), line.strip()[:80],
            ))
        return found

    def last_page(self, text: str) -> List[StrategyProposal]:
        """Bottom scan restricted to the final page, when the text marks one."""
        start = None
        for match in LAST_PAGE_MARKER.finditer(text):
            if match.group(1) == match.group(2):
                start = match.start()
        words = list(LAST_PAGE_WORDS.finditer(text))
        if words and (start is None or words[-1].start() > start):
            start = words[-1].start()
        if start is None:
            return []

        line_start = text.rfind("\n", 0, start) + 1
        return self.bottom_scan(
            text[line_start:].split("\n"),
            bonus=self.policy.last_page_bonus,
            strategy=FinderStrategy.LAST_PAGE,
        )

    def pattern_battery(self, text: str) -> List[StrategyProposal]:
        found = []
        for pattern, score in PATTERN_BATTERY:
            for match in pattern.finditer(text):
                line_start = text.rfind("\n", 0, match.start()) + 1
                line_end = text.find("\n", match.start())
                line = text[line_start:line_end if line_end >= 0 else len(text)]
                if EXCLUDE_LINE.search(line):
                    continue
                if _is_qualified(text, match.start(), match.group(0)):
                    continue
                value = parse_amount(match.group(1))
                if value <= 0:
                    continue
                found.append(StrategyProposal(
                    FinderStrategy.PATTERN_BATTERY, value, score, " ".join(match.group(0).split())[:80],
                ))
        return found

    def subtotal_tax_arithmetic(self, text: str, layout_hints: Optional[LayoutHints] = None) -> List[StrategyProposal]:
        """Vote for a printed amount equal to subtotal + tax (+ fees)."""
        subtotals = non_group(extract_subtotal_candidates(text, layout_hints))
        if not subtotals:
            return []
        taxes = extract_tax_candidates(text, layout_hints)
        fees = extract_fee_candidates(text, layout_hints)
        tax = taxes[0].value_cents if taxes else 0
        fee_sum = sum(c.value_cents for c in fees)
        if not tax and not fee_sum:
            return []

        printed = {t.value_cents for t in extract_monetary_tokens(text)}
        tol = self.policy.arithmetic_tolerance_cents
        found = []
        proposed = set()
        additions = sorted({a for a in (tax, fee_sum, tax + fee_sum) if a})
        for subtotal in subtotals[:3]:
            for expected in (subtotal.value_cents + a for a in additions):
                for value in sorted(printed):
                    if abs(value - expected) <= tol and value not in proposed:
                        proposed.add(value)
                        found.append(StrategyProposal(
                            FinderStrategy.SUBTOTAL_TAX_ARITHMETIC,
                            value,
                            self.policy.arithmetic_score,
                            f"{subtotal.value_cents} + {tax} + {fee_sum}",
                        ))
        return found

    def end_position(self, lines: List[str]) -> List[StrategyProposal]:
        """Total-keyword lines scored by how close to the end they sit."""
        p = self.policy
        found = []
        count = len(lines)
        for i, line in enumerate(lines):
            if not END_KEYWORD.search(line) or _skip_line(line):
                continue
            amounts = _amounts(line)
            if not amounts:
                continue
            position = i / (count - 1) if count > 1 else 1.0
            score = p.end_base
            if position >= 0.75:
                score += p.end_bottom_quarter_bonus
            if position >= 0.9:
                score += p.end_bottom_tenth_bonus
            if any(TAX_LINE.search(lines[j]) for j in range(max(0, i - 3), i)):
                score += p.end_after_tax_bonus
            if position < 0.25:
                score -= p.end_top_quarter_penalty
            score = max(p.end_min_score, min(p.end_max_score, score))
            found.append(StrategyProposal(FinderStrategy.END_POSITION, amounts[-1][0], score, line.strip()[:80]))
        return found

    def line_item_sum(
        self,
        text: str,
        line_items_sum_cents: Optional[int],
        adjustments_net_cents: Optional[int],
    ) -> List[StrategyProposal]:
        """Printed amounts that agree with the line items (plus adjustments)."""
        p = self.policy
        if not line_items_sum_cents or line_items_sum_cents <= 0:
            return []
        expected = line_items_sum_cents + (adjustments_net_cents or 0)

        found = []
        proposed = set()
        for token in extract_monetary_tokens(text):
            value = token.value_cents
            if value in proposed:
                continue
            line_start = text.rfind("\n", 0, token.source_offset) + 1
            line_end = text.find("\n", token.source_offset)
            if _line_qualified(text[line_start:line_end if line_end >= 0 else len(text)]):
                continue

            diff = abs(value - expected)
            if diff <= 1:
                score = p.item_sum_exact
            elif expected > 0 and diff / expected <= p.item_sum_pct:
                score = p.item_sum_close
            elif abs(value - line_items_sum_cents) <= 1:
                score = p.item_sum_only
            else:
                continue
            proposed.add(value)
            found.append(StrategyProposal(FinderStrategy.LINE_ITEM_SUM, value, score, token.raw_text.strip()))
        return found

    def ranked_candidates(self, text: str, layout_hints: Optional[LayoutHints] = None) -> List[StrategyProposal]:
        return [
            StrategyProposal(FinderStrategy.RANKED_CANDIDATES, c.value_cents, c.score, c.label)
            for c in non_group(extract_total_candidates(text, layout_hints))
        ]

    def _group_fallback(self, text: str, layout_hints: Optional[LayoutHints]) -> TotalFinderResult:
        groups = [c for c in extract_total_candidates(text, layout_hints) if c.is_group_total]
        if not groups:
            logger.info("No total found")
            return TotalFinderResult(found=False)

        best = groups[0]
        logger.warning("Total elected from group total", total_cents=best.value_cents, label=best.label)
        return TotalFinderResult(
            found=True,
            total_cents=best.value_cents,
            confidence=min(self.policy.group_fallback_cap, best.score),
            strategies=[FinderStrategy.RANKED_CANDIDATES],
            used_group_fallback=True,
            candidate_count=len(groups),
        )


def find_total(
    text: str,
    line_items_sum_cents: Optional[int] = None,
    adjustments_net_cents: Optional[int] = None,
    layout_hints: Optional[LayoutHints] = None,
) -> TotalFinderResult:
    """Convenience wrapper around TotalFinder with the default policy."""
    return TotalFinder().find(text, line_items_sum_cents, adjustments_net_cents, layout_hints)
