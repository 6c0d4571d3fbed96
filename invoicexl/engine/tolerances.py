"""
Reconciliation tolerances.

Each check reads its own named constant; none of them is shared between
checks even where the values happen to coincide.
"""

from dataclasses import dataclass
from typing import Optional

from invoicexl.config import Settings, get_settings
from invoicexl.exceptions import ConfigurationError


@dataclass(frozen=True)
class Tolerances:
    line_item_cents: int = 5
    sum_vs_subtotal_pct: float = 0.02
    totals_equation_pct: float = 0.01
    salvage_match_pct: float = 0.05
    salvage_trigger_pct: float = 0.10
    synthetic_max_pct: float = 0.20
    salvage_gross_error_pct: float = 0.50
    printed_total_min_ratio: float = 0.05
    synthetic_min_delta_cents: int = 10
    printed_total_floor_cents: int = 1000
    salvage_penalty: int = 15

    def __post_init__(self):
        for name in (
            "sum_vs_subtotal_pct",
            "totals_equation_pct",
            "salvage_match_pct",
            "salvage_trigger_pct",
            "synthetic_max_pct",
            "salvage_gross_error_pct",
            "printed_total_min_ratio",
        ):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ConfigurationError(
                    f"{name} must be a fraction between 0 and 1",
                    details={"field": name, "value": value},
                )
        if self.line_item_cents < 0 or self.synthetic_min_delta_cents < 0 or self.printed_total_floor_cents < 0:
            raise ConfigurationError("Cent tolerances must not be negative")
        if self.salvage_trigger_pct < self.sum_vs_subtotal_pct:
            raise ConfigurationError(
                "Salvage trigger must not be tighter than the subtotal check",
                details={
                    "salvage_trigger_pct": self.salvage_trigger_pct,
                    "sum_vs_subtotal_pct": self.sum_vs_subtotal_pct,
                },
            )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Tolerances":
        s = settings or get_settings()
        return cls(
            line_item_cents=s.line_item_tolerance_cents,
            sum_vs_subtotal_pct=s.sum_vs_subtotal_pct,
            totals_equation_pct=s.totals_equation_pct,
            salvage_match_pct=s.salvage_match_pct,
            salvage_trigger_pct=s.salvage_trigger_pct,
            synthetic_max_pct=s.synthetic_max_pct,
            salvage_gross_error_pct=s.salvage_gross_error_pct,
            printed_total_min_ratio=s.printed_total_min_ratio,
            synthetic_min_delta_cents=s.synthetic_min_delta_cents,
            printed_total_floor_cents=s.printed_total_floor_cents,
            salvage_penalty=s.salvage_confidence_penalty,
        )
