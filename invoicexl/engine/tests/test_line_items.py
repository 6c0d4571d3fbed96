"""
Tests for line-item validation and repair.
"""

from decimal import Decimal

import pytest

from invoicexl.engine.line_items import LineItemValidator, apply_rounding, summarize_line_items
from invoicexl.engine.models import LineItem, LineItemRepair, RoundingMode


def _item(quantity, unit_price, total_cents, weight=None, category="item") -> LineItem:
    return LineItem(
        description="WIDGET",
        quantity=Decimal(str(quantity)),
        unit_price=Decimal(str(unit_price)),
        line_total_cents=total_cents,
        weight=Decimal(str(weight)) if weight is not None else None,
        category=category,
    )


@pytest.fixture
def validator():
    return LineItemValidator()


class TestValidation:
    """Test quantity x unit price checks."""

    def test_matching_item(self, validator):
        item, check = validator.validate(_item(2, "5.00", 1000))
        assert check.is_valid
        assert check.repair == LineItemRepair.NONE
        assert item.math_validated
        assert item.rounding_mode == RoundingMode.STANDARD

    def test_bankers_rounding(self):
        validator = LineItemValidator(tolerance_cents=0)
        item, check = validator.validate(_item(1, "0.125", 12))
        assert check.is_valid
        assert check.rounding_mode == RoundingMode.BANKERS

    def test_mismatch_without_repair(self):
        validator = LineItemValidator(auto_repair=False)
        item, check = validator.validate(_item(2, "5.00", 1600), index=3)
        assert not check.is_valid
        assert check.index == 3
        assert check.delta_cents == 600
        assert not item.math_validated

    def test_validate_all_keeps_order(self, validator):
        items, checks = validator.validate_all([_item(2, "5.00", 1000), _item(1, "3.00", 300)])
        assert [i.line_total_cents for i in items] == [1000, 300]
        assert [c.index for c in checks] == [0, 1]


# =============================================================================
# Repairs
# =============================================================================

class TestRepairs:
    """Test catch-weight, quantity and unit-price repairs."""

    def test_catch_weight_recomputes_price(self, validator):
        """84 cases weighed at 84 lb: the price per pound is derived from the total."""
        item, check = validator.validate(_item(84, "58.570", 11714, weight="84.000"))
        assert check.is_valid
        assert check.repair == LineItemRepair.CATCH_WEIGHT
        assert item.is_catch_weight
        assert item.quantity == Decimal("84.000")
        assert item.unit_price == Decimal("1.3945")
        assert item.original_unit_price == Decimal("58.570")

    def test_catch_weight_keeps_per_pound_price(self, validator):
        item, check = validator.validate(_item(2, "4.99", 4990, weight=10))
        assert check.repair == LineItemRepair.CATCH_WEIGHT
        assert item.quantity == Decimal("10")
        assert item.unit_price == Decimal("4.99")
        assert item.original_quantity == Decimal("2")
        assert item.original_unit_price is None

    def test_item_code_read_as_quantity(self, validator):
        item, check = validator.validate(_item(12345, "5.00", 1000))
        assert check.repair == LineItemRepair.QUANTITY
        assert item.quantity == Decimal("2")
        assert item.original_quantity == Decimal("12345")

    def test_unit_price_repair(self, validator):
        item, check = validator.validate(_item(3, "5.00", 1600))
        assert check.repair == LineItemRepair.UNIT_PRICE
        assert item.unit_price == Decimal("5.3333")
        assert item.original_unit_price == Decimal("5.00")

    def test_zero_total_not_repaired(self, validator):
        item, check = validator.validate(_item(3, "5.00", 0))
        assert not check.is_valid
        assert item.correction_applied == LineItemRepair.NONE


class TestHelpers:
    """Test summaries and rounding helpers."""

    def test_summary(self, validator):
        items, _ = validator.validate_all([
            _item(2, "5.00", 1000),
            _item(12345, "5.00", 1000, category="produce"),
        ])
        summary = summarize_line_items(items)
        assert summary.count == 2
        assert summary.total_cents == 2000
        assert summary.by_category == {"item": 1000, "produce": 1000}
        assert summary.validated == 2
        assert summary.repaired == 1

    def test_apply_rounding(self):
        assert apply_rounding(Decimal("1250.5"), RoundingMode.BANKERS) == 1250
        assert apply_rounding(Decimal("1250.5"), RoundingMode.STANDARD) == 1251
