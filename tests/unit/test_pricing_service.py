"""
Unit tests for pricing, discounts and the box counter.
"""

import pytest
from decimal import Decimal
from supplier_portal.exceptions import (
    BoxCountRequired, BusinessLogicError, DiscountExceedsTotal, DiscountOutOfRange,
)
from supplier_portal.services.box_counter import BoxCounter
from supplier_portal.services.line_item_registry import LineItem
from supplier_portal.services.pricing_service import (
    Discount, grand_total, line_subtotal, order_totals, round2,
)

TOTAL = Decimal('1000.00')


def make_item(unit_cost, quantity):
    return LineItem(name='Tee', code='TEE', unit_cost=unit_cost, quantity=quantity)


class TestTotals:
    """Tests for line and order totals."""

    def test_line_subtotal_rounds_half_up(self):
        assert line_subtotal(make_item('0.125', 1)) == Decimal('0.13')
        assert round2(Decimal('2.675')) == Decimal('2.68')

    def test_grand_total(self):
        items = [make_item('100', 3), make_item('12.50', 2)]
        assert grand_total(items) == Decimal('325.00')

    def test_empty_order(self):
        assert grand_total([]) == Decimal('0.00')

    def test_order_totals(self):
        totals = order_totals([make_item('100', 10)], Discount('percent', '10'))
        assert totals['grand_total'] == TOTAL
        assert totals['discount_amount'] == Decimal('100.00')
        assert totals['final_amount'] == Decimal('900.00')


class TestDiscount:
    """Tests for percent and amount discounts."""

    def test_percent_discount(self):
        discount = Discount('percent', '50')
        assert discount.computed_amount(TOTAL) == Decimal('500.00')
        assert discount.validate(TOTAL) is None

    def test_percent_over_hundred(self):
        violation = Discount('percent', '150').validate(TOTAL)
        assert isinstance(violation, DiscountOutOfRange)

    def test_negative_discount(self):
        violation = Discount('amount', '-5').validate(TOTAL)
        assert isinstance(violation, DiscountOutOfRange)
        assert Discount('amount', '-5').computed_amount(TOTAL) == Decimal('0.00')

    def test_amount_exceeding_total(self):
        discount = Discount('amount', '1200')
        violation = discount.validate(TOTAL)
        assert isinstance(violation, DiscountExceedsTotal)
        assert violation.message == 'Discount amount (1200.00) cannot exceed the grand total (1000.00)'
        assert discount.computed_amount(TOTAL) == TOTAL

    def test_amount_equal_to_total_allowed(self):
        assert Discount('amount', '1000').validate(TOTAL) is None

    def test_aliases(self):
        assert Discount('percentage', '5').type == 'percent'
        assert Discount(None, '5').type == 'amount'

    def test_unknown_type(self):
        with pytest.raises(BusinessLogicError):
            Discount('coupon', '5')

    def test_non_numeric_value_reported(self):
        """A mistyped value is a violation, not a silent zero discount."""
        discount = Discount('amount', '1O0')
        violation = discount.validate(TOTAL)
        assert isinstance(violation, DiscountOutOfRange)
        assert violation.field == 'discount'
        assert "'1O0'" in violation.message
        assert discount.computed_amount(TOTAL) == Decimal('0.00')

    def test_non_finite_value_reported(self):
        assert isinstance(Discount('percent', 'NaN').validate(TOTAL), DiscountOutOfRange)

    def test_blank_value_is_no_discount(self):
        discount = Discount('amount', '')
        assert discount.value == Decimal('0')
        assert discount.validate(TOTAL) is None


class TestBoxCounter:
    """Tests for the shipping box count."""

    def test_zero_boxes_is_a_violation(self):
        assert isinstance(BoxCounter(0).validate(), BoxCountRequired)

    def test_positive_count_passes(self):
        counter = BoxCounter()
        counter.set('3')
        assert counter.validate() is None
        assert counter.to_boxes() == [{'boxNumber': 1}, {'boxNumber': 2}, {'boxNumber': 3}]

    def test_negative_input_coerced(self):
        assert BoxCounter(-4).count == 0

    def test_count_from_persisted_boxes(self):
        items = [
            {'boxes': [{'boxNumber': 1}, {'boxNumber': 2}]},
            {'boxes': [{'boxNumber': 2}, {'boxNumber': 3}]},
            {},
        ]
        assert BoxCounter.from_item_boxes(items).count == 3
