"""Pricing and discount calculations for dispatch orders."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional

from supplier_portal.exceptions import (
    BusinessLogicError, DiscountExceedsTotal, DiscountOutOfRange, ValidationViolation,
)

CENT = Decimal('0.01')
HUNDRED = Decimal('100')

DISCOUNT_PERCENT = 'percent'
DISCOUNT_AMOUNT = 'amount'
DISCOUNT_TYPES = (DISCOUNT_PERCENT, DISCOUNT_AMOUNT)


def round2(value) -> Decimal:
    """Round a monetary value to cents (half up)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(value) -> Optional[Decimal]:
    """Blank input is zero; None means the value is not a finite number."""
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal('0')
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def to_decimal(value) -> Decimal:
    result = parse_decimal(value)
    return Decimal('0') if result is None else result


def line_subtotal(item) -> Decimal:
    return round2(to_decimal(item.unit_cost) * int(item.quantity or 0))


def grand_total(items: Iterable) -> Decimal:
    return round2(sum((line_subtotal(item) for item in items), Decimal('0')))


class Discount:
    """
    Order-level discount as entered by the user.

    Type and value are kept as entered so an edited order can be re-opened
    with the same input; the amount is always derived from the current total.
    """

    def __init__(self, discount_type: str = DISCOUNT_AMOUNT, value=Decimal('0')):
        if discount_type in ('percentage', 'PERCENT'):
            discount_type = DISCOUNT_PERCENT
        elif discount_type in ('AMOUNT', None, ''):
            discount_type = DISCOUNT_AMOUNT
        if discount_type not in DISCOUNT_TYPES:
            raise BusinessLogicError(f"Unknown discount type: {discount_type}")
        self.type = discount_type
        parsed = parse_decimal(value)
        # Unparseable input is kept so validate() can report it instead of treating it as zero.
        self.invalid_input = None if parsed is not None else str(value)
        self.value = Decimal('0') if parsed is None else parsed

    def raw_amount(self, total: Decimal) -> Decimal:
        if self.type == DISCOUNT_PERCENT:
            return round2(total * self.value / HUNDRED)
        return round2(self.value)

    def computed_amount(self, total: Decimal) -> Decimal:
        """Discount amount clamped into [0, total]."""
        amount = self.raw_amount(total)
        if amount < 0:
            return Decimal('0.00')
        return min(amount, round2(total))

    def validate(self, total: Decimal) -> Optional[ValidationViolation]:
        """Return the first violation for this discount against ``total``, if any."""
        if self.invalid_input is not None:
            return DiscountOutOfRange(
                self.invalid_input, self.type, message=f"Discount value '{self.invalid_input}' is not a number")
        if self.value < 0 or (self.type == DISCOUNT_PERCENT and self.value > HUNDRED):
            return DiscountOutOfRange(self.value, self.type)
        amount = self.raw_amount(total)
        if amount > total:
            return DiscountExceedsTotal(amount, round2(total))
        return None

    def to_dict(self, total: Decimal) -> dict:
        return {
            'type': self.type,
            'value': str(self.value),
            'computedAmount': str(self.computed_amount(total)),
        }

    def __repr__(self):
        return f"<Discount({self.type}, {self.value})>"


def order_totals(items: List, discount: Discount) -> dict:
    """Grand total, discount and final amount for a list of line items."""
    total = grand_total(items)
    discount_amount = discount.computed_amount(total)
    return {
        'lines': [
            {'code': item.code, 'quantity': item.quantity, 'unit_cost': item.unit_cost,
             'subtotal': line_subtotal(item)}
            for item in items
        ],
        'grand_total': total,
        'discount_amount': discount_amount,
        'final_amount': max(Decimal('0.00'), round2(total - discount_amount)),
    }
