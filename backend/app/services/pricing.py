"""Pricing rules: pure functions, no session or request access.

Two ways an order gets a final price:

* supplier quote: ``final = round2(supplier_price * 1.20)`` and ``admin_margin``
  holds the absolute profit ``final - supplier_price``;
* admin override: the admin picks a margin percentage over the lowest quote,
  ``final = round2(lowest * (1 + margin / 100))`` and ``admin_margin`` holds
  the percentage.

``pricing_path`` on the result records which meaning ``admin_margin`` has.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from app.config.ordering import SUPPLIER_MARGIN_PERCENT, PRICE_CEILING
from app.errors import PriceOutOfRange, ValidationError
from app.models.order import Order

CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def round2(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # too many digits for the decimal context
        raise PriceOutOfRange()


@dataclass(frozen=True)
class PricingResult:
    supplier_price: Decimal
    final_price: Decimal
    admin_margin: Decimal
    pricing_path: str


def _check_range(*amounts: Decimal):
    for amount in amounts:
        if amount > PRICE_CEILING:
            raise PriceOutOfRange()


def supplier_quote_pricing(price) -> PricingResult:
    supplier_price = round2(price)
    if supplier_price <= 0:
        raise ValidationError('price must be greater than 0')
    final_price = round2(supplier_price * (1 + SUPPLIER_MARGIN_PERCENT / HUNDRED))
    profit = round2(final_price - supplier_price)
    _check_range(supplier_price, final_price, profit)
    return PricingResult(supplier_price, final_price, profit, Order.PRICING_SUPPLIER_QUOTE)


def admin_override_pricing(lowest_price, margin_percent) -> PricingResult:
    supplier_price = round2(lowest_price)
    margin = round2(margin_percent)
    if margin < 0:
        raise ValidationError('margin_percent must be zero or positive')
    _check_range(margin)
    final_price = round2(supplier_price * (1 + margin / HUNDRED))
    _check_range(supplier_price, final_price)
    return PricingResult(supplier_price, final_price, margin, Order.PRICING_ADMIN_OVERRIDE)


def lowest_quote(quotes: Iterable):
    """Cheapest quote; ties keep the first one in iteration order."""
    lowest = None
    for q in quotes:
        if lowest is None or Decimal(q.price) < Decimal(lowest.price):
            lowest = q
    return lowest


def apply_pricing(order: Order, result: Optional[PricingResult]):
    """Write a pricing result onto the order, or clear every price field when None."""
    if result is None:
        order.supplier_price = None
        order.final_price = None
        order.admin_margin = None
        order.pricing_path = None
        return order
    order.supplier_price = result.supplier_price
    order.final_price = result.final_price
    order.admin_margin = result.admin_margin
    order.pricing_path = result.pricing_path
    return order
