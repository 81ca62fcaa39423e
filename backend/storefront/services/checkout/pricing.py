"""
Cart pricing and discount evaluation.

Pure functions over already-loaded rows so the rules can be exercised
without a database.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from storefront.database.models import DiscountCode, DiscountType, Product

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    product_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class PricingResult:
    lines: list[PricedLine]
    total_amount: Decimal
    discount_amount: Decimal
    discount_code: Optional[str]

    @property
    def final_amount(self) -> Decimal:
        return self.total_amount - self.discount_amount


def unit_price_for(product: Product) -> Decimal:
    """Sale price when set and lower than list price, otherwise list price."""
    return quantize_money(product.effective_price)


def price_lines(products: dict[uuid.UUID, Product], items: list[tuple[uuid.UUID, int]]) -> list[PricedLine]:
    lines = []
    for product_id, quantity in items:
        unit_price = unit_price_for(products[product_id])
        lines.append(
            PricedLine(
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                subtotal=quantize_money(unit_price * quantity),
            )
        )
    return lines


def discount_rejection_reason(
    code: DiscountCode,
    total_amount: Decimal,
    now: datetime,
) -> Optional[str]:
    """
    Return why a code cannot be applied, or None when every condition holds.
    """
    if not code.is_active:
        return "inactive"
    if now < code.valid_from or now > code.valid_until:
        return "outside_validity_window"
    if code.max_uses is not None and code.used_count >= code.max_uses:
        return "usage_limit_reached"
    if code.min_purchase_amount is not None and total_amount < code.min_purchase_amount:
        return "below_minimum_purchase"
    return None


def discount_amount_for(
    code: Optional[DiscountCode],
    total_amount: Decimal,
    now: datetime,
) -> Decimal:
    """
    Discount for a cart total.

    An unusable code yields zero rather than an error. The result never
    exceeds ``total_amount``.
    """
    if code is None or discount_rejection_reason(code, total_amount, now) is not None:
        return Decimal("0.00")

    if code.discount_type == DiscountType.PERCENTAGE:
        amount = total_amount * Decimal(code.discount_value) / Decimal(100)
    else:
        amount = Decimal(code.discount_value)

    return min(quantize_money(amount), total_amount)


def price_cart(
    products: dict[uuid.UUID, Product],
    items: list[tuple[uuid.UUID, int]],
    code: Optional[DiscountCode],
    now: datetime,
) -> PricingResult:
    lines = price_lines(products, items)
    total_amount = sum((line.subtotal for line in lines), Decimal("0.00"))
    discount_amount = discount_amount_for(code, total_amount, now)
    return PricingResult(
        lines=lines,
        total_amount=total_amount,
        discount_amount=discount_amount,
        discount_code=code.code if code is not None and discount_amount > 0 else None,
    )
