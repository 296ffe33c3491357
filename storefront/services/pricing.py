"""
Cart pricing.

Totals follow one formula everywhere (cart view, coupon report, checkout):

    taxable     = subtotal - discount
    tax         = taxable * tax_rate / 100
    grand_total = taxable + tax + shipping      (never negative)

Shipping is free with a free-shipping coupon or when ``taxable`` reaches
``settings.free_shipping_threshold``; an empty cart ships nothing.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from storefront.config import settings
from storefront.constants.coupon import CouponType
from storefront.models.coupon import Coupon
from storefront.utils.money import ZERO, to_money


@dataclass
class CartLine:
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    item_id: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return to_money(Decimal(self.unit_price) * self.quantity)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price": to_money(self.unit_price),
            "quantity": self.quantity,
            "line_total": self.line_total,
        }


@dataclass
class CartSnapshot:
    lines: List[CartLine] = field(default_factory=list)
    customer_type: str = "B2C"
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    free_shipping: bool = False
    shipping: Decimal = ZERO
    tax_rate: Decimal = ZERO
    tax: Decimal = ZERO
    grand_total: Decimal = ZERO
    coupon_code: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def items_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self.lines],
            "summary": {
                "items_count": self.items_count,
                "subtotal": self.subtotal,
                "discount": self.discount,
                "shipping": self.shipping,
                "tax_rate": self.tax_rate,
                "tax": self.tax,
                "total": self.grand_total,
                "coupon_code": self.coupon_code,
            },
        }


def cart_lines(cart) -> List[CartLine]:
    return [
        CartLine(
            product_id=item.product_id,
            product_name=item.product_name,
            unit_price=Decimal(item.unit_price),
            quantity=item.quantity,
            item_id=item.id,
        )
        for item in cart.items
    ]


def compute_discount(coupon: Coupon, subtotal) -> Decimal:
    """Item discount granted by ``coupon`` on ``subtotal``.

    Percentage coupons are capped by ``maximum_discount``; no discount ever
    exceeds the subtotal. Free-shipping coupons grant no item discount.
    """
    subtotal = to_money(subtotal)
    value = Decimal(coupon.value or 0)
    coupon_type = CouponType(coupon.type)

    if coupon_type == CouponType.percentage:
        discount = subtotal * value
        if coupon.maximum_discount is not None:
            discount = min(discount, Decimal(coupon.maximum_discount))
    elif coupon_type == CouponType.fixed_amount:
        discount = value
    else:
        return ZERO

    return to_money(max(ZERO, min(discount, subtotal)))


def shipping_cost(taxable_amount, free_shipping: bool = False, empty: bool = False) -> Decimal:
    if empty or free_shipping:
        return ZERO
    if to_money(taxable_amount) >= to_money(settings.free_shipping_threshold):
        return ZERO
    return to_money(settings.flat_shipping_cost)


def price_lines(
    lines: List[CartLine],
    customer_type: str = "B2C",
    coupon: Optional[Coupon] = None,
    tax_rate=None,
) -> CartSnapshot:
    """Price ``lines``; ``coupon`` must already be known to be eligible."""
    tax_rate = to_money(settings.tax_rate if tax_rate is None else tax_rate)
    subtotal = to_money(sum((line.line_total for line in lines), ZERO))

    discount = ZERO
    free_shipping = False
    if coupon is not None:
        discount = compute_discount(coupon, subtotal)
        free_shipping = CouponType(coupon.type) == CouponType.free_shipping

    taxable = subtotal - discount
    tax = to_money(taxable * tax_rate / 100)
    shipping = shipping_cost(taxable, free_shipping=free_shipping, empty=not lines)
    grand_total = max(ZERO, to_money(taxable + tax + shipping))

    return CartSnapshot(
        lines=list(lines),
        customer_type=customer_type,
        subtotal=subtotal,
        discount=discount,
        free_shipping=free_shipping,
        shipping=shipping,
        tax_rate=tax_rate,
        tax=tax,
        grand_total=grand_total,
        coupon_code=coupon.code if coupon is not None else None,
    )
