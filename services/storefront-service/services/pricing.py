"""Checkout arithmetic."""
from dataclasses import dataclass

from config import SHIPPING_FEE, TAX_RATE


def round_money(amount: float) -> float:
    """Round to cents."""
    return round(amount + 0.0, 2)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total: float


def compute_totals(
    subtotal: float,
    discount: float = 0.0,
    shipping_fee: float = SHIPPING_FEE,
    tax_rate: float = TAX_RATE,
) -> OrderTotals:
    """
    Compute order totals.

    Tax is charged on the pre-discount subtotal and shipping is a flat fee.
    total = subtotal + shipping + tax - discount.
    """
    subtotal = round_money(subtotal)
    tax = round_money(subtotal * tax_rate)
    discount = round_money(discount)
    total = round_money(subtotal + shipping_fee + tax - discount)
    return OrderTotals(
        subtotal=subtotal,
        shipping=round_money(shipping_fee),
        tax=tax,
        discount=discount,
        total=total,
    )
