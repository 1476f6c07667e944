"""
Money calculations for estimates and invoices.

All stored monetary fields are derived here from line items and rounded to
cents, half away from zero.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Iterable

from offline_books.storage.errors import ValidationError
from offline_books.storage.models import LineItem


@dataclass(frozen=True)
class InvoiceTotals:
    """Derived money fields of an invoice."""
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float


def round2(amount: float) -> float:
    """Round to 2 decimal places, half away from zero.

    Scales to cents first so results match ``round(x * 100) / 100``.
    Decimal(-0.0) quantizes to -0, which is folded back to 0.0.

    Raises:
        ValidationError: If the amount in cents is not a finite float
    """
    scaled = float(amount) * 100
    if not math.isfinite(scaled):
        raise ValidationError(f"Amount {amount} is out of range")
    with localcontext() as ctx:
        # Room for every digit of the largest float
        ctx.prec = 400
        cents = Decimal(repr(scaled)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return float(cents / 100) + 0.0


def line_total(item: LineItem) -> float:
    return float(item.quantity) * float(item.unit_price)


def items_sum(items: Iterable[LineItem]) -> float:
    """Unrounded sum of quantity x unit price.

    Raises:
        ValidationError: If a line or the sum overflows to infinity
    """
    total = sum((line_total(item) for item in items), 0.0)
    if not math.isfinite(total):
        raise ValidationError("Line item totals are out of range")
    return total


def estimate_total(items: Iterable[LineItem]) -> float:
    """Estimate total: plain sum of the line items, rounded to cents."""
    return round2(items_sum(items))


def invoice_totals(items: Iterable[LineItem], tax_rate: float) -> InvoiceTotals:
    """Compute subtotal, tax and total for an invoice.

    Args:
        items: Invoice line items
        tax_rate: Sales tax as a non-negative fraction (0.06 for 6%)

    Returns:
        InvoiceTotals where ``subtotal + tax_amount == total`` to the cent

    Raises:
        ValueError: If tax_rate is negative
    """
    if tax_rate < 0:
        raise ValueError("tax_rate cannot be negative")
    subtotal = round2(items_sum(items))
    tax_amount = round2(subtotal * tax_rate)
    return InvoiceTotals(
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total=round2(subtotal + tax_amount),
    )
