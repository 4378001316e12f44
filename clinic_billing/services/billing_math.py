# clinic_billing/services/billing_math.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


def D(x) -> Decimal:
    return Decimal(str(x or 0))


def money2(x) -> Decimal:
    return D(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def money0(x) -> Decimal:
    """Round to whole currency units (invoice header totals)."""
    return D(x).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def line_total(qty, unit_price) -> Decimal:
    """qty x unit price, paise precision. Visit lines carry no tax or discount."""
    return money2(D(qty) * D(unit_price))
