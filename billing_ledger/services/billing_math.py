# billing_ledger/services/billing_math.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict

from billing_ledger.services.billing_errors import ValidationError


def D(x) -> Decimal:
    try:
        return Decimal(str(x or 0))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {x!r}")


def money2(x) -> Decimal:
    return D(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_line_amounts(qty, amount, less) -> Dict[str, Decimal]:
    """
    Validate one line and return its money figures.
    Unlike the invoice recalc (which caps), bad input here is rejected.
    """
    try:
        q = int(qty)
    except (TypeError, ValueError):
        raise ValidationError(f"qty must be an integer, got {qty!r}")
    if q < 1 or D(qty) != q:
        raise ValidationError("qty must be a whole number >= 1")

    unit = money2(amount)
    if unit < 0:
        raise ValidationError("amount must be >= 0")

    less_amt = money2(less)
    if less_amt < 0:
        raise ValidationError("less (discount) must be >= 0")

    base = money2(unit * q)
    if less_amt > base:
        raise ValidationError(
            f"less (discount) {less_amt} exceeds line value {base}")

    return {
        "qty": q,
        "amount": unit,
        "less": less_amt,
        "line_total": money2(base - less_amt),
    }
