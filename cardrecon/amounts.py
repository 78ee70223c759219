"""
Money helpers shared by the parser, matcher and import executor.

Every amount in the core goes through `to_amount` and every sum through
`signed_total`. Refunds stay negative all the way down. The two magnitude
helpers are the only places an absolute value is taken.
"""
from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Iterable
import re

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_AMOUNT_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")


def to_amount(value) -> Decimal:
    """
    Converts str / int / float / Decimal to a 2-place Decimal, keeping the sign.
    Raises ValueError for anything that is not a plain decimal or would lose cents.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid amount: {value!r}")

    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip()
        if not _AMOUNT_RE.match(text):
            raise ValueError(f"invalid amount: {value!r}")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"invalid amount: {value!r}") from None

    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")

    quantized = amount.quantize(CENT)
    if quantized != amount:
        raise ValueError(f"amount has more than two decimal places: {value!r}")
    return quantized


def signed_total(amounts: Iterable) -> Decimal:
    total = ZERO
    for a in amounts:
        total += to_amount(a)
    return total


def payment_magnitude(line) -> Decimal:
    # aggregate payment lines only; they are recorded negative by the issuer
    if line.role != "aggregate_payment":
        raise ValueError("magnitude is only defined for the aggregate payment line")
    return abs(to_amount(line.amount))


def bill_payment_magnitude(tx) -> Decimal:
    if not tx.is_bill_payment:
        raise ValueError("magnitude is only defined for bill payment transactions")
    return abs(to_amount(tx.amount))
