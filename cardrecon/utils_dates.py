from __future__ import annotations
from datetime import date
from typing import Sequence

def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"

def resolve_billing_cycle(lines: Sequence, today: date | None = None) -> str:
    """
    Billing cycle of a classified statement:
      - month of the aggregate payment line, if the statement has one
      - else month of the latest line
      - else the current month
    """
    for line in lines:
        if line.role == "aggregate_payment":
            return month_key(line.date)

    if lines:
        return month_key(max(line.date for line in lines))

    return month_key(today or date.today())
