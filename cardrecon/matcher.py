"""
Statement reconciliation against recorded bill payments.

Read only: nothing here writes to the database. The matcher compares the
statement's algebraic net total (purchases minus refunds) with the magnitude
of each open bill payment near the statement's payment date.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .amounts import ZERO, bill_payment_magnitude, payment_magnitude, signed_total
from .config import settings
from .importers import AGGREGATE_PAYMENT, StatementLine, read_statement_csv, statement_fingerprint
from .models import Owner, Transaction, owned_by
from .utils_dates import resolve_billing_cycle

logger = logging.getLogger(__name__)

EXACT = "exact"
CLOSE = "close"
NONE = "none"


@dataclass(frozen=True)
class Candidate:
    transaction: Transaction
    difference: Decimal
    days_apart: int
    confidence: str


@dataclass
class ReconciliationPreview:
    billing_cycle: str
    lines: list[StatementLine]
    net_total: Decimal
    statement_total: Decimal | None
    fingerprint: str
    candidates: list[Candidate] = field(default_factory=list)

    @property
    def candidate(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None

    @property
    def difference(self) -> Decimal | None:
        return self.candidate.difference if self.candidate else None

    @property
    def match_confidence(self) -> str:
        return self.candidate.confidence if self.candidate else NONE


def payment_line(lines: Sequence[StatementLine]) -> StatementLine | None:
    for line in lines:
        if line.role == AGGREGATE_PAYMENT:
            return line
    return None


def net_total(lines: Sequence[StatementLine]) -> Decimal:
    """Purchases add, refunds subtract. The payment line is not part of the total."""
    return signed_total(line.amount for line in lines if line.role != AGGREGATE_PAYMENT)


def anchor_date(lines: Sequence[StatementLine]) -> date | None:
    payment = payment_line(lines)
    if payment is not None:
        return payment.date
    if lines:
        return max(line.date for line in lines)
    return None


def confidence(
    difference: Decimal,
    exact_tolerance: Decimal | None = None,
    close_tolerance: Decimal | None = None,
) -> str:
    exact_tolerance = settings.exact_tolerance if exact_tolerance is None else exact_tolerance
    close_tolerance = settings.close_tolerance if close_tolerance is None else close_tolerance
    if difference <= exact_tolerance:
        return EXACT
    if difference <= close_tolerance:
        return CLOSE
    return NONE


def match_difference(tx: Transaction, total: Decimal) -> Decimal:
    return abs(bill_payment_magnitude(tx) - total)


def open_bill_payments(db: Session, owner: Owner, start: date, end: date) -> list[Transaction]:
    """Unexpanded bill payments for `owner` dated within [start, end]."""
    stmt = (
        select(Transaction)
        .where(
            owned_by(Transaction, owner),
            Transaction.is_bill_payment.is_(True),
            Transaction.expanded_at.is_(None),
            Transaction.date >= start,
            Transaction.date <= end,
        )
        .order_by(Transaction.date.asc(), Transaction.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def rank_candidates(
    bill_payments: Sequence[Transaction],
    total: Decimal,
    anchor: date,
    exact_tolerance: Decimal | None = None,
    close_tolerance: Decimal | None = None,
) -> list[Candidate]:
    """
    Best first: smallest difference, then nearest to the anchor date,
    then most recently created.
    """
    ranked = []
    for tx in bill_payments:
        diff = match_difference(tx, total)
        ranked.append(Candidate(
            transaction=tx,
            difference=diff,
            days_apart=abs((tx.date - anchor).days),
            confidence=confidence(diff, exact_tolerance, close_tolerance),
        ))

    def sort_key(c: Candidate):
        created = c.transaction.created_at
        created_ts = created.timestamp() if created is not None else 0.0
        return (c.difference, c.days_apart, -created_ts, -c.transaction.id)

    ranked.sort(key=sort_key)
    return ranked


def find_candidates(
    db: Session,
    owner: Owner,
    anchor: date,
    total: Decimal,
    window_days: int | None = None,
    exact_tolerance: Decimal | None = None,
    close_tolerance: Decimal | None = None,
) -> list[Candidate]:
    window_days = settings.match_window_days if window_days is None else window_days
    window = timedelta(days=window_days)
    bill_payments = open_bill_payments(db, owner, anchor - window, anchor + window)
    return rank_candidates(bill_payments, total, anchor, exact_tolerance, close_tolerance)


def reconcile(
    db: Session,
    owner: Owner,
    lines: list[StatementLine],
    window_days: int | None = None,
    exact_tolerance: Decimal | None = None,
    close_tolerance: Decimal | None = None,
) -> ReconciliationPreview:
    payment = payment_line(lines)
    preview = ReconciliationPreview(
        billing_cycle=resolve_billing_cycle(lines),
        lines=lines,
        net_total=net_total(lines),
        statement_total=payment_magnitude(payment) if payment is not None else None,
        fingerprint=statement_fingerprint(lines),
    )

    if not any(line.role != AGGREGATE_PAYMENT for line in lines):
        # nothing to itemize; still a valid preview
        preview.net_total = ZERO
        return preview

    preview.candidates = find_candidates(
        db, owner, anchor_date(lines), preview.net_total,
        window_days, exact_tolerance, close_tolerance,
    )
    logger.debug(
        "reconcile owner=%s cycle=%s net=%s candidates=%d",
        owner, preview.billing_cycle, preview.net_total, len(preview.candidates),
    )
    return preview


def build_preview(db: Session, owner: Owner, raw_text: str, **options) -> ReconciliationPreview:
    """Parse, classify and match a raw statement. Raises FormatError."""
    lines = read_statement_csv(raw_text)
    return reconcile(db, owner, lines, **options)
