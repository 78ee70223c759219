"""
Confirmed statement import.

Turns a previewed statement into child transactions and, when a bill payment
was chosen, expands that bill payment into them. Everything for one statement
is written in a single database transaction; a failure to write any row rolls
the whole batch back. Categorization problems never abort the batch.

A statement imported without a bill payment stays pending. It can be linked
later, either to a chosen bill payment or to the one that matches it exactly,
and it is linked automatically when a matching bill payment is recorded.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .categorizer import load_active_rules, match_rules
from .config import settings
from .errors import (
    CategorizationDegraded, DuplicateImportError, NotFoundError, PersistenceError,
    ReconciliationError, ValidationError,
)
from .importers import AGGREGATE_PAYMENT, read_statement_csv
from .matcher import EXACT, anchor_date, confidence, find_candidates, match_difference, reconcile
from .models import ImportBatch, Owner, Transaction, owned_by

logger = logging.getLogger(__name__)

PENDING = "pending"
LINKED = "linked"


@dataclass(frozen=True)
class ImportResult:
    created_count: int
    categorized_count: int
    billing_cycle: str
    parent_bill_payment_id: int | None
    import_batch_id: int


def find_import(db: Session, owner: Owner, billing_cycle: str, fingerprint: str):
    """The batch already holding this statement, whichever bill payment it is linked to."""
    stmt = select(ImportBatch).where(
        owned_by(ImportBatch, owner),
        ImportBatch.billing_cycle == billing_cycle,
        ImportBatch.fingerprint == fingerprint,
    )
    return db.execute(stmt).scalar_one_or_none()


def get_import(db: Session, owner: Owner, import_batch_id: int) -> ImportBatch:
    batch = db.execute(
        select(ImportBatch).where(ImportBatch.id == import_batch_id, owned_by(ImportBatch, owner))
    ).scalar_one_or_none()
    if batch is None:
        raise NotFoundError(f"import {import_batch_id} not found", field="import_batch_id")
    return batch


def list_imports(db: Session, owner: Owner, status: str | None = None) -> list[ImportBatch]:
    """Newest cycle first. status: "pending", "linked" or None for both."""
    stmt = select(ImportBatch).where(owned_by(ImportBatch, owner))
    if status == PENDING:
        stmt = stmt.where(ImportBatch.parent_bill_payment_id.is_(None))
    elif status == LINKED:
        stmt = stmt.where(ImportBatch.parent_bill_payment_id.is_not(None))
    elif status is not None:
        raise ValidationError(f"unknown import status {status!r}", field="status")
    stmt = stmt.order_by(ImportBatch.billing_cycle.desc(), ImportBatch.id.desc())
    return list(db.execute(stmt).scalars().all())


def load_bill_payment(db: Session, owner: Owner, bill_payment_id: int) -> Transaction:
    tx = db.execute(
        select(Transaction).where(Transaction.id == bill_payment_id, owned_by(Transaction, owner))
    ).scalar_one_or_none()
    if tx is None:
        raise NotFoundError(f"bill payment {bill_payment_id} not found", field="bill_payment_id")
    if not tx.is_bill_payment:
        raise ValidationError(f"transaction {bill_payment_id} is not a bill payment", field="bill_payment_id")
    if tx.expanded_at is not None:
        raise ValidationError(f"bill payment {bill_payment_id} is already expanded", field="bill_payment_id")
    return tx


def _check_difference(parent: Transaction, total: Decimal, force: bool) -> None:
    difference = match_difference(parent, total)
    if difference > settings.close_tolerance and not force:
        raise ValidationError(
            f"bill payment {parent.id} differs from the statement net total by {difference}",
            field="bill_payment_id",
        )


def _expand(db: Session, parent_id: int, now: datetime) -> None:
    expanded = db.execute(
        update(Transaction)
        .where(Transaction.id == parent_id, Transaction.expanded_at.is_(None))
        .values(expanded_at=now, is_hidden=True)
    )
    if expanded.rowcount != 1:
        raise ValidationError(f"bill payment {parent_id} is already expanded", field="bill_payment_id")


def _categorizer(db: Session, owner: Owner):
    """
    Loads the owner's rules once for the batch. If they cannot be loaded every
    line stays uncategorized.
    """
    try:
        rules = load_active_rules(db, owner)
    except CategorizationDegraded:
        logger.warning("rules unavailable for %s, importing uncategorized", owner, exc_info=True)
        rules = []

    def categorize(description: str) -> int | None:
        try:
            return match_rules(description, rules)
        except Exception:
            # one bad line must not sink the batch
            logger.warning("categorization failed for %r", description, exc_info=True)
            return None

    return categorize


def import_statement(
    db: Session,
    owner: Owner,
    raw_text: str,
    chosen_bill_payment_id: int | None = None,
    categories: dict[int, int] | None = None,
    force: bool = False,
    auto_link: bool = False,
) -> ImportResult:
    """
    categories: explicit category ids keyed by statement line number; they win
    over rules.
    force: link the chosen bill payment even when the totals disagree by more
    than the close tolerance.
    auto_link: with no explicit choice, link the best candidate if it is an
    exact match.

    A statement already imported for the owner and cycle is a duplicate no
    matter which bill payment either call would link. Use link_pending_import
    to attach a pending import to a bill payment.
    """
    categories = categories or {}
    lines = read_statement_csv(raw_text)

    try:
        preview = reconcile(db, owner, lines)

        if find_import(db, owner, preview.billing_cycle, preview.fingerprint) is not None:
            raise DuplicateImportError(
                f"statement for {preview.billing_cycle} was already imported"
            )

        parent_id = chosen_bill_payment_id
        if parent_id is None and auto_link and preview.match_confidence == EXACT:
            parent_id = preview.candidate.transaction.id
            logger.info("auto-linking cycle %s to bill payment %s", preview.billing_cycle, parent_id)

        parent = None
        if parent_id is not None:
            parent = load_bill_payment(db, owner, parent_id)
            _check_difference(parent, preview.net_total, force)

        categorize = _categorizer(db, owner)
        now = datetime.now(timezone.utc)

        batch = ImportBatch(
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            billing_cycle=preview.billing_cycle,
            fingerprint=preview.fingerprint,
            net_total=preview.net_total,
            anchor_date=anchor_date(lines),
            parent_bill_payment_id=parent_id,
            linked_at=now if parent_id is not None else None,
            line_count=len(lines),
        )
        db.add(batch)
        db.flush()

        if parent is not None:
            _expand(db, parent.id, now)

        created = 0
        categorized = 0
        for line in lines:
            is_payment = line.role == AGGREGATE_PAYMENT
            category_id = categories.get(line.line_number)
            if category_id is None and not is_payment:
                category_id = categorize(line.description)
            if category_id is not None:
                categorized += 1

            db.add(Transaction(
                date=line.date,
                description=line.description,
                amount=line.amount,
                owner_type=owner.owner_type,
                owner_id=owner.owner_id,
                category_id=category_id,
                billing_cycle=preview.billing_cycle,
                parent_bill_payment_id=parent_id,
                is_bill_payment=False,
                is_hidden=is_payment,
                installment_current=line.installment_current,
                installment_total=line.installment_total,
                import_batch_id=batch.id,
            ))
            created += 1

        batch.created_count = created
        batch.categorized_count = categorized
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if "import_batches" in str(e.orig):
            raise DuplicateImportError(
                f"statement for {preview.billing_cycle} was already imported"
            ) from e
        raise PersistenceError(f"import failed: {e.orig}") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"import failed: {e}") from e
    except ReconciliationError:
        db.rollback()
        raise

    logger.info(
        "imported %d lines for %s cycle=%s parent=%s categorized=%d",
        created, owner, preview.billing_cycle, parent_id, categorized,
    )
    return ImportResult(
        created_count=created,
        categorized_count=categorized,
        billing_cycle=preview.billing_cycle,
        parent_bill_payment_id=parent_id,
        import_batch_id=batch.id,
    )


def _exact_bill_payment(db: Session, owner: Owner, batch: ImportBatch) -> int:
    candidates = []
    if batch.anchor_date is not None:
        candidates = find_candidates(db, owner, batch.anchor_date, batch.net_total)
    if not candidates or candidates[0].confidence != EXACT:
        raise ValidationError(
            f"no bill payment matches import {batch.id} exactly", field="bill_payment_id"
        )
    return candidates[0].transaction.id


def link_pending_import(
    db: Session,
    owner: Owner,
    import_batch_id: int,
    bill_payment_id: int | None = None,
    force: bool = False,
) -> ImportBatch:
    """
    Attaches a pending import to a bill payment and expands it, in one
    transaction. Without a bill_payment_id the exact candidate is used, and
    its absence is a ValidationError. The same tolerance and force rules as
    import_statement apply.
    """
    try:
        batch = get_import(db, owner, import_batch_id)
        if batch.parent_bill_payment_id is not None:
            raise ValidationError(
                f"import {batch.id} is already linked to bill payment {batch.parent_bill_payment_id}",
                field="import_batch_id",
            )

        if bill_payment_id is None:
            bill_payment_id = _exact_bill_payment(db, owner, batch)
        parent = load_bill_payment(db, owner, bill_payment_id)
        _check_difference(parent, batch.net_total, force)

        now = datetime.now(timezone.utc)
        linked = db.execute(
            update(ImportBatch)
            .where(ImportBatch.id == batch.id, ImportBatch.parent_bill_payment_id.is_(None))
            .values(parent_bill_payment_id=parent.id, linked_at=now)
        )
        if linked.rowcount != 1:
            raise ValidationError(f"import {batch.id} is already linked", field="import_batch_id")

        _expand(db, parent.id, now)
        db.execute(
            update(Transaction)
            .where(Transaction.import_batch_id == batch.id)
            .values(parent_bill_payment_id=parent.id)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"link failed: {e}") from e
    except ReconciliationError:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info("linked import %s cycle=%s to bill payment %s", batch.id, batch.billing_cycle, parent.id)
    return batch


def link_matching_import(db: Session, owner: Owner, bill: Transaction) -> ImportBatch | None:
    """
    Called when a bill payment is recorded: links the pending import whose net
    total it matches exactly, nearest anchor date first. Returns None when
    nothing matches or the link loses a race.
    """
    if not bill.is_bill_payment or bill.expanded_at is not None:
        return None

    window = timedelta(days=settings.match_window_days)
    pending = db.execute(
        select(ImportBatch).where(
            owned_by(ImportBatch, owner),
            ImportBatch.parent_bill_payment_id.is_(None),
            ImportBatch.anchor_date >= bill.date - window,
            ImportBatch.anchor_date <= bill.date + window,
        )
    ).scalars().all()

    exact = [b for b in pending if confidence(match_difference(bill, b.net_total)) == EXACT]
    if not exact:
        return None
    exact.sort(key=lambda b: (abs((b.anchor_date - bill.date).days), b.id))

    try:
        return link_pending_import(db, owner, exact[0].id, bill.id)
    except ValidationError:
        logger.warning("could not link import %s to bill payment %s", exact[0].id, bill.id, exc_info=True)
        return None
