import logging
from dataclasses import asdict
from typing import Literal

from fastapi import FastAPI, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import select

from .config import settings
from .db import Base, engine, get_db
from .models import Owner, Transaction, owned_by
from .categorizer import resolve_category
from .errors import CategorizationDegraded, ReconciliationError
from .import_executor import PENDING, import_statement, link_matching_import, link_pending_import, list_imports
from .matcher import build_preview
from .amounts import to_amount
from . import rules as rule_service
from .schemas import (
    CandidateOut, CategoryRuleCreate, CategoryRuleCreated, CategoryRuleOut, CategoryRuleUpdate,
    ImportBatchOut, ImportIn, ImportOut, LinkIn, PatternTestIn, PatternTestOut, PreviewOut, ReorderIn, ResolveIn,
    ResolveOut, StatementIn, StatementLineOut, TransactionCreate, TransactionOut,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Card Statement Reconciliation API")


def get_owner(
    x_owner_type: Literal["user", "group"] = Header(...),
    x_owner_id: int = Header(...),
) -> Owner:
    # resolved upstream by the auth middleware; trusted as given
    return Owner(owner_type=x_owner_type, owner_id=x_owner_id)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
def health():
    return {"status": "ok"}


def _candidate_out(c) -> CandidateOut:
    return CandidateOut(
        bill_payment=TransactionOut.model_validate(c.transaction),
        difference=c.difference,
        days_apart=c.days_apart,
        confidence=c.confidence,
    )


@app.post("/statements/preview", response_model=PreviewOut)
def preview_statement(payload: StatementIn, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    preview = build_preview(db, owner, payload.raw_text)
    candidates = [_candidate_out(c) for c in preview.candidates]
    return PreviewOut(
        billing_cycle=preview.billing_cycle,
        lines=[StatementLineOut.model_validate(line) for line in preview.lines],
        net_total=preview.net_total,
        statement_total=preview.statement_total,
        candidate=candidates[0] if candidates else None,
        candidates=candidates,
        difference=preview.difference,
        match_confidence=preview.match_confidence,
        fingerprint=preview.fingerprint,
    )


@app.post("/statements/import", response_model=ImportOut)
def import_statement_endpoint(payload: ImportIn, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    result = import_statement(
        db,
        owner,
        payload.raw_text,
        chosen_bill_payment_id=payload.bill_payment_id,
        categories=payload.categories,
        force=payload.force,
        auto_link=payload.auto_link,
    )
    return ImportOut(**asdict(result))


@app.get("/statements/imports", response_model=list[ImportBatchOut])
def list_statement_imports(
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    status: Literal["pending", "linked"] | None = Query(default=None),
):
    return list_imports(db, owner, status)


@app.get("/statements/pending", response_model=list[ImportBatchOut])
def list_pending_statements(owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    return list_imports(db, owner, PENDING)


@app.post("/statements/{batch_id}/link", response_model=ImportBatchOut)
def link_statement(batch_id: int, payload: LinkIn, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    return link_pending_import(db, owner, batch_id, payload.bill_payment_id, force=payload.force)


@app.post("/transactions", response_model=TransactionOut)
def create_transaction(payload: TransactionCreate, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    description = payload.description.strip()
    if not description:
        raise HTTPException(status_code=400, detail="description cannot be empty")
    try:
        amount = to_amount(payload.amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    category_id = payload.category_id
    if category_id is None:
        try:
            category_id = resolve_category(db, owner, description)
        except CategorizationDegraded:
            logger.warning("auto-categorization unavailable for %s", owner, exc_info=True)

    tx = Transaction(
        date=payload.date,
        description=description,
        amount=amount,
        owner_type=owner.owner_type,
        owner_id=owner.owner_id,
        category_id=category_id,
        is_bill_payment=payload.is_bill_payment,
    )
    db.add(tx)
    db.commit()
    db.refresh(tx)

    if tx.is_bill_payment and link_matching_import(db, owner, tx) is not None:
        db.refresh(tx)
    return tx


@app.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    include_hidden: bool = Query(default=False),
    parent_id: int | None = Query(default=None),
    billing_cycle: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=2000),
):
    stmt = select(Transaction).where(owned_by(Transaction, owner))

    if not include_hidden:
        stmt = stmt.where(Transaction.is_hidden.is_(False))
    if parent_id is not None:
        stmt = stmt.where(Transaction.parent_bill_payment_id == parent_id)
    if billing_cycle:
        stmt = stmt.where(Transaction.billing_cycle == billing_cycle)

    stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


@app.post("/rules", response_model=CategoryRuleCreated)
def create_rule(payload: CategoryRuleCreate, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    rule, updated = rule_service.create_rule(
        db,
        owner,
        pattern=payload.pattern,
        category_id=payload.category_id,
        priority=payload.priority,
        match_type=payload.match_type,
    )
    return CategoryRuleCreated(rule=CategoryRuleOut.model_validate(rule), transactions_updated=updated)


@app.get("/rules", response_model=list[CategoryRuleOut])
def list_rules(owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    return rule_service.list_rules(db, owner)


@app.post("/rules/reorder", response_model=list[CategoryRuleOut])
def reorder_rules(payload: ReorderIn, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    return rule_service.reorder_rules(db, owner, [(i.rule_id, i.priority) for i in payload.items])


@app.post("/rules/resolve", response_model=ResolveOut)
def resolve(payload: ResolveIn, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    try:
        category_id = resolve_category(db, owner, payload.description)
    except CategorizationDegraded:
        logger.warning("rule resolution unavailable for %s", owner, exc_info=True)
        category_id = None
    return {"description": payload.description, "category_id": category_id}


@app.post("/rules/test", response_model=PatternTestOut)
def preview_rule_pattern(payload: PatternTestIn, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    result = rule_service.preview_pattern(db, owner, payload.pattern, payload.match_type, payload.limit)
    return PatternTestOut(
        pattern=result["pattern"],
        match_count=result["match_count"],
        matches=[TransactionOut.model_validate(tx) for tx in result["matches"]],
    )


@app.patch("/rules/{rule_id}", response_model=CategoryRuleOut)
def update_rule(rule_id: int, payload: CategoryRuleUpdate, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    return rule_service.update_rule(db, owner, rule_id, **payload.model_dump(exclude_unset=True))


@app.delete("/rules/{rule_id}", response_model=dict)
def delete_rule(rule_id: int, owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    return {"deleted": rule_service.delete_rule(db, owner, rule_id)}
