from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field

class TransactionCreate(BaseModel):
    date: date
    description: str
    amount: Decimal
    category_id: int | None = None
    is_bill_payment: bool = False

class TransactionOut(BaseModel):
    id: int
    date: date
    description: str
    amount: Decimal
    category_id: int | None = None
    billing_cycle: str | None = None
    parent_bill_payment_id: int | None = None
    is_bill_payment: bool
    expanded_at: datetime | None = None
    is_hidden: bool
    installment_current: int | None = None
    installment_total: int | None = None

    class Config:
        from_attributes = True

class StatementLineOut(BaseModel):
    line_number: int
    date: date
    description: str
    amount: Decimal
    role: str
    installment_current: int | None = None
    installment_total: int | None = None

    class Config:
        from_attributes = True

class CandidateOut(BaseModel):
    bill_payment: TransactionOut
    difference: Decimal
    days_apart: int
    confidence: str

class StatementIn(BaseModel):
    raw_text: str

class PreviewOut(BaseModel):
    billing_cycle: str
    lines: list[StatementLineOut]
    net_total: Decimal
    statement_total: Decimal | None = None
    candidate: CandidateOut | None = None
    candidates: list[CandidateOut]
    difference: Decimal | None = None
    match_confidence: str
    fingerprint: str

class ImportIn(BaseModel):
    raw_text: str
    bill_payment_id: int | None = None
    # statement line number -> category id
    categories: dict[int, int] = Field(default_factory=dict)
    force: bool = False
    auto_link: bool = False

class ImportOut(BaseModel):
    created_count: int
    categorized_count: int
    billing_cycle: str
    parent_bill_payment_id: int | None = None
    import_batch_id: int

class ImportBatchOut(BaseModel):
    id: int
    billing_cycle: str
    status: str  # pending | linked
    net_total: Decimal
    anchor_date: date | None = None
    parent_bill_payment_id: int | None = None
    linked_at: datetime | None = None
    line_count: int
    created_count: int
    categorized_count: int
    created_at: datetime

    class Config:
        from_attributes = True

class LinkIn(BaseModel):
    # omitted: link the bill payment that matches exactly
    bill_payment_id: int | None = None
    force: bool = False

class CategoryRuleCreate(BaseModel):
    pattern: str
    category_id: int
    priority: int = 0
    match_type: str = "custom"  # contains | starts_with | exact | custom

class CategoryRuleUpdate(BaseModel):
    pattern: str | None = None
    match_type: str | None = None
    category_id: int | None = None
    priority: int | None = None
    is_active: bool | None = None

class CategoryRuleOut(BaseModel):
    id: int
    pattern: str
    category_id: int
    priority: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class CategoryRuleCreated(BaseModel):
    rule: CategoryRuleOut
    transactions_updated: int

class ReorderItem(BaseModel):
    rule_id: int
    priority: int

class ReorderIn(BaseModel):
    items: list[ReorderItem]

class ResolveIn(BaseModel):
    description: str

class ResolveOut(BaseModel):
    description: str
    category_id: int | None = None

class PatternTestIn(BaseModel):
    pattern: str
    match_type: str = "custom"
    limit: int = Field(default=10, ge=1, le=100)

class PatternTestOut(BaseModel):
    pattern: str
    match_count: int
    matches: list[TransactionOut]
