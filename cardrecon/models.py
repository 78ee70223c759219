from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, Boolean, ForeignKey, UniqueConstraint, Index, and_,
)
from .db import Base

@dataclass(frozen=True)
class Owner:
    owner_type: str  # "user" | "group"
    owner_id: int

def owned_by(model, owner: Owner):
    """WHERE clause restricting `model` rows to a single owner."""
    return and_(model.owner_type == owner.owner_type, model.owner_id == owner.owner_id)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_owner_uncategorized", "owner_type", "owner_id", "category_id"),
        Index("ix_transactions_owner_bill_payment", "owner_type", "owner_id", "is_bill_payment", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    description = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # signed, as recorded
    owner_type = Column(String(8), nullable=False)   # "user" | "group"
    owner_id = Column(Integer, nullable=False)
    category_id = Column(Integer, nullable=True)     # external catalog
    billing_cycle = Column(String(7), nullable=True)  # YYYY-MM

    # children point at the bill payment they itemize; the parent holds no collection
    parent_bill_payment_id = Column(Integer, ForeignKey("transactions.id"), nullable=True, index=True)
    is_bill_payment = Column(Boolean, nullable=False, default=False)
    expanded_at = Column(DateTime(timezone=True), nullable=True)
    is_hidden = Column(Boolean, nullable=False, default=False)

    installment_current = Column(Integer, nullable=True)
    installment_total = Column(Integer, nullable=True)
    import_batch_id = Column(Integer, ForeignKey("import_batches.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

class CategoryRule(Base):
    __tablename__ = "category_rules"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", "pattern", name="uq_category_rules_owner_pattern"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pattern = Column(String, nullable=False)                 # regex, stored verbatim
    category_id = Column(Integer, nullable=False, index=True)
    priority = Column(Integer, nullable=False, default=0)    # higher number = applied first
    is_active = Column(Boolean, nullable=False, default=True)
    owner_type = Column(String(8), nullable=False)
    owner_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

class ImportBatch(Base):
    __tablename__ = "import_batches"
    __table_args__ = (
        UniqueConstraint(
            "owner_type", "owner_id", "billing_cycle", "fingerprint",
            name="uq_import_batches_idempotency",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_type = Column(String(8), nullable=False)
    owner_id = Column(Integer, nullable=False)
    billing_cycle = Column(String(7), nullable=False)
    fingerprint = Column(String(64), nullable=False)
    net_total = Column(Numeric(12, 2), nullable=False)  # signed, payment line excluded
    anchor_date = Column(Date, nullable=True)
    # NULL while the cycle is pending; set once, when it is linked to a bill payment
    parent_bill_payment_id = Column(Integer, nullable=True, index=True)
    linked_at = Column(DateTime(timezone=True), nullable=True)
    line_count = Column(Integer, nullable=False)
    created_count = Column(Integer, nullable=False, default=0)
    categorized_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def status(self) -> str:
        return "pending" if self.parent_bill_payment_id is None else "linked"
