"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database; the API client is wired
to the same session factory through a dependency override.
"""

import os
from datetime import date
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cardrecon.db import Base, get_db
from cardrecon.models import CategoryRule, Owner, Transaction


REFUND_CSV = """date,title,amount
2025-11-15,Estorno de compra,-253.82
2025-11-14,Bourbon Ipiranga,620.73
2025-11-04,Pagamento recebido,-366.91
"""

SIMPLE_CSV = """date,title,amount
2025-11-08,Bourbon Ipiranga,794.15
2025-11-07,Mercado Silva,108.99
2025-11-06,Aloha Petshop,89.90
2025-11-04,Pagamento recebido,-993.04
"""

INSTALLMENT_CSV = """date,title,amount
2025-11-08,Hospital Sao Lucas da - Parcela 1/3,196.84
2025-11-08,Mercadolivre*Mercadol - Parcela 1/6,55.04
2025-11-04,Livraria da Travessa L - Parcela 2/3,79.30
2025-11-04,Pagamento recebido,-331.18
"""


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def owner():
    return Owner("user", 1)


@pytest.fixture
def other_owner():
    return Owner("group", 1)


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient
    from cardrecon.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return {"X-Owner-Type": "user", "X-Owner-Id": "1"}


@pytest.fixture
def add_transaction(db, owner):
    """Insert a ledger transaction directly."""

    def _add(description, amount, when=date(2025, 11, 4), is_bill_payment=False, category_id=None, who=None):
        who = who or owner
        tx = Transaction(
            date=when,
            description=description,
            amount=Decimal(str(amount)),
            owner_type=who.owner_type,
            owner_id=who.owner_id,
            category_id=category_id,
            is_bill_payment=is_bill_payment,
        )
        db.add(tx)
        db.commit()
        db.refresh(tx)
        return tx

    return _add


@pytest.fixture
def add_rule(db, owner):
    """Insert a rule directly, bypassing the retroactive pass."""

    def _add(pattern, category_id, priority=0, is_active=True, who=None):
        who = who or owner
        rule = CategoryRule(
            pattern=pattern,
            category_id=category_id,
            priority=priority,
            is_active=is_active,
            owner_type=who.owner_type,
            owner_id=who.owner_id,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    return _add
