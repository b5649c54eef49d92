"""
Shared fixtures: an in-memory SQLite session with every table created, and
small factories for accounts, transactions and attachments.
"""
import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import ledgerjobs.models  # noqa: F401  (registers every table on Base.metadata)
from ledgerjobs.core.database import Base
from ledgerjobs.models.account import BankAccount, Transaction, TransactionAttachment

# Hex with letters: SQLite gives UUID-declared columns numeric affinity
USER_ID = uuid.UUID("a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def account(db) -> BankAccount:
    acct = BankAccount(user_id=USER_ID, name="Checking", currency_code="USD", is_active=True)
    db.add(acct)
    db.commit()
    return acct


@pytest.fixture
def add_transaction(db, account):
    def _add(
        name: str,
        amount: str,
        when: datetime,
        status: str = "posted",
        attachments: list[dict] | None = None,
        **fields,
    ) -> Transaction:
        txn = Transaction(
            bank_account_id=account.id,
            name=name,
            amount=Decimal(amount),
            date=when,
            status=status,
            currency=fields.pop("currency", "USD"),
            **fields,
        )
        db.add(txn)
        db.flush()
        for a in attachments or []:
            db.add(TransactionAttachment(transaction_id=txn.id, **a))
        db.commit()
        return txn

    return _add
