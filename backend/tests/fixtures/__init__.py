"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from models import Account, AccountProvider, Entry, EntryKind, Holding, Security
from sqlalchemy.orm import Session


def get_or_create_security(db: Session, ticker: str, name: str | None = None) -> Security:
    """Get or create a Security record for the given ticker.

    This is a helper function (not a fixture) for tests that need several
    securities.
    """
    security = db.query(Security).filter_by(ticker=ticker).first()
    if security is None:
        security = Security(ticker=ticker, name=name or ticker)
        db.add(security)
        db.flush()
    return security


def create_transaction_entry(
    db: Session,
    account: Account,
    name: str,
    amount,
    entry_date: date,
    pending: bool = False,
    source: str | None = None,
    external_id: str | None = None,
    currency: str = "USD",
    excluded: bool = False,
    provider: str = "plaid",
) -> Entry:
    """Create a transaction entry; ``pending`` also sets the provider extra flag."""
    entry = Entry.build(
        EntryKind.TRANSACTION,
        account_id=account.id,
        name=name,
        amount=Decimal(str(amount)),
        date=entry_date,
        currency=currency,
        source=source,
        external_id=external_id,
        excluded=excluded,
    )
    entry.transaction.extra = {provider: {"pending": True}} if pending else {}
    entry.transaction.pending = pending
    db.add(entry)
    db.flush()
    return entry


def create_holding(
    db: Session,
    account: Account,
    security: Security,
    holding_date: date,
    qty="10",
    amount="1000",
    account_provider_id: str | None = None,
    external_id: str | None = None,
    currency: str = "USD",
) -> Holding:
    """Create a holding row directly, bypassing the import adapter."""
    qty = Decimal(qty)
    amount = Decimal(amount)
    holding = Holding(
        account_id=account.id,
        security_id=security.id,
        date=holding_date,
        currency=currency,
        qty=qty,
        price=amount / qty if qty else Decimal("0"),
        amount=amount,
        account_provider_id=account_provider_id,
        external_id=external_id,
    )
    db.add(holding)
    db.flush()
    return holding


@pytest.fixture
def account(db):
    """Create a checking account."""
    acc = Account(name="Everyday Checking", account_type="depository", currency="USD")
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def investment_account(db):
    """Create a brokerage account."""
    acc = Account(name="Brokerage", account_type="investment", currency="USD")
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def plaid_link(db, investment_account):
    """Link the brokerage account to Plaid."""
    link = AccountProvider(
        account_id=investment_account.id,
        provider_type="plaid",
        provider_account_id="plaid_acc_1",
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


@pytest.fixture
def simplefin_link(db, investment_account):
    """Link the brokerage account to SimpleFIN."""
    link = AccountProvider(
        account_id=investment_account.id,
        provider_type="simplefin",
        provider_account_id="ACT-123",
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


@pytest.fixture
def security(db):
    """Create a test security."""
    sec = Security(ticker="VTI", name="Vanguard Total Stock Market ETF")
    db.add(sec)
    db.commit()
    db.refresh(sec)
    return sec
