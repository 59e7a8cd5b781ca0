"""Account model - a ledger container that providers sync data into."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, Column, DateTime, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

ACCOUNT_STATUSES = ("draft", "active", "disabled", "pending_deletion")
SYNCABLE_STATUSES = ("draft", "active")
INVESTMENT_ACCOUNT_TYPES = ("investment", "crypto")


class Account(Base):
    """An internal ledger account.

    Entries and holdings hang off the account. One or more providers may be
    linked to it through AccountProvider rows; each link is the ownership
    token a provider carries onto the holdings it imports.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    account_type = Column(String, nullable=False, default="depository")  # e.g., "investment", "crypto"
    currency = Column(String(3), nullable=False, default="USD")
    balance = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    cash_balance = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    status = Column(String, nullable=False, default="active")  # see ACCOUNT_STATUSES

    # Holdings as seen at the end of the previous activity-detection pass.
    # A cache only; entries are list[{"symbol", "description", "shares",
    # "cost_basis", "market_value"}] with decimal strings.
    holdings_snapshot_data = Column(JSON, nullable=True)
    holdings_snapshot_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account_providers = relationship(
        "AccountProvider", back_populates="account", cascade="all, delete-orphan"
    )
    entries = relationship(
        "Entry", back_populates="account", cascade="all, delete-orphan"
    )
    holdings = relationship(
        "Holding", back_populates="account", cascade="all, delete-orphan"
    )
    sync_log_entries = relationship(
        "SyncLogEntry", back_populates="account", cascade="all, delete-orphan"
    )

    @property
    def is_syncable(self) -> bool:
        """Disabled and pending-deletion accounts are never synced."""
        return self.status in SYNCABLE_STATUSES

    @property
    def is_investment(self) -> bool:
        """True for investment and crypto accounts."""
        return (self.account_type or "").lower() in INVESTMENT_ACCOUNT_TYPES

    @property
    def can_delete_holdings(self) -> bool:
        """Whether every linked provider allows holdings to be deleted.

        Accounts with no linked provider are manual and may always delete.
        """
        from integrations.provider_registry import get_provider_registry

        registry = get_provider_registry()
        return all(
            registry.can_delete_holdings(ap.provider_type)
            for ap in self.account_providers
        )
