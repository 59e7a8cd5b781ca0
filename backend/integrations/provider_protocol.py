"""Normalized provider records consumed by the ledger import pipeline.

Provider-specific payloads are converted into these shapes at the ingestion
boundary (see ``integrations.normalizers``). Nothing past that boundary
branches on provider field names.
"""

from dataclasses import dataclass, field
from datetime import date as date_type
from decimal import Decimal


@dataclass
class ProviderTransaction:
    """Normalized transaction data from any provider."""

    external_id: str  # Provider's unique ID for this transaction
    amount: Decimal  # Signed; positive = money leaving the account
    currency: str  # Currency code (e.g., "USD")
    date: date_type
    name: str
    category_name: str | None = None
    merchant_id: str | None = None  # Provider's merchant ID
    merchant_name: str | None = None
    merchant_website_url: str | None = None
    merchant_logo_url: str | None = None
    notes: str | None = None
    extra: dict | None = None  # Provider metadata, e.g. {"plaid": {"pending": True}}


@dataclass
class ProviderTrade:
    """Normalized trade (investment transaction) data from any provider."""

    symbol: str  # Ticker symbol
    quantity: Decimal  # Negative for sells, positive for buys
    price: Decimal
    amount: Decimal
    currency: str
    date: date_type
    external_id: str | None = None
    name: str | None = None
    security_name: str | None = None


@dataclass
class HoldingSnapshot:
    """One position as compared by the investment activity detector.

    Either ``symbol`` or ``description`` identifies the position.
    """

    symbol: str | None
    description: str | None
    shares: Decimal
    cost_basis: Decimal = Decimal("0")
    market_value: Decimal = Decimal("0")

    def to_cache_row(self) -> dict:
        """Serialize for the account's holdings snapshot cache."""
        return {
            "symbol": self.symbol,
            "description": self.description,
            "shares": str(self.shares),
            "cost_basis": str(self.cost_basis),
            "market_value": str(self.market_value),
        }


@dataclass
class ProviderHolding:
    """Normalized holding data from any provider."""

    symbol: str  # Ticker symbol (or synthetic ticker)
    quantity: Decimal  # Number of shares/units
    price: Decimal  # Price per unit
    market_value: Decimal  # Total market value
    currency: str  # Currency code (e.g., "USD")
    date: date_type | None = None  # As-of date; the batch date is used when None
    name: str | None = None  # Security name (if available)
    cost_basis: Decimal | None = None  # Total cost basis (if available)
    external_id: str | None = None  # Provider's unique ID for the position

    def to_snapshot(self) -> HoldingSnapshot:
        return HoldingSnapshot(
            symbol=self.symbol,
            description=self.name,
            shares=self.quantity,
            cost_basis=self.cost_basis if self.cost_basis is not None else Decimal("0"),
            market_value=self.market_value,
        )


@dataclass
class ProviderSyncBatch:
    """Everything one provider returned for one account in one sync."""

    transactions: list[ProviderTransaction] = field(default_factory=list)
    trades: list[ProviderTrade] = field(default_factory=list)
    holdings: list[ProviderHolding] = field(default_factory=list)
    balance: Decimal | None = None
    cash_balance: Decimal | None = None
    holdings_date: date_type | None = None
    delete_future_holdings: bool = False
