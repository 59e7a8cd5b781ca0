"""Transaction model - the payload of a transaction entry."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from database import Base
from models.lockable import LockableMixin
from models.utils import generate_uuid

# All valid investment activity labels
ACTIVITY_LABELS = [
    "Buy", "Sell", "Sweep In", "Sweep Out", "Dividend", "Reinvestment",
    "Interest", "Fee", "Transfer", "Contribution", "Withdrawal", "Exchange", "Other",
]

# Labels for automatic cash management between positions of the same account
INTERNAL_MOVEMENT_LABELS = ["Transfer", "Sweep In", "Sweep Out", "Exchange"]

# Key in ``extra`` where the reconciler parks a fuzzy duplicate suggestion
POTENTIAL_MATCH_KEY = "potential_posted_match"


class Transaction(LockableMixin, Base):
    """Transaction-specific data for an Entry of kind "transaction".

    ``extra`` holds provider metadata keyed by provider (e.g.
    ``{"plaid": {"pending": true}}``). ``pending`` is its normalized
    projection, recomputed whenever ``extra`` is written on import.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entry_id = Column(
        String(36),
        ForeignKey("entries.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    merchant_id = Column(String(36), ForeignKey("provider_merchants.id"), nullable=True)
    kind = Column(String, nullable=False, default="standard")
    extra = Column(JSON, default=dict, nullable=False)
    pending = Column(Boolean, default=False, nullable=False, index=True)
    investment_activity_label = Column(String, nullable=True)  # one of ACTIVITY_LABELS
    locked_attributes = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    entry = relationship("Entry", back_populates="transaction")
    category = relationship("Category")
    merchant = relationship("ProviderMerchant")

    @property
    def potential_posted_match(self) -> dict | None:
        if not isinstance(self.extra, dict):
            return None
        match = self.extra.get(POTENTIAL_MATCH_KEY)
        return match if isinstance(match, dict) and match else None

    @property
    def potential_duplicate_dismissed(self) -> bool:
        match = self.potential_posted_match
        return bool(match and match.get("dismissed") is True)

    @property
    def has_potential_duplicate(self) -> bool:
        return self.potential_posted_match is not None and not self.potential_duplicate_dismissed

    @property
    def potential_duplicate_entry_id(self) -> str | None:
        if not self.has_potential_duplicate:
            return None
        return self.potential_posted_match.get("entry_id")

    @property
    def potential_duplicate_reason(self) -> str | None:
        match = self.potential_posted_match
        return match.get("reason") if match else None

    @property
    def potential_duplicate_confidence(self) -> str:
        match = self.potential_posted_match or {}
        return match.get("confidence") or "medium"

    @property
    def potential_duplicate_posted_amount(self) -> Decimal | None:
        match = self.potential_posted_match
        if not match or match.get("posted_amount") is None:
            return None
        try:
            return Decimal(str(match["posted_amount"]))
        except InvalidOperation:
            return None
