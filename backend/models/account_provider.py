"""AccountProvider model - links an internal account to a provider account."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class AccountProvider(Base):
    """Says "provider account X supplies data for internal account Y".

    A holding's account_provider_id points here; only the owning link may
    mutate that holding on later syncs.
    """

    __tablename__ = "account_providers"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "provider_type", name="uix_account_provider_type"
        ),
        UniqueConstraint(
            "provider_type", "provider_account_id",
            name="uix_provider_type_provider_account",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_type = Column(String, nullable=False)  # e.g., "plaid", "simplefin"
    provider_account_id = Column(String, nullable=False)  # Provider's account ID
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    account = relationship("Account", back_populates="account_providers")
    holdings = relationship("Holding", back_populates="account_provider")
