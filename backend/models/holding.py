"""Holding model - a dated position snapshot for one security in one account."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Holding(Base):
    """A position record keyed by (account, security, date, currency).

    ``account_provider_id`` is the ownership token: once set, only that
    provider link may update the row. Rows without it are unowned and the
    first provider to collide with them adopts them.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "security_id", "date", "currency",
            name="uix_holding_account_security_date_currency",
        ),
        UniqueConstraint(
            "account_id", "external_id",
            name="uix_holding_account_external_id",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    date = Column(Date, nullable=False)
    currency = Column(String(3), nullable=False)
    qty = Column(Numeric(24, 8), nullable=False, default=Decimal("0"))
    price = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    amount = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    cost_basis = Column(Numeric(19, 4), nullable=True)
    external_id = Column(String, nullable=True)
    account_provider_id = Column(
        String(36), ForeignKey("account_providers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="holdings")
    security = relationship("Security", back_populates="holdings")
    account_provider = relationship("AccountProvider", back_populates="holdings")

    @property
    def ticker(self) -> str | None:
        return self.security.ticker if self.security else None

    @property
    def is_unowned(self) -> bool:
        return self.account_provider_id is None
