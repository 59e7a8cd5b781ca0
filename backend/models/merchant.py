"""ProviderMerchant model - a merchant as reported by a provider."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid


class ProviderMerchant(Base):
    """A merchant identified by (source, provider_merchant_id)."""

    __tablename__ = "provider_merchants"
    __table_args__ = (
        UniqueConstraint(
            "source", "provider_merchant_id",
            name="uix_merchant_source_provider_id",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    source = Column(String, nullable=False)
    provider_merchant_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    website_url = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
