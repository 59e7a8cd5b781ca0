"""Valuation model - the payload of a balance valuation entry."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Valuation(Base):
    """A point-in-time account value; the entry amount is the value."""

    __tablename__ = "valuations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entry_id = Column(
        String(36),
        ForeignKey("entries.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    entry = relationship("Entry", back_populates="valuation")
