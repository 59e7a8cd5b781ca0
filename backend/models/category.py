"""Category model - a transaction category."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from database import Base
from models.utils import generate_uuid


class Category(Base):
    """A spending/income category, found or created by name on import."""

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
