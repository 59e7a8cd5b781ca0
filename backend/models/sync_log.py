"""SyncLogEntry model - records the outcome of one account sync."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class SyncLogEntry(Base):
    """A log entry recording the result of syncing one account from one provider."""

    __tablename__ = "sync_log_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_name = Column(String, nullable=False)
    status = Column(String, nullable=False)  # "success" | "partial" | "failed" | "skipped"
    error_messages = Column(JSON, nullable=True)  # list[str] of per-record errors
    records_imported = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    stale_excluded = Column(Integer, default=0)
    pending_reconciled = Column(Integer, default=0)
    activities_matched = Column(Integer, default=0)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    account = relationship("Account", back_populates="sync_log_entries")
