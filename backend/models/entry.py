"""Entry model - one canonical ledger line."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.entryable import EntryKind, entryable_type_for
from models.lockable import LockableMixin
from models.utils import generate_uuid


class Entry(LockableMixin, Base):
    """A ledger line: a transaction, a trade or a valuation.

    Provider-imported entries carry ``source`` + ``external_id``; the pair is
    unique per account, which lets two providers reuse the same raw ID
    without colliding. Amounts are signed: positive means money leaving the
    account, negative means money coming in.
    """

    __tablename__ = "entries"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "source", "external_id",
            name="uix_entry_account_source_external",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind = Column(String, nullable=False)  # EntryKind value
    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False)
    name = Column(String, nullable=False)
    external_id = Column(String, nullable=True)
    source = Column(String, nullable=True)  # e.g., "plaid", "simplefin"
    import_id = Column(String, nullable=True)  # File import that created this entry
    notes = Column(Text, nullable=True)
    excluded = Column(Boolean, default=False, nullable=False)
    exclude_from_cashflow = Column(Boolean, default=False, nullable=False)
    user_modified = Column(Boolean, default=False, nullable=False)
    import_locked = Column(Boolean, default=False, nullable=False)
    locked_attributes = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships (exactly one payload is set, selected by ``kind``)
    account = relationship("Account", back_populates="entries")
    transaction = relationship(
        "Transaction", back_populates="entry", uselist=False, cascade="all, delete-orphan"
    )
    trade = relationship(
        "Trade", back_populates="entry", uselist=False, cascade="all, delete-orphan"
    )
    valuation = relationship(
        "Valuation", back_populates="entry", uselist=False, cascade="all, delete-orphan"
    )

    @classmethod
    def build(cls, kind: EntryKind | str, **attrs) -> "Entry":
        """Create an unsaved entry together with an empty payload of ``kind``."""
        entry_type = entryable_type_for(kind)
        payload_cls = cls.__mapper__.relationships[entry_type.attribute].mapper.class_
        entry = cls(kind=entry_type.kind.value, **attrs)
        setattr(entry, entry_type.attribute, payload_cls())
        return entry

    @property
    def entry_kind(self) -> EntryKind:
        return EntryKind(self.kind)

    @property
    def entryable(self):
        """The payload row for this entry's kind."""
        return getattr(self, entryable_type_for(self.kind).attribute)

    @property
    def entryable_label(self) -> str:
        return entryable_type_for(self.kind).label

    @property
    def is_transaction(self) -> bool:
        return self.kind == EntryKind.TRANSACTION.value

    @property
    def linked(self) -> bool:
        return bool(self.external_id)

    @property
    def locked_field_names(self) -> list[str]:
        """Locked field names across the entry and its payload."""
        names = list((self.locked_attributes or {}).keys())
        payload = self.entryable
        if payload is not None and hasattr(payload, "locked_attributes"):
            for key in (payload.locked_attributes or {}):
                if key not in names:
                    names.append(key)
        return names

    @property
    def protected_from_sync(self) -> bool:
        """True if automated syncs should leave this entry alone."""
        return self.protection_reason is not None

    @property
    def protection_reason(self) -> str | None:
        # excluded > user_modified > import_locked
        if self.excluded:
            return "excluded"
        if self.user_modified:
            return "user_modified"
        if self.import_locked:
            return "import_locked"
        return None

    def mark_user_modified(self) -> None:
        self.user_modified = True

    def unlock_for_sync(self) -> None:
        """Clear every protection flag so provider syncs may update the entry again."""
        self.user_modified = False
        self.import_locked = False
        self.locked_attributes = {}
        payload = self.entryable
        if payload is not None and hasattr(payload, "locked_attributes"):
            payload.locked_attributes = {}
