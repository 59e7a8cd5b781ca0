"""Typed exception hierarchy for ledger import and reconciliation.

Provides structured exceptions so sync jobs can tell a bad record (skip it
and continue) from a corrupted identity (fail loudly).
"""


class LedgerError(Exception):
    """Base exception for all ledger-core errors.

    Carries the provider source so callers can identify which feed failed.
    """

    def __init__(self, message: str, source: str = ""):
        self.source = source
        super().__init__(message)


class ImportValidationError(LedgerError, ValueError):
    """A record is missing a required identity field (external_id, source, security)."""

    pass


class EntryTypeCollisionError(LedgerError, ValueError):
    """An (account, source, external_id) key is already bound to another entry kind."""

    def __init__(
        self,
        message: str,
        source: str = "",
        external_id: str | None = None,
        existing_kind: str | None = None,
    ):
        self.external_id = external_id
        self.existing_kind = existing_kind
        super().__init__(message, source)


class ReconciliationCancelled(LedgerError):
    """A reconciliation batch was stopped by its cancel signal or timeout."""

    pass


class HoldingOwnershipConflictWarning(UserWarning):
    """A provider's holding was not applied because another provider owns the row."""

    pass
